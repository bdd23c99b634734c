"""
Provenance recorder — collect artifacts, hash them, write BUILD-INFO.md.

Output layout per run:

    <root>/artifacts/<arch>/<timestamp>/
        lib.wasm  lib.wat  lib.stripped.wasm  lib.stripped.wat
        lib.rwasm  lib.cwasm  BUILD-INFO.md

Artifacts whose source is absent are skipped without error; this is how
best-effort stage failures propagate.  Each digest is computed over the
copy in the output directory, not over the source.
"""
from __future__ import annotations

import hashlib
import logging
import platform
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from wasm_builder.core.build_context import BuildEnvironment
from wasm_builder.core.process import Runner, run_process, run_quiet
from wasm_builder.errors import OutputDirectoryExists
from wasm_builder.io.schema import ProvenanceRecord, StageResult
from wasm_builder.io.writer import write_build_info
from wasm_builder.policy.profile import ARTIFACT_WASM, BuildProfile
from wasm_builder.policy.stages import STAGE_TABLE, StageSpec

logger = logging.getLogger(__name__)

ArtifactSource = Tuple[Optional[Path], str]

_X86_MACHINES = {"x86_64", "amd64", "i386", "i686", "x86"}


# =============================================================================
# Helpers
# =============================================================================

def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def host_arch(machine: Optional[str] = None) -> str:
    """``x86`` on x86 hosts, ``arm`` everywhere else."""
    machine = (machine if machine is not None else platform.machine()).lower()
    return "x86" if machine in _X86_MACHINES else "arm"


def run_timestamp(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S")


def create_output_dir(root: Path, arch: str, timestamp: str) -> Path:
    """
    Create ``<root>/artifacts/<arch>/<timestamp>/``.

    Raises
    ------
    OutputDirectoryExists
        The directory is already there; a run directory is never reused.
    """
    out = Path(root) / "artifacts" / arch / timestamp
    out.parent.mkdir(parents=True, exist_ok=True)
    try:
        out.mkdir()
    except FileExistsError as e:
        raise OutputDirectoryExists(out) from e
    return out


def artifact_sources(
    primary: Path,
    stage_results: Iterable[StageResult],
    profile: BuildProfile,
    stages: Sequence[StageSpec] = STAGE_TABLE,
) -> List[ArtifactSource]:
    """
    The fixed ordered (source, logical name) list for the recorder.

    A stage that did not produce its output contributes ``(None, name)``.
    """
    produced = {r.stage: Path(r.path) for r in stage_results if r.produced}
    by_output = {spec.output: produced.get(spec.name) for spec in stages}
    sources: List[ArtifactSource] = []
    for name in profile.artifact_order:
        if name == ARTIFACT_WASM:
            sources.append((Path(primary), name))
        else:
            sources.append((by_output.get(name), name))
    return sources


# =============================================================================
# ProvenanceRecorder
# =============================================================================

class ProvenanceRecorder:
    """Copies produced artifacts and writes the run's BUILD-INFO.md."""

    def __init__(
        self,
        env: BuildEnvironment,
        runner: Runner = run_process,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.env = env
        self.runner = runner
        self.clock = clock

    def collect(
        self,
        output_dir: Path,
        sources: Sequence[ArtifactSource],
        record: ProvenanceRecord,
    ) -> None:
        """Copy each existing source under its logical name and hash the copy."""
        for src, name in sources:
            if src is None or not Path(src).is_file():
                logger.debug("Artifact %s absent, skipped", name)
                continue
            dst = output_dir / name
            shutil.copyfile(src, dst)
            digest = hash_file(dst)
            record.add_digest(name, digest)
            logger.info("sha256(%s): %s", name, digest)

    def toolchain_metadata(self, record: ProvenanceRecord) -> None:
        """Fill commit / rustc / cargo, each independently best-effort."""
        tools = self.env.tools
        timeout = self.env.query_timeout
        record.commit = run_quiet(
            self.runner, [tools.git, "rev-parse", "HEAD"],
            cwd=self.env.project_dir, timeout=timeout,
        )
        record.rustc = run_quiet(self.runner, [tools.rustc, "--version"], timeout=timeout)
        record.cargo = run_quiet(self.runner, [tools.cargo, "--version"], timeout=timeout)
        for key in ("commit", "rustc", "cargo"):
            if getattr(record, key) is None:
                logger.warning("Could not determine %s; omitted from BUILD-INFO", key)

    def record(self, output_dir: Path, sources: Sequence[ArtifactSource]) -> ProvenanceRecord:
        """
        Build and write the provenance record for *output_dir*.

        *output_dir* must already exist (see create_output_dir).
        """
        record = ProvenanceRecord(target=self.env.target, build_time="")
        self.collect(output_dir, sources, record)
        self.toolchain_metadata(record)
        record.build_time = self.clock().astimezone(timezone.utc).isoformat()
        path = write_build_info(record, output_dir)
        logger.info("Provenance written: %s", path)
        return record
