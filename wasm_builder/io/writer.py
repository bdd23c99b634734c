"""
Writer — render, write and read BUILD-INFO.md.

Line grammar (one entry per line, fixed order):

    sha256(<file>): <64 hex>      one per present artifact
    commit: <sha>                 optional
    rustc: <version>              optional
    cargo: <version>              optional
    target: <triple>
    build_time: <RFC3339>

The file is written atomically: a temporary sibling is filled, flushed
and then renamed over the final name, so a reader never observes a
partially written record.
"""
from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

from wasm_builder.io.schema import ProvenanceRecord
from wasm_builder.policy.profile import BUILD_INFO_FILENAME

_DIGEST_LINE = re.compile(r"^sha256\((?P<name>[^()]+)\): (?P<hex>[0-9a-f]{64})$")
_META_LINE = re.compile(r"^(?P<key>commit|rustc|cargo|target|build_time): (?P<value>.*)$")

_OPTIONAL_KEYS = ("commit", "rustc", "cargo")


def render_build_info(record: ProvenanceRecord) -> str:
    lines = [f"sha256({a.name}): {a.sha256}" for a in record.artifacts]
    for key in _OPTIONAL_KEYS:
        value = getattr(record, key)
        if value:
            lines.append(f"{key}: {value}")
    lines.append(f"target: {record.target}")
    lines.append(f"build_time: {record.build_time}")
    return "\n".join(lines) + "\n"


def write_build_info(record: ProvenanceRecord, output_dir: Path) -> Path:
    """
    Write BUILD-INFO.md into *output_dir* (which must exist).

    Returns the path of the written file.
    """
    final_path = Path(output_dir) / BUILD_INFO_FILENAME
    fd, tmp_name = tempfile.mkstemp(
        prefix=".BUILD-INFO.", suffix=".tmp", dir=str(output_dir)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(render_build_info(record))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, final_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return final_path


def parse_build_info(text: str) -> ProvenanceRecord:
    """
    Parse BUILD-INFO.md text back into a ProvenanceRecord.

    Raises
    ------
    ValueError
        On an unrecognised line, a duplicate artifact, or a missing
        ``target`` / ``build_time`` line.
    """
    digests = []
    meta = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        m = _DIGEST_LINE.match(line)
        if m:
            digests.append((m.group("name"), m.group("hex")))
            continue
        m = _META_LINE.match(line)
        if m:
            meta[m.group("key")] = m.group("value").strip()
            continue
        raise ValueError(f"line {lineno}: unrecognised BUILD-INFO entry: {line!r}")

    for key in ("target", "build_time"):
        if key not in meta:
            raise ValueError(f"BUILD-INFO is missing the `{key}` line")

    record = ProvenanceRecord(
        commit=meta.get("commit"),
        rustc=meta.get("rustc"),
        cargo=meta.get("cargo"),
        target=meta["target"],
        build_time=meta["build_time"],
    )
    for name, hexdigest in digests:
        record.add_digest(name, hexdigest)
    return record


def read_build_info(output_dir: Path) -> ProvenanceRecord:
    path = Path(output_dir) / BUILD_INFO_FILENAME
    return parse_build_info(path.read_text(encoding="utf-8"))
