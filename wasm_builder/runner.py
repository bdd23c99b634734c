"""
Builder runner — top-level orchestration: Cargo.toml → artifacts + BUILD-INFO.md.

    resolve target → cargo build → derivation stages → provenance

This module ties metadata resolution, compilation, the derivation
pipeline and the provenance recorder into a single ``run_build``
function that can be called from the worker or from the CLI.
"""
import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from wasm_builder.config import Settings
from wasm_builder.core.build_context import CompilationRequest
from wasm_builder.core.compare import compare_build_info
from wasm_builder.core.derive import BytecodeCompiler, DerivationPipeline
from wasm_builder.core.invoker import compile_wasm
from wasm_builder.core.metadata import load_metadata
from wasm_builder.core.process import Runner, run_process
from wasm_builder.core.provenance import (
    ProvenanceRecorder,
    artifact_sources,
    create_output_dir,
    host_arch,
    run_timestamp,
    utc_now,
)
from wasm_builder.core.resolver import resolve
from wasm_builder.errors import BuildError, OutputDirectoryExists
from wasm_builder.io.schema import BuildReport
from wasm_builder.policy.profile import BuildProfile

logger = logging.getLogger(__name__)


def run_build(
    manifest_path: Path,
    output_root: Optional[Path] = None,
    settings: Optional[Settings] = None,
    request: Optional[CompilationRequest] = None,
    target_dir: Optional[Path] = None,
    profile: Optional[BuildProfile] = None,
    runner: Runner = run_process,
    bytecode_compiler: Optional[BytecodeCompiler] = None,
    parallel: Optional[bool] = None,
    clock: Callable[[], datetime] = utc_now,
    machine: Optional[str] = None,
) -> BuildReport:
    """
    Build the workspace at *manifest_path* and package its artifacts.

    Parameters
    ----------
    manifest_path : Path
        Cargo.toml of the program to build.
    output_root : Path, optional
        Root under which ``artifacts/<arch>/<timestamp>/`` is created.
        Defaults to the manifest's directory.
    settings : Settings, optional
        Environment configuration.  Read once; defaults to ``Settings()``.
    request : CompilationRequest, optional
        Features / stack size.  Defaults to the settings' request.
    target_dir : Path, optional
        Cargo target dir.  Defaults to ``<metadata target_directory>/target2``
        so the wasm build never shares a directory with the host build.
    runner, bytecode_compiler, clock, machine
        Injection points for tests.

    Returns
    -------
    BuildReport

    Raises
    ------
    BuildError
        Any configuration or toolchain error.  Best-effort stage
        failures never raise.
    """
    manifest_path = Path(manifest_path).resolve()
    project_dir = manifest_path.parent
    if settings is None:
        settings = Settings()
    if profile is None:
        profile = BuildProfile.v1()
    env = settings.build_environment(project_dir)
    if request is None:
        request = settings.compilation_request()
    if parallel is None:
        parallel = settings.PARALLEL_STAGES
    output_root = Path(output_root) if output_root is not None else project_dir

    # ── Step 1: resolve the artifact (configuration errors first) ────
    metadata = load_metadata(manifest_path, cargo=env.tools.cargo, runner=runner)
    artifact_name = resolve(metadata)
    logger.info("Resolved WASM artifact: %s", artifact_name)

    if target_dir is None:
        target_dir = Path(metadata.target_directory) / "target2"

    arch = host_arch(machine)
    timestamp = run_timestamp(clock())
    planned_dir = output_root / "artifacts" / arch / timestamp
    if planned_dir.exists():
        raise OutputDirectoryExists(planned_dir)

    # ── Step 2: compile (fatal on any failure) ───────────────────────
    primary = compile_wasm(
        request,
        manifest_path,
        target_dir,
        artifact_name,
        env,
        profile=profile,
        runner=runner,
    )

    # ── Step 3: derive secondary artifacts ───────────────────────────
    pipeline = DerivationPipeline(
        env,
        runner=runner,
        bytecode_compiler=bytecode_compiler,
        parallel=parallel,
    )
    work_dir = Path(target_dir) / env.target / "derived"
    stage_results = pipeline.run(primary, work_dir)

    # ── Step 4: collect + record ─────────────────────────────────────
    output_dir = create_output_dir(output_root, arch, timestamp)
    recorder = ProvenanceRecorder(env, runner=runner, clock=clock)
    record = recorder.record(
        output_dir, artifact_sources(primary, stage_results, profile)
    )

    report = BuildReport(
        artifact_name=artifact_name,
        primary_artifact=str(primary),
        output_dir=str(output_dir),
        stages=stage_results,
        record=record,
    )
    logger.info(
        "Build finished: %d artifacts in %s",
        len(record.artifacts), output_dir,
    )
    return report


# ── CLI ──────────────────────────────────────────────────────────────────────

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="wasm-builder",
        description="wasm_builder — deterministic Rust → WASM build with provenance",
    )
    parser.add_argument(
        "--manifest-path",
        type=Path,
        default=Path("Cargo.toml"),
        help="Path to Cargo.toml (default: ./Cargo.toml)",
    )
    parser.add_argument(
        "-o", "--output-root",
        type=Path,
        default=None,
        help="Root for artifacts/<arch>/<timestamp>/ (default: manifest dir)",
    )
    parser.add_argument(
        "--target-dir",
        type=Path,
        default=None,
        help="Cargo target directory (default: <target>/target2)",
    )
    parser.add_argument(
        "--features",
        nargs="+",
        default=None,
        help="Cargo features to enable",
    )
    parser.add_argument(
        "--no-default-features",
        action="store_true",
        default=None,
        help="Disable the package's default features",
    )
    parser.add_argument(
        "--stack-size",
        type=int,
        default=None,
        help="Linker stack size in bytes",
    )
    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Run derivation stages one at a time",
    )
    parser.add_argument(
        "--compare",
        nargs=2,
        type=Path,
        metavar=("DIR_A", "DIR_B"),
        default=None,
        help="Compare BUILD-INFO.md of two output directories instead of building",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


def _request_from_args(args: argparse.Namespace, settings: Settings) -> CompilationRequest:
    base = settings.compilation_request()
    return CompilationRequest(
        features=tuple(args.features) if args.features is not None else base.features,
        no_default_features=(
            args.no_default_features
            if args.no_default_features is not None
            else base.no_default_features
        ),
        stack_size=args.stack_size if args.stack_size is not None else base.stack_size,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.compare is not None:
        left, right = args.compare
        try:
            report = compare_build_info(left, right)
        except (OSError, ValueError) as e:
            logger.error("Cannot compare %s and %s: %s", left, right, e)
            return 1
        print(json.dumps(report.model_dump(mode="json"), indent=2))
        return 0 if report.reproducible else 1

    try:
        settings = Settings()
        request = _request_from_args(args, settings)
        report = run_build(
            args.manifest_path,
            output_root=args.output_root,
            settings=settings,
            request=request,
            target_dir=args.target_dir,
            parallel=False if args.sequential else None,
        )
    except BuildError as e:
        logger.error("%s", e)
        return 1
    except ValueError as e:
        # also pydantic ValidationError / SettingsError from a bad environment
        logger.error("Invalid build configuration: %s", e)
        return 1
    except OSError as e:
        logger.error("Build I/O failure: %s", e)
        return 1

    print(report.output_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
