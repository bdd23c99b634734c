"""
Invoker — run ``cargo build`` for wasm32 with the reproducible flag set.

The flags are applied unconditionally through CARGO_ENCODED_RUSTFLAGS so
they cannot be diluted by a user's RUSTFLAGS or .cargo/config:

  -C link-arg=-zstack-size=<n>      fixed linear-memory stack
  -C panic=abort                    no unwinding tables
  -C target-feature=+bulk-memory    opcode extension fixed at codegen
  -C codegen-units=1                single CGU, deterministic layout
  -C incremental=false
  --remap-path-prefix=<dir>=/project|/cargo|/rustup

Dependency resolution is ``--locked``: the build fails rather than
re-resolving versions.  Any non-zero exit is fatal.
"""
from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from wasm_builder.core.build_context import BuildEnvironment, CompilationRequest
from wasm_builder.core.process import Runner, run_process
from wasm_builder.errors import CompilationFailed
from wasm_builder.policy.profile import RUSTFLAGS_SEPARATOR, BuildProfile

logger = logging.getLogger(__name__)


def rustflags(
    request: CompilationRequest,
    env: BuildEnvironment,
    profile: BuildProfile,
) -> List[str]:
    """Canonical rustc flags, in the order they are passed."""
    flags = [
        "-C", f"link-arg=-zstack-size={request.stack_size}",
        "-C", f"panic={profile.panic_strategy}",
    ]
    for feature in profile.target_features:
        flags += ["-C", f"target-feature={feature}"]
    flags += [
        "-C", f"codegen-units={profile.codegen_units}",
        "-C", f"incremental={'true' if profile.incremental else 'false'}",
        f"--remap-path-prefix={env.project_dir}={profile.project_prefix}",
        f"--remap-path-prefix={env.cargo_home}={profile.cargo_home_prefix}",
        f"--remap-path-prefix={env.rustup_home}={profile.rustup_home_prefix}",
    ]
    return flags


def encoded_rustflags(
    request: CompilationRequest,
    env: BuildEnvironment,
    profile: BuildProfile,
) -> str:
    """Value for CARGO_ENCODED_RUSTFLAGS (entries joined by 0x1f)."""
    return RUSTFLAGS_SEPARATOR.join(rustflags(request, env, profile))


def build_command(
    request: CompilationRequest,
    manifest_path: Path,
    target_dir: Path,
    env: BuildEnvironment,
    profile: BuildProfile,
) -> List[str]:
    """The exact ``cargo build`` argv."""
    argv = [
        env.tools.cargo, "build",
        "--target", env.target,
    ]
    if profile.release:
        argv.append("--release")
    argv += [
        "--manifest-path", str(manifest_path),
        "--target-dir", str(target_dir),
        "--color=always",
    ]
    if profile.locked:
        argv.append("--locked")
    if request.no_default_features:
        argv.append("--no-default-features")
    if request.features:
        argv.append("--features")
        argv.extend(request.features)
    return argv


def artifact_path(
    target_dir: Path,
    artifact_name: str,
    env: BuildEnvironment,
    profile: BuildProfile,
) -> Path:
    return Path(target_dir) / env.target / profile.profile_dir / artifact_name


def compile_wasm(
    request: CompilationRequest,
    manifest_path: Path,
    target_dir: Path,
    artifact_name: str,
    env: BuildEnvironment,
    profile: Optional[BuildProfile] = None,
    runner: Runner = run_process,
    base_env: Optional[Dict[str, str]] = None,
) -> Path:
    """
    Compile the workspace and return the primary artifact path.

    The returned path is computed, not checked: the derivation stages
    report a missing or unreadable module when they open it.

    Raises
    ------
    CompilationFailed
        cargo could not be started or exited non-zero.
    """
    if profile is None:
        profile = BuildProfile.v1()

    argv = build_command(request, manifest_path, target_dir, env, profile)
    proc_env = dict(os.environ if base_env is None else base_env)
    proc_env["CARGO_ENCODED_RUSTFLAGS"] = encoded_rustflags(request, env, profile)

    logger.info("Compiling %s for %s", manifest_path, env.target)
    logger.debug("cargo argv: %s", " ".join(argv))

    try:
        result = runner(argv, env=proc_env, capture=False)
    except (OSError, subprocess.SubprocessError) as e:
        raise CompilationFailed(None, str(e)) from e

    if not result.ok:
        raise CompilationFailed(result.returncode)

    out = artifact_path(target_dir, artifact_name, env, profile)
    logger.info("Primary artifact: %s", out)
    return out
