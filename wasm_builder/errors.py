"""
Errors — fatal build conditions.

Two families:
  ConfigurationError — the workspace or output location is unusable.
                       Raised before any compilation starts.
  ToolchainError     — the primary artifact could not be produced or is
                       not a valid module.  Invalidates every derivative.

Auxiliary tool failures (disassembler, stripper, AOT compiler, git) are
never raised; they are recorded as StageResult values and omitted from
the provenance record.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional


class BuildError(Exception):
    """Root of every fatal build error."""


# =============================================================================
# Configuration errors
# =============================================================================

class ConfigurationError(BuildError):
    """Workspace metadata or output layout does not allow a build."""


class MetadataError(ConfigurationError):
    """Workspace metadata could not be loaded or is inconsistent."""


class NoTarget(ConfigurationError):
    """No bin/cdylib target found among the workspace default members."""

    def __init__(self, package: str):
        self.package = package
        super().__init__(
            f"No WASM artifact found to build in package `{package}`. "
            "Ensure the package defines exactly one `bin` or `cdylib` crate."
        )


class AmbiguousTarget(ConfigurationError):
    """More than one bin/cdylib target found among the default members."""

    def __init__(self, package: str, candidates: List[str]):
        self.package = package
        self.candidates = list(candidates)
        super().__init__(
            f"Multiple WASM artifacts found in package `{package}` "
            f"({', '.join(self.candidates)}). "
            "Ensure the package defines exactly one `bin` or `cdylib` crate."
        )


class OutputDirectoryExists(ConfigurationError):
    """The per-run output directory already exists and must not be reused."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Build output directory already exists: {path}")


# =============================================================================
# Toolchain errors
# =============================================================================

class ToolchainError(BuildError):
    """The primary artifact is absent, broken, or non-reproducible."""


class CompilationFailed(ToolchainError):
    """`cargo build` exited non-zero (or could not be started)."""

    def __init__(self, exit_code: Optional[int], detail: str = ""):
        self.exit_code = exit_code
        msg = "WASM compilation failure: failed to run cargo build"
        if exit_code is not None:
            msg += f" with code: {exit_code}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class BytecodeCompilationFailed(ToolchainError):
    """The primary module could not be compiled to rwasm bytecode."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"rwasm compilation failed for {path}: {reason}")
