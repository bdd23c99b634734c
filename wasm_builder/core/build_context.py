"""
Build context — immutable values captured once at the start of a run.

Environment-derived settings (toolchain homes, target triple, tool names)
are snapshotted into a BuildEnvironment and the feature selection into a
CompilationRequest.  Both are threaded explicitly through the pipeline;
no stage reads os.environ on its own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from wasm_builder.policy.profile import DEFAULT_STACK_SIZE, WASM_TARGET


@dataclass(frozen=True)
class CompilationRequest:
    """Feature selection and linker stack size for one cargo build."""

    features: Tuple[str, ...] = ()
    no_default_features: bool = False
    stack_size: int = DEFAULT_STACK_SIZE

    def __post_init__(self):
        if self.stack_size <= 0:
            raise ValueError(f"stack_size must be positive, got {self.stack_size}")
        # accept any iterable but store a tuple so the value stays hashable
        object.__setattr__(self, "features", tuple(self.features))


@dataclass(frozen=True)
class ToolCommands:
    """Executable names (or absolute paths) of every external tool."""

    cargo: str = "cargo"
    rustc: str = "rustc"
    git: str = "git"
    wasm2wat: str = "wasm2wat"
    wasm_tools: str = "wasm-tools"
    wasmtime: str = "wasmtime"
    rwasm: str = "rwasm"


@dataclass(frozen=True)
class BuildEnvironment:
    """Host environment snapshot used to parameterize the build."""

    project_dir: Path
    cargo_home: str = ""
    rustup_home: str = ""
    target: str = WASM_TARGET
    tools: ToolCommands = field(default_factory=ToolCommands)
    tool_timeout: int = 300
    query_timeout: int = 10
