"""
Builder configuration
"""
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings

from wasm_builder.core.build_context import (
    BuildEnvironment,
    CompilationRequest,
    ToolCommands,
)
from wasm_builder.policy.profile import DEFAULT_STACK_SIZE, WASM_TARGET


class Settings(BaseSettings):
    """Builder settings, read from the environment (or .env)."""

    # Toolchain homes (remapped to /cargo and /rustup in debug paths)
    CARGO_HOME: str = ""
    RUSTUP_HOME: str = ""

    # Compilation
    WASM_TARGET: str = WASM_TARGET
    WASM_STACK_SIZE: int = DEFAULT_STACK_SIZE
    WASM_FEATURES: List[str] = []
    WASM_NO_DEFAULT_FEATURES: bool = False

    # External tools
    CARGO_BIN: str = "cargo"
    RUSTC_BIN: str = "rustc"
    GIT_BIN: str = "git"
    WASM2WAT_BIN: str = "wasm2wat"
    WASM_TOOLS_BIN: str = "wasm-tools"
    WASMTIME_BIN: str = "wasmtime"
    RWASM_BIN: str = "rwasm"

    # Derivation stages
    TOOL_TIMEOUT: int = 300  # seconds
    QUERY_TIMEOUT: int = 10  # seconds, git / --version queries
    PARALLEL_STAGES: bool = True

    # Redis (worker)
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    BUILD_QUEUE: str = "wasm_builder:queue"

    @property
    def redis_url(self) -> str:
        """Redis connection string"""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    def tool_commands(self) -> ToolCommands:
        return ToolCommands(
            cargo=self.CARGO_BIN,
            rustc=self.RUSTC_BIN,
            git=self.GIT_BIN,
            wasm2wat=self.WASM2WAT_BIN,
            wasm_tools=self.WASM_TOOLS_BIN,
            wasmtime=self.WASMTIME_BIN,
            rwasm=self.RWASM_BIN,
        )

    def build_environment(self, project_dir: Path) -> BuildEnvironment:
        """Snapshot the environment for one run."""
        return BuildEnvironment(
            project_dir=Path(project_dir),
            cargo_home=self.CARGO_HOME,
            rustup_home=self.RUSTUP_HOME,
            target=self.WASM_TARGET,
            tools=self.tool_commands(),
            tool_timeout=self.TOOL_TIMEOUT,
            query_timeout=self.QUERY_TIMEOUT,
        )

    def compilation_request(self) -> CompilationRequest:
        return CompilationRequest(
            features=tuple(self.WASM_FEATURES),
            no_default_features=self.WASM_NO_DEFAULT_FEATURES,
            stack_size=self.WASM_STACK_SIZE,
        )

    class Config:
        env_file = ".env"
        case_sensitive = True
