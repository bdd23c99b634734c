"""
Profile — frozen build policy for reproducible wasm32 builds.

Everything that must be identical between two machines for the primary
artifact to come out byte-identical lives here: the target triple, the
codegen flags, the path-prefix remaps and the artifact enumeration order.
Changing any of these is a profile change, not a code change.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from wasm_builder import PROFILE_ID


WASM_TARGET = "wasm32-unknown-unknown"
DEFAULT_STACK_SIZE = 128 * 1024

# Logical names in the output directory, in BUILD-INFO.md order.
ARTIFACT_WASM = "lib.wasm"
ARTIFACT_WAT = "lib.wat"
ARTIFACT_STRIPPED_WASM = "lib.stripped.wasm"
ARTIFACT_STRIPPED_WAT = "lib.stripped.wat"
ARTIFACT_RWASM = "lib.rwasm"
ARTIFACT_CWASM = "lib.cwasm"

BUILD_INFO_FILENAME = "BUILD-INFO.md"

# Separator cargo expects between entries of CARGO_ENCODED_RUSTFLAGS.
RUSTFLAGS_SEPARATOR = "\x1f"


@dataclass(frozen=True)
class BuildProfile:
    """Immutable codegen and packaging policy."""

    profile_id: str
    target: str
    release: bool
    locked: bool

    # Codegen
    panic_strategy: str
    target_features: Tuple[str, ...]
    codegen_units: int
    incremental: bool

    # Logical prefixes the host paths are rewritten to
    project_prefix: str
    cargo_home_prefix: str
    rustup_home_prefix: str

    artifact_order: Tuple[str, ...]

    @classmethod
    def v1(cls) -> "BuildProfile":
        """The locked v1 profile: wasm32, release, abort-on-panic, 1 CGU."""
        return cls(
            profile_id=PROFILE_ID,
            target=WASM_TARGET,
            release=True,
            locked=True,
            panic_strategy="abort",
            target_features=("+bulk-memory",),
            codegen_units=1,
            incremental=False,
            project_prefix="/project",
            cargo_home_prefix="/cargo",
            rustup_home_prefix="/rustup",
            artifact_order=(
                ARTIFACT_WASM,
                ARTIFACT_WAT,
                ARTIFACT_STRIPPED_WASM,
                ARTIFACT_STRIPPED_WAT,
                ARTIFACT_RWASM,
                ARTIFACT_CWASM,
            ),
        )

    @property
    def profile_dir(self) -> str:
        """Cargo output sub-directory for this profile."""
        return "release" if self.release else "debug"
