"""
Workspace metadata — typed view of ``cargo metadata`` output.

Only the fields the resolver needs are modelled; everything else in the
cargo document is ignored.  Lists keep cargo's declaration order.
"""
from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from wasm_builder.core.process import Runner, run_process
from wasm_builder.errors import MetadataError

logger = logging.getLogger(__name__)


class BuildTarget(BaseModel):
    """One compilable unit of a package."""
    name: str
    kind: List[str] = Field(default_factory=list)
    crate_types: List[str] = Field(default_factory=list)
    src_path: Optional[str] = None


class Package(BaseModel):
    id: str
    name: str
    version: str = ""
    manifest_path: Optional[str] = None
    targets: List[BuildTarget] = Field(default_factory=list)


class WorkspaceMetadata(BaseModel):
    """Packages and members of one cargo workspace.  Read-only."""
    packages: List[Package] = Field(default_factory=list)
    workspace_members: List[str] = Field(default_factory=list)
    # absent on cargo < 1.71
    workspace_default_members: Optional[List[str]] = None
    target_directory: str = "target"
    workspace_root: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def from_json(cls, doc: Dict) -> "WorkspaceMetadata":
        try:
            return cls.model_validate(doc)
        except ValidationError as e:
            raise MetadataError(f"Malformed cargo metadata: {e}") from e

    def package_by_id(self, package_id: str) -> Optional[Package]:
        for pkg in self.packages:
            if pkg.id == package_id:
                return pkg
        return None

    def default_members(self) -> List[str]:
        """Default members, falling back to all workspace members."""
        if self.workspace_default_members:
            return list(self.workspace_default_members)
        return list(self.workspace_members)

    def first_member_label(self) -> str:
        """Human label for diagnostics (first workspace member)."""
        if not self.workspace_members:
            return "<empty workspace>"
        first = self.workspace_members[0]
        pkg = self.package_by_id(first)
        return pkg.name if pkg is not None else first


def load_metadata(
    manifest_path: Path,
    cargo: str = "cargo",
    runner: Runner = run_process,
) -> WorkspaceMetadata:
    """
    Query ``cargo metadata`` for the workspace owning *manifest_path*.

    Raises
    ------
    MetadataError
        If cargo is missing, exits non-zero, or prints something that is
        not a metadata document.
    """
    argv = [
        cargo, "metadata",
        "--format-version", "1",
        "--no-deps",
        "--manifest-path", str(manifest_path),
    ]
    logger.debug("Querying workspace metadata: %s", " ".join(argv))
    try:
        result = runner(argv)
    except (OSError, subprocess.SubprocessError) as e:
        raise MetadataError(f"cannot run cargo metadata: {e}") from e

    if not result.ok:
        raise MetadataError(
            f"cargo metadata exited with code {result.returncode}: "
            f"{result.stderr_text()}"
        )

    try:
        doc = json.loads(result.stdout)
    except ValueError as e:
        raise MetadataError(f"cargo metadata printed invalid JSON: {e}") from e

    return WorkspaceMetadata.from_json(doc)
