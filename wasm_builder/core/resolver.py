"""
Resolver — pick the single bin/cdylib target that becomes the .wasm file.

A target is eligible only when its kind AND its crate type agree on the
same category:

    bin    ∈ kind  and  bin    ∈ crate_types
    cdylib ∈ kind  and  cdylib ∈ crate_types

Iteration order is pinned: default members in declaration order, then
each package's targets sorted by name.  Zero or several eligible targets
are configuration errors; the choice is never made silently.

Pure functions, no IO.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from wasm_builder.core.metadata import BuildTarget, WorkspaceMetadata
from wasm_builder.errors import AmbiguousTarget, MetadataError, NoTarget

# Both `bin` and `cdylib` crates produce a `.wasm` file on wasm32.
ELIGIBLE_CATEGORIES = ("bin", "cdylib")


@dataclass(frozen=True)
class ResolvedTarget:
    package: str
    target: str
    category: str   # bin | cdylib

    @property
    def artifact_name(self) -> str:
        return f"{self.target}.wasm"


def target_category(target: BuildTarget) -> Optional[str]:
    """Return ``bin`` / ``cdylib`` if the target is eligible, else None."""
    for category in ELIGIBLE_CATEGORIES:
        if category in target.kind and category in target.crate_types:
            return category
    return None


def eligible_targets(metadata: WorkspaceMetadata) -> List[ResolvedTarget]:
    """All eligible targets across the default members, in pinned order."""
    found: List[ResolvedTarget] = []
    for member_id in metadata.default_members():
        pkg = metadata.package_by_id(member_id)
        if pkg is None:
            raise MetadataError(f"cannot find package for {member_id}")
        for target in sorted(pkg.targets, key=lambda t: t.name):
            category = target_category(target)
            if category is not None:
                found.append(ResolvedTarget(
                    package=pkg.name,
                    target=target.name,
                    category=category,
                ))
    return found


def resolve(metadata: WorkspaceMetadata) -> str:
    """
    Return the artifact file name (``<target>.wasm``) for the workspace.

    Raises
    ------
    NoTarget
        No eligible target among the default members.
    AmbiguousTarget
        More than one eligible target among the default members.
    MetadataError
        A default member does not name a known package.
    """
    found = eligible_targets(metadata)
    label = metadata.first_member_label()
    if not found:
        raise NoTarget(label)
    if len(found) > 1:
        raise AmbiguousTarget(
            label, [f"{t.package}::{t.target} ({t.category})" for t in found]
        )
    return found[0].artifact_name
