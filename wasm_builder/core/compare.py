"""
Compare — check two build runs for byte-identical artifacts.

Used to confirm reproducibility across hosts (e.g. an arm laptop and an
x86 container): both runs' BUILD-INFO.md files are parsed and every
artifact digest is compared.  Toolchain and timestamp lines are listed
but only a differing ``target`` makes the runs incomparable.
"""
from __future__ import annotations

from pathlib import Path
from typing import List

from wasm_builder.io.schema import (
    ArtifactComparison,
    ComparisonReport,
    DigestMatch,
    MetadataDifference,
    ProvenanceRecord,
)
from wasm_builder.io.writer import read_build_info

_METADATA_KEYS = ("commit", "rustc", "cargo", "target", "build_time")


def compare_records(
    left: ProvenanceRecord,
    right: ProvenanceRecord,
    left_label: str = "left",
    right_label: str = "right",
) -> ComparisonReport:
    left_digests = left.digests()
    right_digests = right.digests()

    # left's order first, then anything only the right side has
    names: List[str] = list(left_digests)
    names += [n for n in right_digests if n not in left_digests]

    artifacts: List[ArtifactComparison] = []
    for name in names:
        l, r = left_digests.get(name), right_digests.get(name)
        if l is None:
            status = DigestMatch.MISSING_LEFT
        elif r is None:
            status = DigestMatch.MISSING_RIGHT
        elif l == r:
            status = DigestMatch.MATCH
        else:
            status = DigestMatch.DIFFERS
        artifacts.append(ArtifactComparison(name=name, left=l, right=r, status=status))

    differences = [
        MetadataDifference(key=key, left=getattr(left, key), right=getattr(right, key))
        for key in _METADATA_KEYS
        if getattr(left, key) != getattr(right, key)
    ]

    reproducible = (
        bool(artifacts)
        and all(a.status == DigestMatch.MATCH for a in artifacts)
        and left.target == right.target
    )
    return ComparisonReport(
        left_dir=left_label,
        right_dir=right_label,
        artifacts=artifacts,
        metadata_differences=differences,
        reproducible=reproducible,
    )


def compare_build_info(left_dir: Path, right_dir: Path) -> ComparisonReport:
    """Compare the BUILD-INFO.md files of two output directories."""
    return compare_records(
        read_build_info(left_dir),
        read_build_info(right_dir),
        left_label=str(left_dir),
        right_label=str(right_dir),
    )
