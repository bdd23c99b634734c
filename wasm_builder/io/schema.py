"""
Schema — Pydantic models for stage outcomes, the provenance record and
run summaries.

BUILD-INFO.md itself is line-oriented text (see io/writer.py); these
models are its in-memory form and the JSON form returned by the worker.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from wasm_builder import BUILDER_NAME, BUILDER_VERSION, PROFILE_ID


# =============================================================================
# Stage outcomes
# =============================================================================

class StageStatus(str, Enum):
    """Outcome of a single derivation stage."""
    PRODUCED = "PRODUCED"
    TOOL_UNAVAILABLE = "TOOL_UNAVAILABLE"
    TOOL_FAILED = "TOOL_FAILED"
    SKIPPED = "SKIPPED"   # input not produced upstream


class StageResult(BaseModel):
    """What one stage did.  ``path`` is set only when PRODUCED."""
    stage: str
    status: StageStatus
    path: Optional[str] = None
    command: str = ""
    exit_code: Optional[int] = None
    diagnostic: Optional[str] = None
    duration_ms: int = 0

    @property
    def produced(self) -> bool:
        return self.status == StageStatus.PRODUCED and self.path is not None


# =============================================================================
# Provenance record
# =============================================================================

class ArtifactDigest(BaseModel):
    """One ``sha256(<name>): <hex>`` line."""
    name: str
    sha256: str = Field(pattern=r"^[0-9a-f]{64}$")


class ProvenanceRecord(BaseModel):
    """
    In-memory BUILD-INFO.md.

    Digests are appended in artifact order while files are collected;
    optional toolchain lines are None when the query failed.
    """
    artifacts: List[ArtifactDigest] = Field(default_factory=list)
    commit: Optional[str] = None
    rustc: Optional[str] = None
    cargo: Optional[str] = None
    target: str
    build_time: str

    def add_digest(self, name: str, sha256: str) -> None:
        if any(a.name == name for a in self.artifacts):
            raise ValueError(f"duplicate artifact in record: {name}")
        self.artifacts.append(ArtifactDigest(name=name, sha256=sha256))

    def digest_of(self, name: str) -> Optional[str]:
        for a in self.artifacts:
            if a.name == name:
                return a.sha256
        return None

    def digests(self) -> Dict[str, str]:
        return {a.name: a.sha256 for a in self.artifacts}


# =============================================================================
# Run summary
# =============================================================================

class BuildReport(BaseModel):
    """Summary of one pipeline run."""
    builder: str = BUILDER_NAME
    builder_version: str = BUILDER_VERSION
    profile_id: str = PROFILE_ID

    artifact_name: str
    primary_artifact: str
    output_dir: str
    stages: List[StageResult] = Field(default_factory=list)
    record: ProvenanceRecord

    finished_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def stage(self, name: str) -> Optional[StageResult]:
        for s in self.stages:
            if s.stage == name:
                return s
        return None


# =============================================================================
# Reproducibility comparison
# =============================================================================

class DigestMatch(str, Enum):
    MATCH = "MATCH"
    DIFFERS = "DIFFERS"
    MISSING_LEFT = "MISSING_LEFT"
    MISSING_RIGHT = "MISSING_RIGHT"


class ArtifactComparison(BaseModel):
    name: str
    left: Optional[str] = None
    right: Optional[str] = None
    status: DigestMatch


class MetadataDifference(BaseModel):
    key: str
    left: Optional[str] = None
    right: Optional[str] = None


class ComparisonReport(BaseModel):
    """Artifact-by-artifact comparison of two BUILD-INFO.md records."""
    left_dir: str
    right_dir: str
    artifacts: List[ArtifactComparison] = Field(default_factory=list)
    metadata_differences: List[MetadataDifference] = Field(default_factory=list)
    reproducible: bool = False
