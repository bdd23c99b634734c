"""
Stages — declared derivation stages and their dependency order.

Each stage reads one input (the primary module or another stage's
output), writes exactly one file, and is either fatal or best-effort:

  rwasm         primary → lib.rwasm           fatal
  wat           primary → lib.wat             best-effort
  strip         primary → lib.stripped.wasm   best-effort
  stripped_wat  strip   → lib.stripped.wat    best-effort
  cwasm         primary → lib.cwasm           best-effort

A broken primary artifact invalidates every derivative, so bytecode
compilation is fatal; the others only degrade observability or
start-up time.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from wasm_builder.policy.profile import (
    ARTIFACT_CWASM,
    ARTIFACT_RWASM,
    ARTIFACT_STRIPPED_WASM,
    ARTIFACT_STRIPPED_WAT,
    ARTIFACT_WAT,
)

PRIMARY = "primary"


@dataclass(frozen=True)
class StageSpec:
    name: str
    source: str      # PRIMARY or the name of another stage
    output: str      # file name written into the work directory
    fatal: bool = False


STAGE_TABLE: Tuple[StageSpec, ...] = (
    StageSpec("rwasm", PRIMARY, ARTIFACT_RWASM, fatal=True),
    StageSpec("wat", PRIMARY, ARTIFACT_WAT),
    StageSpec("strip", PRIMARY, ARTIFACT_STRIPPED_WASM),
    StageSpec("stripped_wat", "strip", ARTIFACT_STRIPPED_WAT),
    StageSpec("cwasm", PRIMARY, ARTIFACT_CWASM),
)


def stage_waves(stages: Sequence[StageSpec]) -> List[List[StageSpec]]:
    """
    Group stages into waves: every stage's source lives in an earlier wave.

    Stages within a wave keep their declaration order and have no data
    dependency on each other.

    Raises
    ------
    ValueError
        Duplicate stage names, an unknown source, or a dependency cycle.
    """
    by_name: Dict[str, StageSpec] = {}
    for spec in stages:
        if spec.name == PRIMARY or spec.name in by_name:
            raise ValueError(f"duplicate or reserved stage name: {spec.name}")
        by_name[spec.name] = spec
    for spec in stages:
        if spec.source != PRIMARY and spec.source not in by_name:
            raise ValueError(f"stage {spec.name} reads unknown source {spec.source}")

    waves: List[List[StageSpec]] = []
    placed = {PRIMARY}
    pending = list(stages)
    while pending:
        wave = [s for s in pending if s.source in placed]
        if not wave:
            names = ", ".join(s.name for s in pending)
            raise ValueError(f"dependency cycle among stages: {names}")
        waves.append(wave)
        placed.update(s.name for s in wave)
        pending = [s for s in pending if s.name not in placed]
    return waves
