"""Pipeline phase state machine models: strictly ordered, fail-fast."""

from __future__ import annotations

from enum import Enum


class PipelinePhase(str, Enum):
    """Every state a single pipeline run can be in."""

    PENDING = "pending"
    COLD = "cold"
    WARM_RESTORED = "warm_restored"
    DEP_BUILD = "dep_build"
    SRC_BUILD = "src_build"
    ASSEMBLE = "assemble"
    TAG = "tag"
    PUBLISH = "publish"
    ROTATE_CACHE = "rotate_cache"
    DONE = "done"
    FAILED = "failed"


TERMINAL_PHASES: frozenset[PipelinePhase] = frozenset(
    {PipelinePhase.DONE, PipelinePhase.FAILED}
)

# Restore outcomes: a run enters exactly one of these before building.
START_PHASES: frozenset[PipelinePhase] = frozenset(
    {PipelinePhase.COLD, PipelinePhase.WARM_RESTORED}
)

# Valid phase transitions: enforced structurally by PhaseMachine.
# Every non-terminal phase may fail; DONE and FAILED have no way out.
VALID_TRANSITIONS: dict[PipelinePhase, set[PipelinePhase]] = {
    PipelinePhase.PENDING: {PipelinePhase.COLD, PipelinePhase.WARM_RESTORED, PipelinePhase.FAILED},
    PipelinePhase.COLD: {PipelinePhase.DEP_BUILD, PipelinePhase.FAILED},
    PipelinePhase.WARM_RESTORED: {PipelinePhase.DEP_BUILD, PipelinePhase.FAILED},
    PipelinePhase.DEP_BUILD: {PipelinePhase.SRC_BUILD, PipelinePhase.FAILED},
    PipelinePhase.SRC_BUILD: {PipelinePhase.ASSEMBLE, PipelinePhase.FAILED},
    PipelinePhase.ASSEMBLE: {PipelinePhase.TAG, PipelinePhase.FAILED},
    PipelinePhase.TAG: {PipelinePhase.PUBLISH, PipelinePhase.FAILED},
    PipelinePhase.PUBLISH: {PipelinePhase.ROTATE_CACHE, PipelinePhase.FAILED},
    PipelinePhase.ROTATE_CACHE: {PipelinePhase.DONE, PipelinePhase.FAILED},
    PipelinePhase.DONE: set(),  # terminal
    PipelinePhase.FAILED: set(),  # terminal
}
