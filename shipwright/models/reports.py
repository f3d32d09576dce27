"""Per-run outcome report."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from shipwright.models.cache import CacheOutcome
from shipwright.models.phases import PipelinePhase


class RunReport(BaseModel):
    """What a run did, built up as phases complete."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    revision: str
    phase: PipelinePhase = PipelinePhase.PENDING
    cache_outcome: CacheOutcome | None = None
    dependency_source: str | None = None
    artifact_digest: str | None = None
    manifest_digest: str | None = None
    references: list[str] = []
    published: bool = False
    cache_promoted: bool = False
    failed_phase: PipelinePhase | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.phase == PipelinePhase.DONE
