"""Cache rotation stage: seals the staging store and promotes it."""

from __future__ import annotations

from typing import Any, ClassVar

from shipwright.core.build_cache import BuildCache
from shipwright.core.cache_rotator import CacheRotator
from shipwright.core.errors import CachePromotionError
from shipwright.models.phases import PipelinePhase
from shipwright.stages.base import BaseStage


class CacheRotateStage(BaseStage):
    failure_error: ClassVar[type[CachePromotionError]] = CachePromotionError

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.ROTATE_CACHE

    @property
    def display_name(self) -> str:
        return "Cache Rotation"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        rotator: CacheRotator = run_context["rotator"]
        staging: BuildCache = run_context["staging_cache"]

        seal = staging.seal_store()
        rotator.promote()
        persisted_key = rotator.persist(run_context["revision"])
        return {
            "entries": sorted(seal.entries),
            "store_seal": seal.seal_hash,
            "persisted_key": persisted_key,
        }
