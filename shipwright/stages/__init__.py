"""Pipeline stages, in execution order.

Usage::

    from shipwright.stages import build_stages

    for stage in build_stages():
        stage.run_stage(run_context)
"""

from __future__ import annotations

from shipwright.stages.base import BaseStage
from shipwright.stages.cache_rotate import CacheRotateStage
from shipwright.stages.dependency_prebuild import DependencyPrebuildStage
from shipwright.stages.image_assemble import ImageAssembleStage
from shipwright.stages.publish import PublishStage
from shipwright.stages.source_build import SourceBuildStage
from shipwright.stages.tag import TagStage

# Execution order; each stage's completion is the next one's precondition.
STAGE_ORDER: list[type[BaseStage]] = [
    DependencyPrebuildStage,
    SourceBuildStage,
    ImageAssembleStage,
    TagStage,
    PublishStage,
    CacheRotateStage,
]


def build_stages() -> list[BaseStage]:
    """Instantiate one of each stage, in execution order."""
    return [cls() for cls in STAGE_ORDER]


__all__ = [
    "BaseStage",
    "STAGE_ORDER",
    "build_stages",
    "DependencyPrebuildStage",
    "SourceBuildStage",
    "ImageAssembleStage",
    "TagStage",
    "PublishStage",
    "CacheRotateStage",
]
