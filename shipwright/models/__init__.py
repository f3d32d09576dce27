"""Shipwright data models: all Pydantic v2, all frozen (immutable)."""

from shipwright.models.artifacts import Artifact
from shipwright.models.cache import (
    CacheEntrySeal,
    CacheNamespace,
    CacheOutcome,
    CacheRestore,
    DependencyCacheLayer,
    LayerSource,
    StoreSeal,
)
from shipwright.models.config import CachePaths, PipelineConfig
from shipwright.models.context import BuildContext, TriggerContext
from shipwright.models.image import ImageConfig, ImageManifest, LayerDescriptor
from shipwright.models.ledger import LedgerEntry
from shipwright.models.phases import VALID_TRANSITIONS, PipelinePhase
from shipwright.models.reports import RunReport
from shipwright.models.tags import ImageTagSet

__all__ = [
    # context
    "BuildContext",
    "TriggerContext",
    # cache
    "CacheNamespace",
    "CacheOutcome",
    "CacheRestore",
    "CacheEntrySeal",
    "StoreSeal",
    "DependencyCacheLayer",
    "LayerSource",
    # artifacts and image
    "Artifact",
    "ImageConfig",
    "ImageManifest",
    "LayerDescriptor",
    "ImageTagSet",
    # phases and ledger
    "PipelinePhase",
    "VALID_TRANSITIONS",
    "LedgerEntry",
    # config and reports
    "CachePaths",
    "PipelineConfig",
    "RunReport",
]
