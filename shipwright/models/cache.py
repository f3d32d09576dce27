"""Build cache models: sealed, content-addressed cache entries."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from shipwright.models.context import BuildContext


class CacheNamespace(str, Enum):
    """The two cache namespaces, keyed by different hashes of the input."""

    DEPENDENCIES = "deps"  # keyed by manifest hash
    COMPILE = "compile"  # keyed by full source + flags fingerprint


class LayerSource(str, Enum):
    """Where a dependency layer came from in this run."""

    LOCAL = "local"
    REGISTRY = "registry"
    BUILT = "built"


class CacheOutcome(str, Enum):
    """How a run's cache was restored."""

    COLD = "cold"
    WARM_LOCAL = "warm-local"
    WARM_REMOTE = "warm-remote"


class SealedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str  # posix path relative to the entry directory
    sha256: str
    size_bytes: int


class CacheEntrySeal(BaseModel):
    """Written last into a cache entry; an entry without a matching seal is
    never trusted."""

    model_config = ConfigDict(frozen=True)

    namespace: CacheNamespace
    key: str
    files: list[SealedFile]
    sealed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    seal_hash: str = ""


class StoreSeal(BaseModel):
    """Seal over a whole cache store: every entry and its seal hash."""

    model_config = ConfigDict(frozen=True)

    entries: dict[str, str]  # "<namespace>/<key>" -> entry seal_hash
    sealed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    seal_hash: str = ""


class DependencyCacheLayer(BaseModel):
    """Compiled third-party dependencies, keyed by the manifest hash."""

    model_config = ConfigDict(frozen=True)

    key: str
    path: Path
    source: LayerSource

    def is_valid_for(self, context: BuildContext) -> bool:
        """A layer is only usable by contexts sharing its manifest hash."""
        return self.key == context.manifest_hash


class CacheRestore(BaseModel):
    """Result of restoring the cache store at the start of a run."""

    model_config = ConfigDict(frozen=True)

    outcome: CacheOutcome
    key: str | None = None
    discarded_interrupted: bool = False
