"""Dependency pre-build.

Produces the dependency cache layer for a build context from its manifest
files alone, so that application source edits never invalidate it. Sources,
in precedence order:

    1. the active local cache store (``deps/<manifest hash>``)
    2. the registry's ``latest`` image, when its labels advertise a
       dependency cache blob for the same manifest hash
    3. a fresh toolchain build in a scratch directory holding only the
       manifest files

Whichever source wins, the layer is written into the staging store so the
next run's cache carries it forward.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Any, ClassVar

from shipwright.core.archive import UnsafeArchiveError, extract_archive
from shipwright.core.build_cache import BuildCache
from shipwright.core.errors import DependencyResolutionError
from shipwright.core.tagging import LATEST_TAG
from shipwright.models.cache import CacheNamespace, DependencyCacheLayer, LayerSource
from shipwright.models.config import PipelineConfig
from shipwright.models.context import BuildContext
from shipwright.models.image import LABEL_DEPENDENCY_CACHE, LABEL_DEPENDENCY_KEY
from shipwright.models.phases import PipelinePhase
from shipwright.registry.base import Registry
from shipwright.stages.base import BaseStage

logger = logging.getLogger(__name__)


class DependencyPrebuildStage(BaseStage):
    """Builds or restores compiled third-party dependencies."""

    failure_error: ClassVar[type[DependencyResolutionError]] = DependencyResolutionError

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.DEP_BUILD

    @property
    def display_name(self) -> str:
        return "Dependency Pre-Build"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["config"]
        staging: BuildCache = run_context["staging_cache"]
        active: BuildCache | None = run_context.get("active_cache")

        context = BuildContext.from_directory(config.root, config.manifest_files)
        run_context["build_context"] = context
        key = context.manifest_hash

        source = self._from_local(active, staging, key)
        if source is None:
            source = self._from_registry(run_context, staging, key)
        if source is None:
            source = self._build(run_context, staging, context)

        layer = DependencyCacheLayer(
            key=key,
            path=staging.entry_path(CacheNamespace.DEPENDENCIES, key),
            source=source,
        )
        run_context["dependency_layer"] = layer
        logger.info("Dependency layer %s ready (%s)", key[:12], source.value)
        return {
            "manifest_hash": key,
            "context_identity": context.identity,
            "source": source.value,
        }

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _from_local(
        self, active: BuildCache | None, staging: BuildCache, key: str
    ) -> LayerSource | None:
        if active is None:
            return None
        entry = active.lookup(CacheNamespace.DEPENDENCIES, key)
        if entry is None:
            return None
        staging.import_entry(CacheNamespace.DEPENDENCIES, key, entry)
        return LayerSource.LOCAL

    def _from_registry(
        self, run_context: dict[str, Any], staging: BuildCache, key: str
    ) -> LayerSource | None:
        registry: Registry | None = run_context.get("registry")
        namespace: str | None = run_context.get("namespace")
        if registry is None or not namespace:
            return None

        latest = registry.resolve(namespace, LATEST_TAG)
        if latest is None:
            return None
        labels = latest.config.labels
        if labels.get(LABEL_DEPENDENCY_KEY) != key or LABEL_DEPENDENCY_CACHE not in labels:
            logger.debug("Registry cache hint does not match manifest hash %s", key[:12])
            return None
        blob = registry.get_blob(labels[LABEL_DEPENDENCY_CACHE])
        if blob is None:
            return None

        scratch = staging.stage_entry(CacheNamespace.DEPENDENCIES, key)
        try:
            extract_archive(blob, scratch)
        except (UnsafeArchiveError, tarfile.TarError, OSError, EOFError) as exc:
            logger.warning("Registry dependency cache unusable: %s", exc)
            staging.discard_scratch(scratch)
            return None
        staging.commit_entry(CacheNamespace.DEPENDENCIES, key, scratch)
        return LayerSource.REGISTRY

    def _build(
        self, run_context: dict[str, Any], staging: BuildCache, context: BuildContext
    ) -> LayerSource:
        config: PipelineConfig = run_context["config"]
        toolchain = run_context["toolchain"]
        key = context.manifest_hash

        scratch = staging.stage_entry(CacheNamespace.DEPENDENCIES, key)
        try:
            with tempfile.TemporaryDirectory(prefix="shipwright-deps-") as tmp:
                manifest_dir = Path(tmp)
                for name in context.manifest_files:
                    dest = manifest_dir / name
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copyfile(context.root / name, dest)
                toolchain.build_dependencies(manifest_dir, scratch, profile=config.profile)
        except BaseException:
            staging.discard_scratch(scratch)
            raise
        staging.commit_entry(CacheNamespace.DEPENDENCIES, key, scratch)
        return LayerSource.BUILT
