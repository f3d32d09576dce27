"""Source build.

Compiles the configured entry point against the dependency layer. The
dependency outputs seed the target directory only when the layer's key
matches the context's manifest hash; otherwise the build starts from an
empty target directory.

The compile namespace caches the finished binary under a fingerprint of
the full source identity and every build flag, so rebuilding an unchanged
revision is a cache hit. A miss only costs compile time.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Any, ClassVar

from shipwright.core.build_cache import SEAL_FILENAME, BuildCache
from shipwright.core.errors import ArtifactMissingError, CompileError
from shipwright.core.hasher import compute_compile_fingerprint, file_sha256
from shipwright.models.artifacts import Artifact
from shipwright.models.cache import CacheNamespace, DependencyCacheLayer
from shipwright.models.config import PipelineConfig
from shipwright.models.context import BuildContext
from shipwright.models.phases import PipelinePhase
from shipwright.stages.base import BaseStage

logger = logging.getLogger(__name__)


def publish_artifact(source: Path, destination: Path) -> None:
    """Copy a binary to its fixed location via a temp file and atomic rename."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp = destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.partial")
    try:
        shutil.copyfile(source, tmp)
        tmp.chmod(0o755)
        os.replace(tmp, destination)
    finally:
        tmp.unlink(missing_ok=True)


class SourceBuildStage(BaseStage):
    """Compiles the application into exactly one release artifact."""

    failure_error: ClassVar[type[CompileError]] = CompileError

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.SRC_BUILD

    @property
    def display_name(self) -> str:
        return "Source Build"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["config"]
        context: BuildContext = run_context["build_context"]
        layer: DependencyCacheLayer = run_context["dependency_layer"]
        staging: BuildCache = run_context["staging_cache"]
        active: BuildCache | None = run_context.get("active_cache")
        toolchain = run_context["toolchain"]

        fingerprint = compute_compile_fingerprint(
            context.identity,
            target=config.binary_name,
            profile=config.profile,
            flags=config.build_flags,
            toolchain_version=toolchain.version,
        )

        cached = active.lookup(CacheNamespace.COMPILE, fingerprint) if active else None
        if cached is not None:
            logger.info("Compile cache hit for %s (%s)", config.binary_name, fingerprint[:12])
            staging.import_entry(CacheNamespace.COMPILE, fingerprint, cached)
        else:
            logger.info("Compile cache miss for %s (%s)", config.binary_name, fingerprint[:12])
            self._compile(config, context, layer, staging, toolchain, fingerprint)

        binary = staging.entry_path(CacheNamespace.COMPILE, fingerprint) / config.binary_name
        if not binary.is_file():
            raise ArtifactMissingError(f"Compile cache entry has no {config.binary_name} binary")
        publish_artifact(binary, config.artifact_path)

        artifact = Artifact(
            name=config.binary_name,
            path=config.artifact_path,
            digest=f"sha256:{file_sha256(config.artifact_path)}",
            size_bytes=config.artifact_path.stat().st_size,
            context_identity=context.identity,
            compile_fingerprint=fingerprint,
            from_compile_cache=cached is not None,
        )
        run_context["artifact"] = artifact
        return {
            "artifact": artifact.name,
            "artifact_digest": artifact.digest,
            "compile_fingerprint": fingerprint,
            "from_compile_cache": artifact.from_compile_cache,
        }

    def _compile(
        self,
        config: PipelineConfig,
        context: BuildContext,
        layer: DependencyCacheLayer,
        staging: BuildCache,
        toolchain,
        fingerprint: str,
    ) -> None:
        config.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="target-", dir=config.work_dir) as tmp:
            target_dir = Path(tmp)
            if layer.is_valid_for(context) and layer.path.is_dir():
                shutil.copytree(
                    layer.path,
                    target_dir,
                    symlinks=True,
                    dirs_exist_ok=True,
                    ignore=shutil.ignore_patterns(SEAL_FILENAME),
                )
            else:
                logger.warning(
                    "Dependency layer %s does not match manifest %s; compiling from scratch",
                    layer.key[:12],
                    context.manifest_hash[:12],
                )

            output = toolchain.build_binary(
                context.root,
                target_dir,
                binary=config.binary_name,
                profile=config.profile,
                flags=config.build_flags,
            )
            if not Path(output).is_file():
                raise ArtifactMissingError(
                    f"Toolchain reported success but {output} does not exist"
                )

            scratch = staging.stage_entry(CacheNamespace.COMPILE, fingerprint)
            shutil.copyfile(output, scratch / config.binary_name)
            staging.commit_entry(CacheNamespace.COMPILE, fingerprint, scratch)
