"""Image assembly.

Packages the artifact into a minimal runtime image made of two layers:

    runtime   OS runtime packages and trust roots, build-only paths
              stripped, TLS policy pinned in openssl.cnf
    artifact  the binary at /usr/local/bin/<name>, which is the entry point

No toolchain file ever enters the image: the root filesystem starts empty
and only receives package payloads and the binary.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any, ClassVar

from shipwright.core.archive import build_archive
from shipwright.core.build_cache import SEAL_FILENAME
from shipwright.core.errors import ArtifactMissingError, ImageAssemblyError
from shipwright.core.hasher import canonical_json_bytes, digest_bytes, file_sha256
from shipwright.core.image_layers import (
    apply_tls_hardening,
    install_binary,
    strip_build_only,
)
from shipwright.models.artifacts import Artifact
from shipwright.models.cache import DependencyCacheLayer
from shipwright.models.config import PipelineConfig
from shipwright.models.image import (
    LABEL_DEPENDENCY_CACHE,
    LABEL_DEPENDENCY_KEY,
    LABEL_REVISION,
    ImageConfig,
    ImageManifest,
    LayerDescriptor,
)
from shipwright.models.phases import PipelinePhase
from shipwright.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ImageAssembleStage(BaseStage):
    """Builds the runtime image manifest and its blobs."""

    failure_error: ClassVar[type[ImageAssemblyError]] = ImageAssemblyError

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.ASSEMBLE

    @property
    def display_name(self) -> str:
        return "Image Assembly"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["config"]
        artifact: Artifact | None = run_context.get("artifact")
        installer = run_context["installer"]

        if artifact is None or not artifact.path.is_file():
            raise ArtifactMissingError("Image assembly needs a compiled artifact; none was produced")
        if f"sha256:{file_sha256(artifact.path)}" != artifact.digest:
            raise ArtifactMissingError(f"Artifact at {artifact.path} changed after it was built")

        blobs: dict[str, bytes] = {}
        layers: list[LayerDescriptor] = []
        config.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="image-", dir=config.work_dir) as tmp:
            rootfs = Path(tmp) / "rootfs"
            rootfs.mkdir()
            installed = installer.install(list(config.runtime_packages), rootfs)
            stripped = strip_build_only(rootfs)
            try:
                apply_tls_hardening(
                    rootfs,
                    min_protocol=config.tls_min_protocol,
                    cipher_string=config.tls_cipher_string,
                )
            except ValueError as exc:
                raise ImageAssemblyError(str(exc)) from exc
            layers.append(self._add_layer(blobs, build_archive(rootfs), "runtime"))

            binary_root = Path(tmp) / "artifact"
            install_binary(binary_root, artifact.path, artifact.name)
            layers.append(self._add_layer(blobs, build_archive(binary_root), "artifact"))

        labels = {LABEL_REVISION: run_context.get("revision", "")}
        dep_layer: DependencyCacheLayer | None = run_context.get("dependency_layer")
        if dep_layer is not None:
            labels[LABEL_DEPENDENCY_KEY] = dep_layer.key
            if config.export_registry_cache and dep_layer.path.is_dir():
                cache_blob = build_archive(dep_layer.path, exclude=frozenset({SEAL_FILENAME}))
                cache_digest = digest_bytes(cache_blob)
                blobs[cache_digest] = cache_blob
                labels[LABEL_DEPENDENCY_CACHE] = cache_digest

        image_config = ImageConfig(
            base_image=config.base_image,
            entrypoint=[f"/usr/local/bin/{artifact.name}"],
            workdir=config.runtime_workdir,
            env=dict(config.runtime_env),
            labels=labels,
        )
        config_blob = canonical_json_bytes(image_config.model_dump(mode="json"))
        blobs[image_config.digest] = config_blob

        manifest = ImageManifest(
            config=image_config,
            config_digest=image_config.digest,
            layers=layers,
        )
        run_context["image_manifest"] = manifest
        run_context["image_blobs"] = blobs
        logger.info(
            "Assembled image %s: %d layers, %d packages, stripped %s",
            manifest.digest[:19],
            len(layers),
            len(installed),
            ", ".join(stripped) or "nothing",
        )
        return {
            "manifest_digest": manifest.digest,
            "layers": [layer.digest for layer in layers],
            "entrypoint": image_config.entrypoint,
            "installed_packages": list(installed),
        }

    @staticmethod
    def _add_layer(blobs: dict[str, bytes], data: bytes, role: str) -> LayerDescriptor:
        digest = digest_bytes(data)
        blobs[digest] = data
        return LayerDescriptor(digest=digest, size_bytes=len(data), role=role)
