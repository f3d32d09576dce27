"""Runtime image models: an OCI-shaped manifest of content-addressed layers."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from shipwright.core.hasher import content_address

LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar"
CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"

# Image config labels used as a remote cache hint.
LABEL_REVISION = "org.opencontainers.image.revision"
LABEL_DEPENDENCY_KEY = "shipwright.dependency-key"
LABEL_DEPENDENCY_CACHE = "shipwright.dependency-cache"


class LayerDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    digest: str  # "sha256:<hex>"
    size_bytes: int
    role: str  # "runtime" or "artifact"
    media_type: str = LAYER_MEDIA_TYPE


class ImageConfig(BaseModel):
    """Runtime configuration of the assembled image."""

    model_config = ConfigDict(frozen=True)

    base_image: str
    entrypoint: list[str]
    workdir: str = "/app"
    env: dict[str, str] = {}
    labels: dict[str, str] = {}

    @property
    def digest(self) -> str:
        return content_address(self.model_dump(mode="json"))


class ImageManifest(BaseModel):
    """Ties an image config to its ordered layers."""

    model_config = ConfigDict(frozen=True)

    config: ImageConfig
    config_digest: str
    layers: list[LayerDescriptor]
    media_type: str = "application/vnd.oci.image.manifest.v1+json"

    @property
    def digest(self) -> str:
        return content_address(self.model_dump(mode="json"))

    @property
    def blob_digests(self) -> list[str]:
        """Every blob the manifest references, config first."""
        return [self.config_digest, *(layer.digest for layer in self.layers)]
