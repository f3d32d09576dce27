"""Registry protocol shared by every registry backend."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, SecretStr

from shipwright.models.image import ImageManifest


class PushResult(BaseModel):
    """Outcome of one all-or-nothing push."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    manifest_digest: str
    tags: list[str]
    uploaded_blobs: list[str]
    reused_blobs: list[str]


@runtime_checkable
class Registry(Protocol):
    """A content-addressed image registry.

    ``push`` must be atomic with respect to tags: either every requested tag
    points at the new manifest afterwards, or none of them changed.
    """

    def authenticate(self, credential: SecretStr | None) -> None:
        ...

    def push(
        self,
        namespace: str,
        manifest: ImageManifest,
        blobs: Mapping[str, bytes],
        tags: Sequence[str],
        *,
        revision: tuple[str, str] | None = None,
    ) -> PushResult:
        ...

    def resolve(self, namespace: str, tag: str) -> ImageManifest | None:
        ...

    def has_blob(self, digest: str) -> bool:
        ...

    def get_blob(self, digest: str) -> bytes | None:
        ...

    def revision_for(self, namespace: str, revision_tag: str) -> str | None:
        ...
