"""Directory-backed image registry.

Storage layout::

    {root}/blobs/sha256/{hex}                   layers, configs, manifests
    {root}/repositories/{namespace}/index.json  {"tags": {...}, "revisions": {...}}

Blobs are immutable and shared across namespaces, so unchanged layers are
reused rather than uploaded again. Tags of a namespace live in one index
file that is replaced atomically, which makes a push all-or-nothing: blobs
first, manifest second, and finally every tag in a single rename.
"""

from __future__ import annotations

import hmac
import json
import logging
import os
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import SecretStr, ValidationError

from shipwright.core.errors import RegistryPushError
from shipwright.core.hasher import canonical_json_bytes, digest_bytes, strip_digest_prefix
from shipwright.models.image import ImageManifest
from shipwright.registry.base import PushResult

logger = logging.getLogger(__name__)


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


class FilesystemRegistry:
    """Registry rooted at a local directory.

    Parameters
    ----------
    root:
        Registry directory. Created on first push.
    token:
        When set, pushes require ``authenticate()`` with the same token.
    """

    def __init__(self, root: Path, *, token: str | None = None) -> None:
        self._root = Path(root)
        self._token = token or None
        self._authenticated = self._token is None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _blob_path(self, digest: str) -> Path:
        hex_digest = strip_digest_prefix(digest)
        return self._root / "blobs" / "sha256" / hex_digest

    def _index_path(self, namespace: str) -> Path:
        return self._root / "repositories" / namespace / "index.json"

    def _load_index(self, namespace: str) -> dict[str, dict[str, str]]:
        path = self._index_path(namespace)
        if not path.exists():
            return {"tags": {}, "revisions": {}}
        index = json.loads(path.read_text(encoding="utf-8"))
        index.setdefault("tags", {})
        index.setdefault("revisions", {})
        return index

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def authenticate(self, credential: SecretStr | None) -> None:
        if self._token is None:
            return
        supplied = credential.get_secret_value() if credential else ""
        if not hmac.compare_digest(supplied, self._token):
            raise RegistryPushError("Registry rejected the supplied credential")
        self._authenticated = True

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(
        self,
        namespace: str,
        manifest: ImageManifest,
        blobs: Mapping[str, bytes],
        tags: Sequence[str],
        *,
        revision: tuple[str, str] | None = None,
    ) -> PushResult:
        """Upload missing blobs, store the manifest, then move every tag at once.

        *revision* is ``(revision_tag, full_revision)``, recorded so later
        pushes can detect two revisions abbreviating to the same tag.
        """
        if not self._authenticated:
            raise RegistryPushError("Push attempted without authenticating")
        if not tags:
            raise RegistryPushError("Push requires at least one tag")

        # Validate everything before writing anything.
        for digest, data in blobs.items():
            if digest_bytes(data) != digest:
                raise RegistryPushError(f"Blob content does not match digest {digest}")
        missing = [
            d for d in manifest.blob_digests if d not in blobs and not self.has_blob(d)
        ]
        if missing:
            raise RegistryPushError(f"Manifest references blobs not provided: {missing}")

        uploaded: list[str] = []
        reused: list[str] = []
        manifest_bytes = canonical_json_bytes(manifest.model_dump(mode="json"))
        manifest_digest = digest_bytes(manifest_bytes)
        try:
            for digest, data in blobs.items():
                if self.has_blob(digest):
                    reused.append(digest)
                    continue
                _atomic_write(self._blob_path(digest), data)
                uploaded.append(digest)
            if not self.has_blob(manifest_digest):
                _atomic_write(self._blob_path(manifest_digest), manifest_bytes)

            index = self._load_index(namespace)
            for tag in tags:
                index["tags"][tag] = manifest_digest
            if revision is not None:
                revision_tag, full_revision = revision
                index["revisions"][revision_tag] = full_revision
            _atomic_write(
                self._index_path(namespace),
                json.dumps(index, indent=2, sort_keys=True).encode("utf-8"),
            )
        except OSError as exc:
            raise RegistryPushError(f"Push to {namespace} failed: {exc}") from exc

        logger.info(
            "Pushed %s (%s) as %s: %d uploaded, %d reused",
            namespace,
            manifest_digest[:19],
            ", ".join(tags),
            len(uploaded),
            len(reused),
        )
        return PushResult(
            namespace=namespace,
            manifest_digest=manifest_digest,
            tags=list(tags),
            uploaded_blobs=uploaded,
            reused_blobs=reused,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def resolve(self, namespace: str, tag: str) -> ImageManifest | None:
        digest = self._load_index(namespace)["tags"].get(tag)
        if digest is None:
            return None
        data = self.get_blob(digest)
        if data is None:
            return None
        try:
            return ImageManifest.model_validate_json(data)
        except ValidationError:
            logger.warning("Manifest %s for %s:%s is unreadable", digest, namespace, tag)
            return None

    def resolve_digest(self, namespace: str, tag: str) -> str | None:
        return self._load_index(namespace)["tags"].get(tag)

    def tags(self, namespace: str) -> dict[str, str]:
        return dict(self._load_index(namespace)["tags"])

    def has_blob(self, digest: str) -> bool:
        return self._blob_path(digest).is_file()

    def get_blob(self, digest: str) -> bytes | None:
        path = self._blob_path(digest)
        if not path.is_file():
            return None
        data = path.read_bytes()
        if digest_bytes(data) != digest:
            logger.warning("Registry blob %s failed its digest check", digest)
            return None
        return data

    def revision_for(self, namespace: str, revision_tag: str) -> str | None:
        return self._load_index(namespace)["revisions"].get(revision_tag)
