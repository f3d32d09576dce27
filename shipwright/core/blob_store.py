"""Key-value blob store for persisting build caches between runs.

Blobs are addressed by ``(os_id, key)``. An exact-key miss can fall back to
the most recently saved blob whose key shares a prefix, which is how a new
revision warms itself from the previous revision's cache.

Storage layout::

    {base}/{os_id}/{key}.blob
    {base}/{os_id}/index.json   {key: {"sequence": n, "digest": ..., "saved_at": ...}}
"""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from shipwright.core.hasher import digest_bytes

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@runtime_checkable
class BlobStore(Protocol):
    """Cache persistence interface."""

    def restore(self, os_id: str, key: str) -> bytes | None:
        """Return the blob saved under exactly this key, or None."""
        ...

    def restore_prefix(self, os_id: str, prefix: str) -> tuple[str, bytes] | None:
        """Return ``(key, blob)`` of the newest blob whose key starts with *prefix*."""
        ...

    def save(self, os_id: str, key: str, data: bytes) -> None:
        """Persist *data* under ``(os_id, key)``."""
        ...


def _validate(name: str, what: str) -> str:
    if not _SAFE_KEY.match(name):
        raise ValueError(f"Invalid {what} {name!r}: use letters, digits, '.', '_' or '-'")
    return name


def _atomic_write(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


class FilesystemBlobStore:
    """Directory-backed implementation of ``BlobStore``.

    Parameters
    ----------
    base_path:
        Root directory of the store. Created on first save.
    retain:
        Keep at most this many blobs per OS among keys starting with
        *key_prefix*; older ones are evicted on save. None keeps everything.
    key_prefix:
        Key family that *retain* applies to.
    """

    def __init__(
        self, base_path: Path, *, retain: int | None = None, key_prefix: str = ""
    ) -> None:
        if retain is not None and retain < 1:
            raise ValueError(f"retain must be at least 1, got {retain}")
        self._base = Path(base_path)
        self._retain = retain
        self._key_prefix = key_prefix

    def _os_dir(self, os_id: str) -> Path:
        return self._base / _validate(os_id, "os identifier")

    def _index_path(self, os_id: str) -> Path:
        return self._os_dir(os_id) / "index.json"

    def _load_index(self, os_id: str) -> dict[str, dict]:
        path = self._index_path(os_id)
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def _read_verified(self, os_id: str, key: str, record: dict) -> bytes | None:
        path = self._os_dir(os_id) / f"{key}.blob"
        if not path.exists():
            return None
        data = path.read_bytes()
        if digest_bytes(data) != record.get("digest"):
            logger.warning("Blob %s/%s failed its digest check; ignoring", os_id, key)
            return None
        return data

    def restore(self, os_id: str, key: str) -> bytes | None:
        _validate(key, "cache key")
        record = self._load_index(os_id).get(key)
        if record is None:
            return None
        return self._read_verified(os_id, key, record)

    def restore_prefix(self, os_id: str, prefix: str) -> tuple[str, bytes] | None:
        index = self._load_index(os_id)
        candidates = sorted(
            ((k, r) for k, r in index.items() if k.startswith(prefix)),
            key=lambda item: item[1].get("sequence", 0),
            reverse=True,
        )
        for key, record in candidates:
            data = self._read_verified(os_id, key, record)
            if data is not None:
                return key, data
        return None

    def save(self, os_id: str, key: str, data: bytes) -> None:
        _validate(key, "cache key")
        os_dir = self._os_dir(os_id)
        os_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(os_dir / f"{key}.blob", data)

        index = self._load_index(os_id)
        sequence = max((r.get("sequence", 0) for r in index.values()), default=0) + 1
        index[key] = {
            "sequence": sequence,
            "digest": digest_bytes(data),
            "size_bytes": len(data),
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        evicted = self._evictions(index)
        for old in evicted:
            del index[old]
        _atomic_write(
            self._index_path(os_id),
            json.dumps(index, indent=2, sort_keys=True).encode("utf-8"),
        )
        logger.info("Saved cache blob %s/%s (%d bytes)", os_id, key, len(data))

        # Blobs go only after the index no longer names them.
        for old in evicted:
            (os_dir / f"{old}.blob").unlink(missing_ok=True)
            logger.info("Evicted cache blob %s/%s", os_id, old)

    def _evictions(self, index: dict[str, dict]) -> list[str]:
        if self._retain is None:
            return []
        family = sorted(
            (k for k in index if k.startswith(self._key_prefix)),
            key=lambda k: index[k].get("sequence", 0),
            reverse=True,
        )
        return family[self._retain:]

    def keys(self, os_id: str) -> list[str]:
        """Keys for an OS, newest first."""
        index = self._load_index(os_id)
        return [k for k, _ in sorted(index.items(), key=lambda i: i[1].get("sequence", 0), reverse=True)]
