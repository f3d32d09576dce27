"""Cache store rotation across runs.

Each run reads the *active* store and writes a complete fresh store into
the *staging* path. Only after the image is published does the rotator
promote staging into active, as a journaled remove-then-rename:

1. verify the staging store seal
2. write the rotation journal next to the active path
3. remove the active store
4. rename staging to active
5. delete the journal

A journal found at restore time means a promotion was interrupted somewhere
in steps 2-5: the active path may be half-deleted, so both stores are
discarded and the run cold-starts. A staging store left without a journal
only means an earlier run never reached promotion; it is discarded and the
intact active store is still used.

Restore precedence: a sealed local active store wins over the blob store.
Within the blob store, an exact revision key wins over the newest entry
sharing the key prefix.
"""

from __future__ import annotations

import json
import logging
import shutil
import tarfile
import uuid
from datetime import datetime, timezone
from pathlib import Path

from shipwright.core.archive import UnsafeArchiveError, build_archive, extract_archive
from shipwright.core.blob_store import BlobStore
from shipwright.core.build_cache import BuildCache
from shipwright.core.errors import CachePromotionError
from shipwright.models.cache import CacheOutcome, CacheRestore
from shipwright.models.config import CachePaths

logger = logging.getLogger(__name__)


class CacheRotator:
    """Manages the active/staging cache stores of one pipeline.

    Parameters
    ----------
    paths:
        The active and staging store locations.
    blob_store:
        Optional remote persistence; without it only the local store is used.
    os_id:
        First half of every blob store address.
    key_prefix:
        Prefix of every cache key; the fallback lookup matches on it.
    """

    def __init__(
        self,
        paths: CachePaths,
        blob_store: BlobStore | None = None,
        *,
        os_id: str = "Linux",
        key_prefix: str = "buildx-",
    ) -> None:
        self._paths = paths
        self._blob_store = blob_store
        self._os_id = os_id
        self._key_prefix = key_prefix

    @property
    def paths(self) -> CachePaths:
        return self._paths

    @property
    def journal_path(self) -> Path:
        active = self._paths.active
        return active.parent / f".{active.name}.rotating"

    def cache_key(self, revision: str) -> str:
        return f"{self._key_prefix}{revision}"

    def active_cache(self) -> BuildCache | None:
        """The active store, if it exists and its seal verifies."""
        cache = BuildCache(self._paths.active)
        if self._paths.active.is_dir() and cache.is_sealed(deep=False):
            return cache
        return None

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, revision: str) -> CacheRestore:
        """Bring the active store into a trustworthy state for this run."""
        interrupted = self.journal_path.exists()
        if interrupted:
            logger.warning(
                "Interrupted cache promotion detected (%s); discarding local caches",
                self.journal_path,
            )
            _remove(self._paths.active)
            _remove(self._paths.staging)
            self.journal_path.unlink(missing_ok=True)
        elif self._paths.staging.exists():
            logger.info("Discarding staging cache left by an unfinished run")
            _remove(self._paths.staging)

        if self._paths.active.exists():
            if BuildCache(self._paths.active).is_sealed(deep=True):
                logger.info("Restored local cache from %s", self._paths.active)
                return CacheRestore(outcome=CacheOutcome.WARM_LOCAL)
            logger.warning("Active cache at %s is not sealed; discarding", self._paths.active)
            _remove(self._paths.active)

        restored = self._restore_remote(revision)
        if restored is not None:
            return CacheRestore(
                outcome=CacheOutcome.WARM_REMOTE,
                key=restored,
                discarded_interrupted=interrupted,
            )

        logger.info("No usable cache found; cold start")
        return CacheRestore(outcome=CacheOutcome.COLD, discarded_interrupted=interrupted)

    def _restore_remote(self, revision: str) -> str | None:
        if self._blob_store is None:
            return None

        exact_key = self.cache_key(revision)
        data = self._blob_store.restore(self._os_id, exact_key)
        if data is not None and self._unpack(data):
            logger.info("Restored cache %s/%s", self._os_id, exact_key)
            return exact_key

        fallback = self._blob_store.restore_prefix(self._os_id, self._key_prefix)
        if fallback is not None:
            key, data = fallback
            if key != exact_key and self._unpack(data):
                logger.info("Restored cache %s/%s via prefix %r", self._os_id, key, self._key_prefix)
                return key
        return None

    def _unpack(self, data: bytes) -> bool:
        active = self._paths.active
        scratch = active.parent / f".{active.name}.restore-{uuid.uuid4().hex[:8]}"
        try:
            extract_archive(data, scratch)
        except (UnsafeArchiveError, tarfile.TarError, OSError, EOFError) as exc:
            logger.warning("Cache blob could not be extracted: %s", exc)
            _remove(scratch)
            return False
        if not BuildCache(scratch).is_sealed(deep=True):
            logger.warning("Restored cache blob is not sealed; ignoring it")
            _remove(scratch)
            return False
        scratch.rename(active)
        return True

    # ------------------------------------------------------------------
    # Build / promote / persist
    # ------------------------------------------------------------------

    def begin(self) -> BuildCache:
        """Create an empty staging store for this run to write into."""
        _remove(self._paths.staging)
        self._paths.staging.mkdir(parents=True)
        return BuildCache(self._paths.staging)

    def abandon(self) -> None:
        """Drop the staging store after a failed run; active is untouched."""
        _remove(self._paths.staging)

    def promote(self) -> None:
        """Replace the active store with the sealed staging store.

        Raises ``CachePromotionError`` if staging is not sealed or any
        filesystem step fails. The journal is left behind on failure so the
        next run detects the incomplete rotation.
        """
        staging = BuildCache(self._paths.staging)
        if not self._paths.staging.is_dir() or not staging.is_sealed(deep=False):
            raise CachePromotionError(
                f"Staging cache at {self._paths.staging} is missing or not sealed"
            )
        try:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            self.journal_path.write_text(
                json.dumps({
                    "active": str(self._paths.active),
                    "staging": str(self._paths.staging),
                    "started_at": datetime.now(timezone.utc).isoformat(),
                }),
                encoding="utf-8",
            )
            self._remove_active()
            self._paths.staging.rename(self._paths.active)
            self.journal_path.unlink()
        except OSError as exc:
            raise CachePromotionError(f"Cache promotion failed: {exc}") from exc
        logger.info("Promoted cache %s -> %s", self._paths.staging, self._paths.active)

    def _remove_active(self) -> None:
        _remove(self._paths.active)

    def persist(self, revision: str) -> str | None:
        """Archive the active store into the blob store under this revision."""
        if self._blob_store is None:
            return None
        cache = self.active_cache()
        if cache is None:
            raise CachePromotionError("No sealed active cache to persist")
        key = self.cache_key(revision)
        try:
            data = build_archive(cache.root, compress=True)
            self._blob_store.save(self._os_id, key, data)
        except OSError as exc:
            raise CachePromotionError(f"Cache persistence failed: {exc}") from exc
        return key

    def status(self) -> dict[str, object]:
        """Snapshot of both stores, for display."""
        active = BuildCache(self._paths.active)
        return {
            "active_path": str(self._paths.active),
            "active_exists": self._paths.active.exists(),
            "active_sealed": self._paths.active.is_dir() and active.is_sealed(deep=False),
            "active_entries": len(active.entries()),
            "active_size_bytes": active.size_bytes(),
            "staging_path": str(self._paths.staging),
            "staging_exists": self._paths.staging.exists(),
            "rotation_interrupted": self.journal_path.exists(),
        }


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
