"""Sealed, namespaced build cache store.

Storage layout::

    {root}/{namespace}/{key}/...          entry content
    {root}/{namespace}/{key}/.seal.json   entry seal, written last
    {root}/.store-seal.json               store seal, written last of all

An entry is only trusted when its seal exists and every sealed file still
hashes to the recorded digest. A store is only trusted when its store seal
lists exactly the sealed entries present. Anything else is treated as
absent: stale or half-written entries are ignored, never partially reused.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

from pydantic import ValidationError

from shipwright.core.hasher import canonical_json_bytes, file_sha256, sha256_hex
from shipwright.models.cache import (
    CacheEntrySeal,
    CacheNamespace,
    SealedFile,
    StoreSeal,
)

logger = logging.getLogger(__name__)

SEAL_FILENAME = ".seal.json"
STORE_SEAL_FILENAME = ".store-seal.json"
_STAGING_PREFIX = ".tmp-"


def _entry_seal_hash(namespace: CacheNamespace, key: str, files: list[SealedFile]) -> str:
    payload = {
        "namespace": namespace.value,
        "key": key,
        "files": [f.model_dump() for f in files],
    }
    return sha256_hex(canonical_json_bytes(payload))


def _store_seal_hash(entries: dict[str, str]) -> str:
    return sha256_hex(canonical_json_bytes({"entries": entries}))


def _list_files(directory: Path) -> list[SealedFile]:
    files: list[SealedFile] = []
    for path in sorted(directory.rglob("*"), key=lambda p: p.relative_to(directory).as_posix()):
        rel = path.relative_to(directory).as_posix()
        if rel == SEAL_FILENAME or path.is_dir() or path.is_symlink():
            continue
        files.append(
            SealedFile(path=rel, sha256=file_sha256(path), size_bytes=path.stat().st_size)
        )
    return files


def _read_model(path: Path, model: type):
    try:
        return model.model_validate_json(path.read_bytes())
    except (OSError, ValidationError, ValueError):
        return None


class BuildCache:
    """One cache store directory (the active one or the staging one).

    Parameters
    ----------
    root:
        The store directory. Not created until something is written.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def entry_path(self, namespace: CacheNamespace, key: str) -> Path:
        return self._root / namespace.value / key

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def lookup(self, namespace: CacheNamespace, key: str) -> Path | None:
        """Return the entry directory if it is present and its seal verifies."""
        path = self.entry_path(namespace, key)
        if not path.is_dir():
            return None
        if not self.verify_entry(namespace, key):
            logger.warning("Ignoring unsealed or corrupt cache entry %s/%s", namespace.value, key[:12])
            return None
        return path

    def read_seal(self, namespace: CacheNamespace, key: str) -> CacheEntrySeal | None:
        return _read_model(self.entry_path(namespace, key) / SEAL_FILENAME, CacheEntrySeal)

    def verify_entry(self, namespace: CacheNamespace, key: str) -> bool:
        """Re-hash every file of an entry and compare against its seal."""
        path = self.entry_path(namespace, key)
        seal = self.read_seal(namespace, key)
        if seal is None or seal.namespace != namespace or seal.key != key:
            return False
        if seal.seal_hash != _entry_seal_hash(namespace, key, seal.files):
            return False
        return _list_files(path) == seal.files

    def stage_entry(self, namespace: CacheNamespace, key: str) -> Path:
        """Create an empty scratch directory to build an entry in."""
        scratch = self._root / namespace.value / f"{_STAGING_PREFIX}{key[:16]}-{uuid.uuid4().hex[:8]}"
        scratch.mkdir(parents=True)
        return scratch

    def commit_entry(self, namespace: CacheNamespace, key: str, scratch: Path) -> CacheEntrySeal:
        """Seal a scratch directory and move it into place as the entry."""
        stale_seal = scratch / SEAL_FILENAME
        if stale_seal.exists():
            stale_seal.unlink()
        files = _list_files(scratch)
        seal = CacheEntrySeal(
            namespace=namespace,
            key=key,
            files=files,
            seal_hash=_entry_seal_hash(namespace, key, files),
        )
        stale_seal.write_text(seal.model_dump_json(indent=2), encoding="utf-8")

        final = self.entry_path(namespace, key)
        if final.exists():
            shutil.rmtree(final)
        scratch.rename(final)
        logger.debug("Committed cache entry %s/%s (%d files)", namespace.value, key[:12], len(files))
        return seal

    def discard_scratch(self, scratch: Path) -> None:
        shutil.rmtree(scratch, ignore_errors=True)

    def import_entry(self, namespace: CacheNamespace, key: str, source: Path) -> CacheEntrySeal:
        """Copy a verified entry from another store into this one."""
        scratch = self.stage_entry(namespace, key)
        shutil.copytree(source, scratch, symlinks=True, dirs_exist_ok=True)
        return self.commit_entry(namespace, key, scratch)

    def entries(self) -> list[tuple[CacheNamespace, str]]:
        """List committed entries (sealed or not), skipping scratch directories."""
        found: list[tuple[CacheNamespace, str]] = []
        for namespace in CacheNamespace:
            ns_dir = self._root / namespace.value
            if not ns_dir.is_dir():
                continue
            for child in sorted(ns_dir.iterdir()):
                if child.is_dir() and not child.name.startswith(_STAGING_PREFIX):
                    found.append((namespace, child.name))
        return found

    # ------------------------------------------------------------------
    # Whole store
    # ------------------------------------------------------------------

    def seal_store(self) -> StoreSeal:
        """Seal the store over its current sealed entries.

        Unsealed entries and leftover scratch directories are removed first,
        so the sealed store holds exactly what the seal lists.
        """
        self._root.mkdir(parents=True, exist_ok=True)
        entries: dict[str, str] = {}
        for namespace in CacheNamespace:
            ns_dir = self._root / namespace.value
            if not ns_dir.is_dir():
                continue
            for child in sorted(ns_dir.iterdir()):
                seal = self.read_seal(namespace, child.name) if child.is_dir() else None
                if seal is None or not self.verify_entry(namespace, child.name):
                    logger.debug("Dropping unsealed cache path %s", child)
                    if child.is_dir():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
                    continue
                entries[f"{namespace.value}/{child.name}"] = seal.seal_hash

        store_seal = StoreSeal(entries=entries, seal_hash=_store_seal_hash(entries))
        (self._root / STORE_SEAL_FILENAME).write_text(
            store_seal.model_dump_json(indent=2), encoding="utf-8"
        )
        return store_seal

    def read_store_seal(self) -> StoreSeal | None:
        return _read_model(self._root / STORE_SEAL_FILENAME, StoreSeal)

    def is_sealed(self, *, deep: bool = True) -> bool:
        """Whether this store is complete and trustworthy.

        With ``deep=True`` every entry's files are re-hashed as well.
        """
        store_seal = self.read_store_seal()
        if store_seal is None or store_seal.seal_hash != _store_seal_hash(store_seal.entries):
            return False
        present = {f"{ns.value}/{key}" for ns, key in self.entries()}
        if present != set(store_seal.entries):
            return False
        for name, seal_hash in store_seal.entries.items():
            ns_value, key = name.split("/", 1)
            namespace = CacheNamespace(ns_value)
            seal = self.read_seal(namespace, key)
            if seal is None or seal.seal_hash != seal_hash:
                return False
            if deep and not self.verify_entry(namespace, key):
                return False
        return True

    def size_bytes(self) -> int:
        if not self._root.exists():
            return 0
        return sum(p.stat().st_size for p in self._root.rglob("*") if p.is_file() and not p.is_symlink())
