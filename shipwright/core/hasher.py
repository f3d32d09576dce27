"""Canonical hashing helpers for cache keys, fingerprints and content addressing.

Two cache namespaces are keyed by different hash functions over overlapping
input: the dependency namespace by the manifest files alone, the compile
namespace by the whole tree plus build flags.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

_CHUNK_SIZE = 1024 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes with sorted keys and no whitespace."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: Path) -> str:
    """Stream a file through SHA-256 and return the hex digest."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def digest_bytes(data: bytes) -> str:
    """Content-address raw bytes as ``sha256:<hex>``."""
    return f"sha256:{sha256_hex(data)}"


def strip_digest_prefix(digest: str) -> str:
    """Strip the ``sha256:`` prefix from a content address, if present."""
    return digest.removeprefix("sha256:")


def hash_manifest_files(root: Path, manifest_files: Sequence[str]) -> str:
    """SHA-256 over the sorted ``(relative path, file digest)`` pairs.

    Only the dependency manifests feed this key, so edits to application
    source never change it.
    """
    pairs = [
        [Path(name).as_posix(), file_sha256(Path(root) / name)]
        for name in sorted(manifest_files)
    ]
    return sha256_hex(canonical_json_bytes({"manifests": pairs}))


def iter_tree_files(root: Path, excludes: Iterable[str] = ()) -> list[Path]:
    """Return every file under *root* (sorted, relative), skipping excluded dirs."""
    root = Path(root)
    skip = set(excludes)
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in skip)
        for name in sorted(filenames):
            found.append((Path(dirpath) / name).relative_to(root))
    return sorted(found, key=lambda p: p.as_posix())


def hash_tree(root: Path, excludes: Iterable[str] = ()) -> str:
    """SHA-256 over every file path and content in the tree.

    Symlinks contribute their target string rather than the linked content.
    """
    root = Path(root)
    entries: list[list[str]] = []
    for rel in iter_tree_files(root, excludes):
        full = root / rel
        if full.is_symlink():
            entries.append([rel.as_posix(), "link:" + os.readlink(full)])
        else:
            entries.append([rel.as_posix(), file_sha256(full)])
    return sha256_hex(canonical_json_bytes({"tree": entries}))


def compute_context_identity(manifest_hash: str, tree_hash: str) -> str:
    """Identity of a build context: hash of lockfile hash + tree hash."""
    return sha256_hex(
        canonical_json_bytes({"manifest": manifest_hash, "tree": tree_hash})
    )


def compute_compile_fingerprint(
    context_identity: str,
    *,
    target: str,
    profile: str,
    flags: Sequence[str] = (),
    toolchain_version: str = "",
) -> str:
    """Fingerprint of one compilation: source identity plus every flag."""
    payload = {
        "context": context_identity,
        "target": target,
        "profile": profile,
        "flags": list(flags),
        "toolchain": toolchain_version,
    }
    return sha256_hex(canonical_json_bytes(payload))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself)."""
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
