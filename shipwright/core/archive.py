"""Deterministic tar archives and safe extraction.

Archives built here are byte-for-byte reproducible: entries are sorted and
carry zeroed mtimes and ownership, so the same directory content always
yields the same digest. That is what lets registry layers and cache blobs
be reused across runs.
"""

from __future__ import annotations

import gzip
import io
import os
import tarfile
from pathlib import Path, PurePosixPath


class UnsafeArchiveError(ValueError):
    """Raised when an archive member would escape the extraction directory."""


def _normalized_info(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info


def build_archive(
    root: Path,
    *,
    prefix: str = "",
    exclude: frozenset[str] = frozenset(),
    compress: bool = False,
) -> bytes:
    """Archive everything under *root* deterministically.

    Parameters
    ----------
    root:
        Directory whose contents are archived (the directory itself is not).
    prefix:
        Optional path prefix inside the archive, e.g. ``"usr/local/bin"``.
    exclude:
        Top-level names under *root* to leave out.
    compress:
        Gzip the tarball (with a zeroed gzip timestamp).
    """
    root = Path(root)
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as tar:
        paths = sorted(
            (p for p in root.rglob("*") if p.relative_to(root).parts[0] not in exclude),
            key=lambda p: p.relative_to(root).as_posix(),
        )
        for path in paths:
            rel = path.relative_to(root).as_posix()
            arcname = f"{prefix.strip('/')}/{rel}" if prefix else rel
            info = _normalized_info(tar.gettarinfo(str(path), arcname=arcname))
            if info.isfile():
                with open(path, "rb") as fh:
                    tar.addfile(info, fh)
            else:
                tar.addfile(info)
    data = buffer.getvalue()
    if compress:
        return gzip.compress(data, mtime=0)
    return data


def extract_archive(data: bytes, dest: Path) -> list[str]:
    """Extract a (possibly gzipped) tar archive into *dest*.

    Members with absolute paths, ``..`` components, links pointing outside
    *dest*, or device nodes are rejected before anything is written.
    Returns the extracted member names.
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
        members = tar.getmembers()
        for member in members:
            _check_member(member)
        for member in members:
            target = dest / member.name
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.issym():
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.is_symlink() or target.exists():
                    target.unlink()
                os.symlink(member.linkname, target)
            elif member.islnk():
                target.parent.mkdir(parents=True, exist_ok=True)
                os.link(dest / member.linkname, target)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                source = tar.extractfile(member)
                if source is None:
                    raise UnsafeArchiveError(f"Archive member has no content: {member.name}")
                with source, open(target, "wb") as fh:
                    fh.write(source.read())
                os.chmod(target, member.mode & 0o777)
    return [m.name for m in members]


def _check_member(member: tarfile.TarInfo) -> None:
    name = PurePosixPath(member.name)
    if name.is_absolute() or ".." in name.parts:
        raise UnsafeArchiveError(f"Archive member escapes destination: {member.name}")
    if member.isdev() or member.isfifo():
        raise UnsafeArchiveError(f"Archive member is a device node: {member.name}")
    if not (member.isreg() or member.isdir() or member.issym() or member.islnk()):
        raise UnsafeArchiveError(f"Unsupported archive member type {member.type!r}: {member.name}")
    if member.issym() or member.islnk():
        link = PurePosixPath(member.linkname)
        resolved = link if member.islnk() else name.parent / link
        if link.is_absolute() or ".." in PurePosixPath(*_collapse(resolved.parts)).parts:
            raise UnsafeArchiveError(
                f"Archive link escapes destination: {member.name} -> {member.linkname}"
            )


def _collapse(parts: tuple[str, ...]) -> list[str]:
    """Normalize ``..`` components, keeping any that climb above the root."""
    stack: list[str] = []
    for part in parts:
        if part == "..":
            if stack and stack[-1] != "..":
                stack.pop()
            else:
                stack.append("..")
        elif part not in ("", "."):
            stack.append(part)
    return stack or ["."]
