"""Tests for deterministic archives, safe extraction and rootfs helpers."""

from __future__ import annotations

import io
import os
import tarfile
import time
from pathlib import Path

import pytest

from shipwright.core.archive import UnsafeArchiveError, build_archive, extract_archive
from shipwright.core.image_layers import (
    HARDENING_MARKER,
    OPENSSL_CNF,
    apply_tls_hardening,
    install_binary,
    strip_build_only,
)


def _tree(root: Path) -> Path:
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("a", encoding="utf-8")
    (root / "sub" / "b.bin").write_bytes(b"\x00\x01")
    return root


def _tar_with(member: tarfile.TarInfo, data: bytes = b"") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        member.size = len(data)
        tar.addfile(member, io.BytesIO(data) if data else None)
    return buffer.getvalue()


class TestBuildArchive:
    def test_deterministic_across_mtimes(self, tmp_path: Path):
        root = _tree(tmp_path / "t")
        first = build_archive(root)
        later = time.time() + 3600
        os.utime(root / "a.txt", (later, later))
        assert build_archive(root) == first

    def test_compressed_is_deterministic(self, tmp_path: Path):
        root = _tree(tmp_path / "t")
        assert build_archive(root, compress=True) == build_archive(root, compress=True)

    def test_prefix_and_exclude(self, tmp_path: Path):
        root = _tree(tmp_path / "t")
        data = build_archive(root, prefix="usr/local", exclude=frozenset({"sub"}))
        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            assert tar.getnames() == ["usr/local/a.txt"]

    def test_round_trip(self, tmp_path: Path):
        root = _tree(tmp_path / "t")
        names = extract_archive(build_archive(root, compress=True), tmp_path / "out")
        assert "sub/b.bin" in names
        assert (tmp_path / "out" / "sub" / "b.bin").read_bytes() == b"\x00\x01"


class TestExtractArchiveSafety:
    def test_rejects_parent_traversal(self, tmp_path: Path):
        data = _tar_with(tarfile.TarInfo("../evil"), b"x")
        with pytest.raises(UnsafeArchiveError):
            extract_archive(data, tmp_path / "out")
        assert not (tmp_path / "evil").exists()

    def test_rejects_absolute_path(self, tmp_path: Path):
        with pytest.raises(UnsafeArchiveError):
            extract_archive(_tar_with(tarfile.TarInfo("/etc/passwd"), b"x"), tmp_path / "out")

    def test_rejects_escaping_symlink(self, tmp_path: Path):
        link = tarfile.TarInfo("sub/link")
        link.type = tarfile.SYMTYPE
        link.linkname = "../../outside"
        with pytest.raises(UnsafeArchiveError):
            extract_archive(_tar_with(link), tmp_path / "out")

    def test_accepts_internal_symlink(self, tmp_path: Path):
        link = tarfile.TarInfo("sub/link")
        link.type = tarfile.SYMTYPE
        link.linkname = "../a.txt"
        extract_archive(_tar_with(link), tmp_path / "out")
        assert os.readlink(tmp_path / "out" / "sub" / "link") == "../a.txt"

    def test_rejects_device_node(self, tmp_path: Path):
        dev = tarfile.TarInfo("dev/null")
        dev.type = tarfile.CHRTYPE
        with pytest.raises(UnsafeArchiveError):
            extract_archive(_tar_with(dev), tmp_path / "out")

    def test_rejects_unknown_member_type(self, tmp_path: Path):
        odd = tarfile.TarInfo("odd")
        odd.type = b"Z"
        with pytest.raises(UnsafeArchiveError, match="Unsupported archive member type"):
            extract_archive(_tar_with(odd), tmp_path / "out")
        assert not (tmp_path / "out" / "odd").exists()


class TestRootfsHelpers:
    def test_strip_build_only(self, tmp_path: Path):
        (tmp_path / "var" / "lib" / "apt" / "lists").mkdir(parents=True)
        (tmp_path / "usr" / "share" / "doc").mkdir(parents=True)
        (tmp_path / "usr" / "lib").mkdir(parents=True)
        removed = strip_build_only(tmp_path)
        assert removed == ["var/lib/apt/lists", "usr/share/doc"]
        assert (tmp_path / "usr" / "lib").exists()

    def test_tls_hardening_creates_config(self, tmp_path: Path):
        path = apply_tls_hardening(tmp_path, min_protocol="TLSv1.2", cipher_string="DEFAULT@SECLEVEL=1")
        text = path.read_text(encoding="utf-8")
        assert path == tmp_path / OPENSSL_CNF
        assert "system_default = system_default_sect" in text
        assert "MinProtocol = TLSv1.2" in text
        assert "CipherString = DEFAULT@SECLEVEL=1" in text

    def test_tls_hardening_appends_and_is_idempotent(self, tmp_path: Path):
        cnf = tmp_path / OPENSSL_CNF
        cnf.parent.mkdir(parents=True)
        cnf.write_text("# distro default\n", encoding="utf-8")
        apply_tls_hardening(tmp_path, min_protocol="TLSv1.2", cipher_string="DEFAULT@SECLEVEL=1")
        apply_tls_hardening(tmp_path, min_protocol="TLSv1.2", cipher_string="DEFAULT@SECLEVEL=1")
        text = cnf.read_text(encoding="utf-8")
        assert text.startswith("# distro default")
        assert text.count(HARDENING_MARKER) == 1

    def test_tls_hardening_rejects_bad_protocol(self, tmp_path: Path):
        with pytest.raises(ValueError):
            apply_tls_hardening(tmp_path, min_protocol="SSLv3", cipher_string="DEFAULT")

    def test_install_binary(self, tmp_path: Path):
        artifact = tmp_path / "exloli"
        artifact.write_bytes(b"ELF")
        target = install_binary(tmp_path / "rootfs", artifact, "exloli")
        assert target == tmp_path / "rootfs" / "usr" / "local" / "bin" / "exloli"
        assert target.stat().st_mode & 0o777 == 0o755
