"""Runtime OS package installation into an image root filesystem."""

from __future__ import annotations

import logging
import subprocess
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from shipwright.core.errors import ImageAssemblyError

logger = logging.getLogger(__name__)


@runtime_checkable
class PackageInstaller(Protocol):
    def install(self, packages: Sequence[str], rootfs: Path) -> list[str]:
        """Install *packages* into *rootfs*; return the installed package files.

        Raises ``ImageAssemblyError`` if any package cannot be installed.
        """
        ...


class AptPackageInstaller:
    """Downloads Debian packages with apt and unpacks them into the rootfs.

    Unpacking with ``dpkg-deb -x`` needs no root privileges and never runs
    maintainer scripts, so only package payloads land in the image.

    Parameters
    ----------
    update:
        Run ``apt-get update`` before downloading.
    """

    def __init__(self, *, update: bool = True, apt_get: str = "apt-get", dpkg_deb: str = "dpkg-deb") -> None:
        self._update = update
        self._apt_get = apt_get
        self._dpkg_deb = dpkg_deb

    def _check(self, cmd: list[str], cwd: Path | None = None) -> None:
        logger.info("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
        except OSError as exc:
            raise ImageAssemblyError(f"Could not run {cmd[0]}: {exc}") from exc
        if result.returncode != 0:
            raise ImageAssemblyError(
                f"{' '.join(cmd)} failed (exit {result.returncode}): {result.stderr.strip()}"
            )

    def install(self, packages: Sequence[str], rootfs: Path) -> list[str]:
        if not packages:
            return []
        if self._update:
            self._check([self._apt_get, "update"])
        with tempfile.TemporaryDirectory(prefix="shipwright-debs-") as tmp:
            download_dir = Path(tmp)
            self._check([self._apt_get, "download", *packages], cwd=download_dir)
            debs = sorted(download_dir.glob("*.deb"))
            if len(debs) < len(packages):
                raise ImageAssemblyError(
                    f"Expected {len(packages)} packages, downloaded {len(debs)}"
                )
            for deb in debs:
                self._check([self._dpkg_deb, "-x", str(deb), str(rootfs)])
            return [deb.name for deb in debs]
