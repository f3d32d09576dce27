"""Toolchain adapters: the compiler driver and the runtime package installer."""

from shipwright.toolchain.base import Toolchain
from shipwright.toolchain.cargo import CargoToolchain
from shipwright.toolchain.packages import AptPackageInstaller, PackageInstaller

__all__ = ["Toolchain", "CargoToolchain", "PackageInstaller", "AptPackageInstaller"]
