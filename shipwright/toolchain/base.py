"""Typed interface for compiler toolchains.

The pipeline only ever talks to a toolchain through this protocol, so the
cache logic can be exercised with an in-process fake and driven in
production by ``CargoToolchain``.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class Toolchain(Protocol):
    name: str

    @property
    def version(self) -> str:
        """Version string folded into compile fingerprints."""
        ...

    def build_dependencies(
        self,
        manifest_dir: Path,
        target_dir: Path,
        *,
        profile: str,
    ) -> None:
        """Compile only the third-party dependency graph into *target_dir*.

        *manifest_dir* holds the dependency manifests and nothing else.
        Raises ``DependencyResolutionError`` on failure.
        """
        ...

    def build_binary(
        self,
        source_root: Path,
        target_dir: Path,
        *,
        binary: str,
        profile: str,
        flags: Sequence[str] = (),
    ) -> Path:
        """Compile *binary* from the full source and return the output path.

        Raises ``CompileError`` on failure.
        """
        ...
