"""Cargo toolchain driver.

Dependencies are pre-built from a scratch crate that holds the real
``Cargo.toml``/``Cargo.lock`` plus one empty stub per declared entry point
(library and binaries). Cargo then compiles the whole dependency graph
without ever seeing application source.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tomllib
from collections.abc import Mapping, Sequence
from pathlib import Path

from shipwright.core.errors import CompileError, DependencyResolutionError

logger = logging.getLogger(__name__)

_BIN_STUB = "fn main() {}\n"
_LIB_STUB = ""
_OUTPUT_TAIL_LINES = 40


def _tail(text: str, lines: int = _OUTPUT_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


def stub_sources(manifest: Mapping) -> dict[str, str]:
    """Map each entry-point source path a manifest needs to its stub content.

    Always stubs ``src/main.rs`` and ``src/lib.rs``, plus every explicit
    ``[lib]`` or ``[[bin]]`` path the manifest declares.
    """
    stubs = {"src/main.rs": _BIN_STUB, "src/lib.rs": _LIB_STUB}
    lib = manifest.get("lib") or {}
    if "path" in lib:
        stubs[lib["path"]] = _LIB_STUB
    for target in manifest.get("bin", []):
        path = target.get("path") or f"src/bin/{target.get('name', 'main')}.rs"
        stubs[path] = _BIN_STUB
    return stubs


class CargoToolchain:
    """Drives ``cargo`` through subprocesses.

    Parameters
    ----------
    cargo:
        The cargo executable.
    rustc_wrapper:
        Optional compiler cache wrapper (e.g. ``sccache``). Used only when it
        is on PATH; a wrapper cache miss just costs time.
    locked:
        Pass ``--locked`` so the lockfile is never rewritten.
    """

    name = "cargo"

    def __init__(
        self,
        cargo: str = "cargo",
        *,
        rustc_wrapper: str = "",
        locked: bool = True,
    ) -> None:
        self._cargo = cargo
        self._rustc_wrapper = rustc_wrapper
        self._locked = locked
        self._version: str | None = None

    @property
    def version(self) -> str:
        if self._version is None:
            try:
                result = subprocess.run(
                    [self._cargo, "--version"], capture_output=True, text=True, check=True
                )
                self._version = result.stdout.strip()
            except (OSError, subprocess.CalledProcessError) as exc:
                logger.warning("Could not determine cargo version: %s", exc)
                self._version = "unknown"
        return self._version

    # ------------------------------------------------------------------
    # Command helpers
    # ------------------------------------------------------------------

    def _env(self, target_dir: Path) -> dict[str, str]:
        env = dict(os.environ)
        env["CARGO_TARGET_DIR"] = str(target_dir)
        if self._rustc_wrapper and shutil.which(self._rustc_wrapper):
            env["RUSTC_WRAPPER"] = self._rustc_wrapper
        return env

    def _profile_args(self, profile: str) -> list[str]:
        if profile == "release":
            return ["--release"]
        return ["--profile", profile]

    @staticmethod
    def profile_dir(profile: str) -> str:
        """Name of the directory cargo writes a profile's outputs to."""
        return {"dev": "debug", "test": "debug", "bench": "release"}.get(profile, profile)

    def _run(self, args: list[str], cwd: Path, target_dir: Path) -> subprocess.CompletedProcess:
        cmd = [self._cargo, *args]
        if self._locked:
            cmd.append("--locked")
        logger.info("Running %s (cwd=%s)", " ".join(cmd), cwd)
        return subprocess.run(
            cmd, cwd=cwd, env=self._env(target_dir), capture_output=True, text=True
        )

    # ------------------------------------------------------------------
    # Toolchain protocol
    # ------------------------------------------------------------------

    def build_dependencies(self, manifest_dir: Path, target_dir: Path, *, profile: str) -> None:
        manifest_path = Path(manifest_dir) / "Cargo.toml"
        try:
            manifest = tomllib.loads(manifest_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise DependencyResolutionError(f"Unreadable Cargo.toml: {exc}") from exc

        for rel, content in stub_sources(manifest).items():
            stub = Path(manifest_dir) / rel
            stub.parent.mkdir(parents=True, exist_ok=True)
            stub.write_text(content, encoding="utf-8")

        try:
            result = self._run(["build", *self._profile_args(profile)], manifest_dir, target_dir)
        except OSError as exc:
            raise DependencyResolutionError(f"Could not run {self._cargo}: {exc}") from exc
        if result.returncode != 0:
            raise DependencyResolutionError(
                f"Dependency build failed (exit {result.returncode}):\n{_tail(result.stderr)}"
            )
        self._clean_own_package(manifest, manifest_dir, target_dir, profile)

    def _clean_own_package(
        self, manifest: Mapping, manifest_dir: Path, target_dir: Path, profile: str
    ) -> None:
        """Drop the stub-built outputs of the project's own package.

        The layer must hold third-party crates only: stub artifacts are newer
        than the real sources, so cargo would treat them as fresh.
        """
        package = (manifest.get("package") or {}).get("name")
        if not package:
            return
        args = ["clean", *self._profile_args(profile), "-p", package]
        try:
            result = self._run(args, manifest_dir, target_dir)
        except OSError as exc:
            raise DependencyResolutionError(f"Could not run {self._cargo}: {exc}") from exc
        if result.returncode != 0:
            raise DependencyResolutionError(
                f"Cleaning stub outputs of {package} failed (exit {result.returncode}):\n"
                f"{_tail(result.stderr)}"
            )

    def build_binary(
        self,
        source_root: Path,
        target_dir: Path,
        *,
        binary: str,
        profile: str,
        flags: Sequence[str] = (),
    ) -> Path:
        args = ["build", *self._profile_args(profile), "--bin", binary, *flags]
        try:
            result = self._run(args, source_root, target_dir)
        except OSError as exc:
            raise CompileError(f"Could not run {self._cargo}: {exc}") from exc
        if result.returncode != 0:
            raise CompileError(
                f"Build of {binary} failed (exit {result.returncode}):\n{_tail(result.stderr)}"
            )
        return Path(target_dir) / self.profile_dir(profile) / binary
