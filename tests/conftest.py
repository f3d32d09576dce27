"""Shared test fixtures for Shipwright."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from shipwright.core.blob_store import FilesystemBlobStore
from shipwright.core.errors import CompileError, DependencyResolutionError
from shipwright.core.orchestrator import Orchestrator
from shipwright.core.phase_machine import PhaseMachine
from shipwright.core.run_ledger import RunLedger
from shipwright.models.config import PipelineConfig
from shipwright.models.context import TriggerContext
from shipwright.registry.filesystem import FilesystemRegistry

CARGO_TOML = """\
[package]
name = "exloli"
version = "0.1.0"
edition = "2021"

[dependencies]
serde = "1"
"""

CARGO_LOCK = """\
version = 3

[[package]]
name = "serde"
version = "1.0.197"
"""

MAIN_RS = 'fn main() { println!("hello"); }\n'


# ---------------------------------------------------------------------------
# Fakes for the external collaborators
# ---------------------------------------------------------------------------


class FakeToolchain:
    """In-process stand-in for cargo.

    Dependency builds write one file derived from the manifests; binary
    builds write the main source back out as the "binary". A source file
    containing ``compile_error!`` fails the build.
    """

    name = "fake"

    def __init__(self) -> None:
        self.version = "fake 1.0.0"
        self.dependency_builds: list[dict[str, Any]] = []
        self.binary_builds: list[dict[str, Any]] = []
        self.fail_dependencies = False
        self.produce_no_binary = False

    def build_dependencies(self, manifest_dir: Path, target_dir: Path, *, profile: str) -> None:
        files = sorted(p.relative_to(manifest_dir).as_posix() for p in manifest_dir.rglob("*") if p.is_file())
        self.dependency_builds.append({"files": files, "profile": profile})
        if self.fail_dependencies:
            raise DependencyResolutionError("failed to select a version for `serde`")
        out = target_dir / profile / "deps"
        out.mkdir(parents=True, exist_ok=True)
        lock = (manifest_dir / "Cargo.lock").read_bytes()
        (out / "libserde.rlib").write_bytes(b"rlib:" + lock)

    def build_binary(
        self,
        source_root: Path,
        target_dir: Path,
        *,
        binary: str,
        profile: str,
        flags: Sequence[str] = (),
    ) -> Path:
        seeded = (target_dir / profile / "deps" / "libserde.rlib").exists()
        self.binary_builds.append(
            {"binary": binary, "profile": profile, "flags": list(flags), "seeded": seeded}
        )
        source = (source_root / "src" / "main.rs").read_text(encoding="utf-8")
        if "compile_error!" in source:
            raise CompileError(f"error: could not compile `{binary}`")
        output = target_dir / profile / binary
        if self.produce_no_binary:
            return output
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"ELF:" + source.encode("utf-8"))
        return output


class FakeInstaller:
    """Writes one shared library per package, plus apt debris to strip."""

    def __init__(self) -> None:
        self.installs: list[list[str]] = []

    def install(self, packages: Sequence[str], rootfs: Path) -> list[str]:
        self.installs.append(list(packages))
        for package in packages:
            lib = rootfs / "usr" / "lib" / f"{package}.so"
            lib.parent.mkdir(parents=True, exist_ok=True)
            lib.write_bytes(package.encode("utf-8"))
            doc = rootfs / "usr" / "share" / "doc" / package / "copyright"
            doc.parent.mkdir(parents=True, exist_ok=True)
            doc.write_text("GPL", encoding="utf-8")
        lists = rootfs / "var" / "lib" / "apt" / "lists"
        lists.mkdir(parents=True, exist_ok=True)
        (lists / "deb.debian.org_Packages").write_text("Package: x", encoding="utf-8")
        return [f"{package}.deb" for package in packages]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def write_project(root: Path, *, main: str = MAIN_RS, lock: str = CARGO_LOCK) -> Path:
    """Lay out a minimal cargo project under *root*."""
    (root / "src").mkdir(parents=True, exist_ok=True)
    (root / "Cargo.toml").write_text(CARGO_TOML, encoding="utf-8")
    (root / "Cargo.lock").write_text(lock, encoding="utf-8")
    (root / "src" / "main.rs").write_text(main, encoding="utf-8")
    return root


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Provide a cargo project tree."""
    return write_project(tmp_path / "project")


@pytest.fixture
def config(project: Path) -> PipelineConfig:
    """Provide a PipelineConfig laid out under the project's .shipwright dir."""
    return PipelineConfig.for_root(project, binary_name="exloli")


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def installer() -> FakeInstaller:
    return FakeInstaller()


@pytest.fixture
def registry(tmp_path: Path) -> FilesystemRegistry:
    """Provide an empty filesystem registry."""
    return FilesystemRegistry(tmp_path / "registry")


@pytest.fixture
def blob_store(tmp_path: Path) -> FilesystemBlobStore:
    """Provide an empty blob store for cache persistence."""
    return FilesystemBlobStore(tmp_path / "blobs")


@pytest.fixture
def ledger(tmp_path: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_path / "test_ledger.db")


@pytest.fixture
def phase_machine(ledger: RunLedger) -> PhaseMachine:
    return PhaseMachine(ledger)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "sw-test-run-001"


class Clock:
    """Settable UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_orchestrator(
    config: PipelineConfig,
    toolchain: FakeToolchain,
    installer: FakeInstaller,
    registry: FilesystemRegistry,
    blob_store: FilesystemBlobStore,
    clock: Clock,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator wired to the shared fakes."""

    def _factory(pipeline_config: PipelineConfig | None = None, **overrides: Any) -> Orchestrator:
        kwargs: dict[str, Any] = {
            "toolchain": toolchain,
            "installer": installer,
            "registry": registry,
            "blob_store": blob_store,
            "clock": clock,
        }
        kwargs.update(overrides)
        return Orchestrator(pipeline_config or config, **kwargs)

    return _factory


@pytest.fixture
def trigger() -> Callable[..., TriggerContext]:
    """Factory fixture: build a TriggerContext with sensible defaults."""

    def _factory(revision: str = "abc1234", repository: str = "Org/Repo", **overrides: Any) -> TriggerContext:
        return TriggerContext(revision=revision, repository=repository, **overrides)

    return _factory
