"""Pipeline configuration models: every path is passed explicitly."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, model_validator

from shipwright.config import ShipwrightSettings
from shipwright.models.context import DEFAULT_MANIFEST_FILES


class CachePaths(BaseModel):
    """The active cache store and the staging store a run builds into.

    The two must never be the same directory, and neither may live inside
    the other, or promotion would delete the cache it is promoting.
    """

    model_config = ConfigDict(frozen=True)

    active: Path
    staging: Path

    @model_validator(mode="after")
    def _distinct(self) -> CachePaths:
        active = self.active.resolve()
        staging = self.staging.resolve()
        if active == staging:
            raise ValueError(f"active and staging cache paths are the same: {active}")
        if active in staging.parents or staging in active.parents:
            raise ValueError(
                f"cache paths must not be nested: active={active}, staging={staging}"
            )
        return self


class PipelineConfig(BaseModel):
    """Project-level configuration for one build-and-publish pipeline."""

    model_config = ConfigDict(frozen=True)

    root: Path
    work_dir: Path
    cache_paths: CachePaths
    binary_name: str = "app"
    manifest_files: tuple[str, ...] = DEFAULT_MANIFEST_FILES
    profile: str = "release"
    build_flags: tuple[str, ...] = ()

    base_image: str = "debian:bullseye-slim"
    runtime_packages: tuple[str, ...] = ("libsqlite3-0", "libssl1.1", "ca-certificates")
    runtime_env: dict[str, str] = {"RUST_BACKTRACE": "full"}
    runtime_workdir: str = "/app"
    tls_min_protocol: str = "TLSv1.2"
    tls_cipher_string: str = "DEFAULT@SECLEVEL=1"

    registry_host: str = "ghcr.io"
    short_revision_length: int = 7
    export_registry_cache: bool = True

    os_identifier: str = "Linux"
    cache_key_prefix: str = "buildx-"

    ledger_db: Path | None = None

    @property
    def artifact_path(self) -> Path:
        """Fixed location of the compiled binary handed to the assembler."""
        return self.work_dir / "out" / self.binary_name

    @property
    def ledger_path(self) -> Path:
        return self.ledger_db or self.work_dir / "ledger.db"

    @classmethod
    def for_root(cls, root: Path, **overrides) -> PipelineConfig:
        """Default layout under ``<root>/.shipwright``."""
        root = Path(root)
        work_dir = Path(overrides.pop("work_dir", root / ".shipwright"))
        cache_paths = overrides.pop(
            "cache_paths",
            CachePaths(active=work_dir / "cache", staging=work_dir / "cache-new"),
        )
        return cls(root=root, work_dir=work_dir, cache_paths=cache_paths, **overrides)

    @classmethod
    def from_settings(cls, settings: ShipwrightSettings, root: Path) -> PipelineConfig:
        """Resolve env-driven settings against a build root."""
        root = Path(root)
        work_dir = _under(root, settings.work_dir)
        active = _under(root, settings.active_cache_path or settings.work_dir / "cache")
        staging = _under(
            root, settings.staging_cache_path or settings.work_dir / "cache-new"
        )
        return cls(
            root=root,
            work_dir=work_dir,
            cache_paths=CachePaths(active=active, staging=staging),
            binary_name=settings.binary_name,
            profile=settings.build_profile,
            base_image=settings.base_image,
            runtime_packages=tuple(settings.runtime_packages),
            tls_min_protocol=settings.tls_min_protocol,
            tls_cipher_string=settings.tls_cipher_string,
            registry_host=settings.registry_host,
            short_revision_length=settings.short_revision_length,
            export_registry_cache=settings.export_registry_cache,
            os_identifier=settings.os_identifier,
            cache_key_prefix=settings.cache_key_prefix,
            ledger_db=_under(root, settings.ledger_path) if settings.ledger_path else None,
        )


def _under(root: Path, path: Path) -> Path:
    return path if path.is_absolute() else root / path
