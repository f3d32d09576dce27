"""Wiring shared by the CLI commands: settings -> concrete collaborators."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.logging import RichHandler

from shipwright.config import ShipwrightSettings
from shipwright.core.blob_store import FilesystemBlobStore
from shipwright.core.cache_rotator import CacheRotator
from shipwright.models.config import PipelineConfig
from shipwright.registry.filesystem import FilesystemRegistry


def configure_logging(level: str, *, debug: bool = False) -> None:
    """Route all ``shipwright.*`` loggers through a Rich handler."""
    logging.basicConfig(
        level=logging.DEBUG if debug else level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=debug, show_path=debug)],
        force=True,
    )


def load_config(settings: ShipwrightSettings, root: Path, **overrides) -> PipelineConfig:
    config = PipelineConfig.from_settings(settings, root)
    if overrides:
        config = config.model_copy(update=overrides)
    return config


def _resolve(root: Path, configured: Path | None, default: Path) -> Path:
    path = configured or default
    return path if path.is_absolute() else root / path


def open_registry(settings: ShipwrightSettings, root: Path) -> FilesystemRegistry:
    path = _resolve(root, settings.registry_path, settings.work_dir / "registry")
    return FilesystemRegistry(path, token=settings.registry_token or None)


def open_blob_store(settings: ShipwrightSettings, root: Path) -> FilesystemBlobStore:
    path = _resolve(root, settings.blob_store_path, settings.work_dir / "blobs")
    return FilesystemBlobStore(
        path, retain=settings.cache_retention, key_prefix=settings.cache_key_prefix
    )


def open_rotator(settings: ShipwrightSettings, root: Path) -> CacheRotator:
    config = load_config(settings, root)
    return CacheRotator(
        config.cache_paths,
        open_blob_store(settings, root),
        os_id=config.os_identifier,
        key_prefix=config.cache_key_prefix,
    )
