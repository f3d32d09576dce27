"""Runtime configuration: env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
SHIPWRIGHT_* environment variables. The pipeline itself never reads these
directly; ``PipelineConfig.from_settings()`` turns them into the explicit,
frozen configuration that is passed to the orchestrator.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ShipwrightSettings(BaseSettings):
    """Runtime settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SHIPWRIGHT_LOG_LEVEL=DEBUG
        export SHIPWRIGHT_REGISTRY_HOST=registry.example.com
        export SHIPWRIGHT_BINARY_NAME=exloli

    Or via .env file::

        SHIPWRIGHT_ENVIRONMENT=production
        SHIPWRIGHT_OS_IDENTIFIER=Linux
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SHIPWRIGHT_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Work layout (relative paths resolve against the build root)
    work_dir: Path = Path(".shipwright")
    active_cache_path: Path | None = None    # default: <work_dir>/cache
    staging_cache_path: Path | None = None   # default: <work_dir>/cache-new
    ledger_path: Path | None = None          # default: <work_dir>/ledger.db
    blob_store_path: Path | None = None      # default: <work_dir>/blobs
    registry_path: Path | None = None        # default: <work_dir>/registry

    # Build
    binary_name: str = "app"
    build_profile: str = "release"
    cargo_bin: str = "cargo"
    rustc_wrapper: str = ""  # e.g. "sccache"; ignored when not on PATH

    # Image
    base_image: str = "debian:bullseye-slim"
    runtime_packages: list[str] = ["libsqlite3-0", "libssl1.1", "ca-certificates"]
    tls_min_protocol: str = "TLSv1.2"
    tls_cipher_string: str = "DEFAULT@SECLEVEL=1"

    # Publish
    registry_host: str = "ghcr.io"
    registry_token: str = ""
    short_revision_length: int = 7
    export_registry_cache: bool = True

    # Cache persistence
    os_identifier: str = "Linux"
    cache_key_prefix: str = "buildx-"
    cache_retention: int = 3  # persisted blobs kept per OS identifier

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton; import as `from shipwright.config import settings`
settings = ShipwrightSettings()
