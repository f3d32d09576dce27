"""Build inputs: the source tree and the trigger that asked for a build."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from shipwright.core.errors import DependencyResolutionError
from shipwright.core.hasher import (
    compute_context_identity,
    hash_manifest_files,
    hash_tree,
)

DEFAULT_MANIFEST_FILES: tuple[str, ...] = ("Cargo.toml", "Cargo.lock")

# Directories that never count as build input.
DEFAULT_TREE_EXCLUDES: frozenset[str] = frozenset({".git", "target", ".shipwright"})


class BuildContext(BaseModel):
    """The full set of inputs for one build: source tree plus lockfile.

    ``manifest_hash`` keys the dependency cache namespace, ``identity``
    (manifest hash + tree hash) keys everything derived from the full source.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    manifest_files: tuple[str, ...] = DEFAULT_MANIFEST_FILES
    manifest_hash: str
    tree_hash: str

    @property
    def identity(self) -> str:
        return compute_context_identity(self.manifest_hash, self.tree_hash)

    @classmethod
    def from_directory(
        cls,
        root: Path,
        manifest_files: tuple[str, ...] = DEFAULT_MANIFEST_FILES,
        *,
        excludes: frozenset[str] = DEFAULT_TREE_EXCLUDES,
    ) -> BuildContext:
        """Hash a source tree into a BuildContext.

        Raises ``DependencyResolutionError`` if any manifest file is missing.
        """
        root = Path(root)
        missing = [name for name in manifest_files if not (root / name).is_file()]
        if missing:
            raise DependencyResolutionError(
                f"Dependency manifest files missing under {root}: {', '.join(missing)}"
            )
        return cls(
            root=root,
            manifest_files=tuple(manifest_files),
            manifest_hash=hash_manifest_files(root, manifest_files),
            tree_hash=hash_tree(root, excludes),
        )


class TriggerContext(BaseModel):
    """Inputs supplied by the surrounding scheduler for one run."""

    model_config = ConfigDict(frozen=True)

    revision: str
    repository: str
    registry_credential: SecretStr | None = None
    triggered_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
