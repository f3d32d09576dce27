"""The compiled release binary."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class Artifact(BaseModel):
    """The single compiled binary of a build, consumed once by the assembler."""

    model_config = ConfigDict(frozen=True)

    name: str  # target entry point, e.g. the --bin name
    path: Path
    digest: str  # "sha256:<hex>"
    size_bytes: int
    context_identity: str
    compile_fingerprint: str
    from_compile_cache: bool = False
