"""Run ledger entry model: append-only, hash-chained phase transitions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single phase transition of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    phase: str  # phase entered by this transition
    state_transition: str  # "from_phase->to_phase", e.g. "dep_build->src_build"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    revision: str = ""
    input_hash: str = ""
    output_hash: str = ""
    detail: str = ""  # error message on failure, cache outcome on restore
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
