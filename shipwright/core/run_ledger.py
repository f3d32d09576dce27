"""Append-only, hash-chained run ledger backed by SQLite.

Every phase transition of every run is one row. Rows are never updated or
deleted; each row carries the hash of the previous row of the same run, so
a rewritten history is detectable with ``verify_chain()``.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

from shipwright.core.hasher import compute_entry_hash
from shipwright.models.ledger import LedgerEntry

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id            TEXT NOT NULL UNIQUE,
    run_id              TEXT NOT NULL,
    phase               TEXT NOT NULL,
    state_transition    TEXT NOT NULL,
    timestamp_utc       TEXT NOT NULL,
    revision            TEXT NOT NULL DEFAULT '',
    input_hash          TEXT NOT NULL DEFAULT '',
    output_hash         TEXT NOT NULL DEFAULT '',
    detail              TEXT NOT NULL DEFAULT '',
    previous_entry_hash TEXT NOT NULL DEFAULT '',
    entry_hash          TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""

_COLUMNS = (
    "entry_id, run_id, phase, state_transition, timestamp_utc, revision, "
    "input_hash, output_hash, detail, previous_entry_hash, entry_hash"
)


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained run ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry, linking it to the previous entry of its run.

        Returns the sealed entry. This is the only write method.
        """
        previous_hash = self._get_latest_hash(entry.run_id)
        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_hash = compute_entry_hash(entry_dict)

        sealed = entry.model_copy(
            update={"previous_entry_hash": previous_hash, "entry_hash": entry_hash}
        )
        self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO run_ledger ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.phase,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat(),
                    entry.revision,
                    entry.input_hash,
                    entry.output_hash,
                    entry.detail,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        """Return the most recent ledger entry for a run, or None."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self, limit: int | None = None) -> list[str]:
        """Return distinct run_ids, most recently started first."""
        query = "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MIN(id) DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            entry_id,
            run_id,
            phase,
            state_transition,
            timestamp_utc,
            revision,
            input_hash,
            output_hash,
            detail,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            phase=phase,
            state_transition=state_transition,
            timestamp_utc=datetime.fromisoformat(timestamp_utc),
            revision=revision,
            input_hash=input_hash,
            output_hash=output_hash,
            detail=detail,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
