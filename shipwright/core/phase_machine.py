"""Deterministic phase state machine for pipeline runs.

Enforces:
- Valid transitions only (VALID_TRANSITIONS table)
- Strict ordering: no phase is entered unless its predecessor completed
- FAILED and DONE are terminal
- Every transition recorded in the run ledger
"""

from __future__ import annotations

import logging

from shipwright.core.errors import InvalidTransitionError
from shipwright.core.run_ledger import RunLedger
from shipwright.models.ledger import LedgerEntry
from shipwright.models.phases import TERMINAL_PHASES, VALID_TRANSITIONS, PipelinePhase

logger = logging.getLogger(__name__)


class PhaseMachine:
    """Tracks the current phase of each run and records every transition.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger
        # In-memory state cache: run_id -> current phase
        self._phases: dict[str, PipelinePhase] = {}

    def start(self, run_id: str) -> PipelinePhase:
        """Register a new run in the PENDING phase."""
        if self._ledger.get_latest(run_id) is not None:
            raise InvalidTransitionError(f"Run {run_id} already exists in the ledger")
        self._phases[run_id] = PipelinePhase.PENDING
        return PipelinePhase.PENDING

    def current(self, run_id: str) -> PipelinePhase:
        """Return the current phase of a run, rebuilding from the ledger if needed."""
        if run_id not in self._phases:
            self._rebuild(run_id)
        return self._phases[run_id]

    def _rebuild(self, run_id: str) -> None:
        latest = self._ledger.get_latest(run_id)
        self._phases[run_id] = (
            PipelinePhase(latest.phase) if latest else PipelinePhase.PENDING
        )

    def is_terminal(self, run_id: str) -> bool:
        return self.current(run_id) in TERMINAL_PHASES

    def transition(
        self,
        run_id: str,
        target: PipelinePhase,
        *,
        revision: str = "",
        input_hash: str = "",
        output_hash: str = "",
        detail: str = "",
    ) -> LedgerEntry:
        """Move a run into *target*, recording the transition in the ledger.

        Raises ``InvalidTransitionError`` if the transition is not allowed.
        """
        current = self.current(run_id)
        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition run {run_id} from {current.value} to {target.value}. "
                f"Allowed: {sorted(p.value for p in allowed)}"
            )

        entry = LedgerEntry(
            run_id=run_id,
            phase=target.value,
            state_transition=f"{current.value}->{target.value}",
            revision=revision,
            input_hash=input_hash,
            output_hash=output_hash,
            detail=detail,
        )
        sealed = self._ledger.append(entry)
        self._phases[run_id] = target
        logger.debug("run %s: %s", run_id, sealed.state_transition)
        return sealed

    def fail(self, run_id: str, *, revision: str = "", detail: str = "") -> LedgerEntry:
        """Move a run straight to FAILED from whatever phase it is in."""
        return self.transition(
            run_id, PipelinePhase.FAILED, revision=revision, detail=detail
        )

    def available_transitions(self, run_id: str) -> set[PipelinePhase]:
        return set(VALID_TRANSITIONS.get(self.current(run_id), set()))
