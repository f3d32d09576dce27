"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable**; it fixes the ordering:

    compute_input_hash -> execute -> compute_output_hash -> record

Stages communicate through a shared ``run_context`` dict. The orchestrator
seeds it with:

    ``run_id``, ``revision``, ``repository``, ``namespace``, ``trigger``,
    ``config`` (PipelineConfig), ``toolchain``, ``installer``, ``registry``,
    ``rotator``, ``tag_generator``, ``clock``, ``active_cache``
    (BuildCache or None), ``staging_cache`` (BuildCache)

and stages add, in order: ``build_context``, ``dependency_layer``,
``artifact``, ``image_manifest``/``image_blobs``, ``tag_set``,
``push_result``. Stage results (JSON-safe summaries) accumulate under
``stage_results``.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, ClassVar, final

from shipwright.core.errors import ShipwrightError
from shipwright.core.hasher import canonical_json_bytes, sha256_hex
from shipwright.models.phases import PipelinePhase

logger = logging.getLogger(__name__)


class BaseStage(abc.ABC):
    """Abstract base for all pipeline stages.

    Subclasses **must** implement ``phase``, ``display_name`` and
    ``execute(run_context)``, and set ``failure_error`` to the error class
    that unexpected exceptions inside ``execute()`` are reported as.
    """

    failure_error: ClassVar[type[ShipwrightError]] = ShipwrightError

    @property
    @abc.abstractmethod
    def phase(self) -> PipelinePhase:
        """The pipeline phase this stage runs in."""
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        ...

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Run the stage and return a JSON-safe summary of what it did."""
        ...

    def inputs(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Deterministic inputs hashed into ``input_hash``."""
        return {
            "revision": run_context.get("revision", ""),
            "prior_output_hashes": {
                phase: result.get("_output_hash", "")
                for phase, result in run_context.get("stage_results", {}).items()
            },
        }

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the full stage lifecycle.  **Do not override.**

        Pipeline errors propagate unchanged; any other exception is wrapped
        in the stage's ``failure_error``. Returns the ``execute()`` result
        augmented with ``_input_hash`` and ``_output_hash``.
        """
        input_hash = self._hash({"phase": self.phase.value, "inputs": self.inputs(run_context)})
        logger.info("%s started (input %s)", self.display_name, input_hash[:12])

        try:
            result = self.execute(run_context)
        except ShipwrightError as exc:
            logger.error("%s failed: %s", self.display_name, exc)
            raise
        except Exception as exc:
            logger.error("%s failed unexpectedly: %s", self.display_name, exc)
            raise self.failure_error(f"{self.display_name} failed: {exc}") from exc

        output_hash = self._hash(
            {"phase": self.phase.value, "outputs": {k: v for k, v in result.items() if not k.startswith("_")}}
        )
        result["_input_hash"] = input_hash
        result["_output_hash"] = output_hash
        run_context.setdefault("stage_results", {})[self.phase.value] = result
        logger.info("%s finished (output %s)", self.display_name, output_hash[:12])
        return result

    @staticmethod
    def _hash(payload: dict[str, Any]) -> str:
        return sha256_hex(canonical_json_bytes(payload))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} phase={self.phase.value!r}>"
