"""Pipeline orchestrator: the central coordinator for Shipwright runs.

The Orchestrator wires the RunLedger, PhaseMachine, CacheRotator, TagGenerator,
toolchain, package installer and registry into one strictly sequential run:

    COLD|WARM_RESTORED -> DEP_BUILD -> SRC_BUILD -> ASSEMBLE -> TAG
        -> PUBLISH -> ROTATE_CACHE -> DONE

Any stage failure moves the run straight to FAILED. No later stage runs,
the staging cache is dropped and the active cache is left untouched.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from shipwright.core.blob_store import BlobStore
from shipwright.core.cache_rotator import CacheRotator
from shipwright.core.errors import ShipwrightError
from shipwright.core.phase_machine import PhaseMachine
from shipwright.core.run_ledger import RunLedger
from shipwright.core.tagging import TagGenerator, normalize_namespace, short_revision
from shipwright.models.cache import CacheOutcome
from shipwright.models.config import PipelineConfig
from shipwright.models.context import TriggerContext
from shipwright.models.phases import PipelinePhase
from shipwright.models.reports import RunReport
from shipwright.registry.base import Registry
from shipwright.stages import BaseStage, build_stages
from shipwright.toolchain.base import Toolchain
from shipwright.toolchain.packages import PackageInstaller

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _last_output_hash(stage_results: dict[str, dict[str, Any]]) -> str:
    if not stage_results:
        return ""
    return list(stage_results.values())[-1].get("_output_hash", "")


class Orchestrator:
    """Runs the build-and-publish pipeline.

    Parameters
    ----------
    config:
        Pipeline configuration, including the explicit cache paths.
    toolchain:
        Compiler driver for dependency and source builds.
    installer:
        Installs runtime OS packages into the image root filesystem.
    registry:
        Destination registry; also consulted as a remote cache hint.
    blob_store:
        Optional persistence for the cache store between runs.
    ledger:
        Run ledger; defaults to ``config.ledger_path``.
    tag_generator:
        Shared across runs so date tags stay monotonic.
    clock:
        Source of the build time, UTC.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        toolchain: Toolchain,
        installer: PackageInstaller,
        registry: Registry,
        blob_store: BlobStore | None = None,
        ledger: RunLedger | None = None,
        tag_generator: TagGenerator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.toolchain = toolchain
        self.installer = installer
        self.registry = registry
        self.ledger = ledger or RunLedger(config.ledger_path)
        self.phase_machine = PhaseMachine(self.ledger)
        self.rotator = CacheRotator(
            config.cache_paths,
            blob_store,
            os_id=config.os_identifier,
            key_prefix=config.cache_key_prefix,
        )
        self.tag_generator = tag_generator or TagGenerator(
            registry_host=config.registry_host,
            short_length=config.short_revision_length,
        )
        self.clock = clock
        self.last_report: RunReport | None = None

    def _new_run_id(self) -> str:
        ts = self.clock().astimezone(timezone.utc).strftime("%Y%m%d-%H%M%S")
        return f"sw-{ts}-{uuid.uuid4().hex[:6]}"

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, trigger: TriggerContext) -> RunReport:
        """Execute one full pipeline run for *trigger*.

        Returns the final RunReport. Raises the ShipwrightError that ended the
        run on failure; ``last_report`` then describes how far it got.
        Invalid trigger input raises ValueError before any phase runs.
        """
        namespace = normalize_namespace(trigger.repository)
        short_revision(trigger.revision, self.config.short_revision_length)
        revision = trigger.revision.strip().lower()

        run_id = self._new_run_id()
        self.phase_machine.start(run_id)
        report = RunReport(run_id=run_id, revision=revision)
        self.last_report = report
        logger.info("Run %s: %s@%s", run_id, namespace, revision[:12])

        try:
            restore = self.rotator.restore(revision)
            staging = self.rotator.begin()
        except OSError as exc:
            self._fail(run_id, revision, report, PipelinePhase.PENDING, exc)
            raise
        start_phase = (
            PipelinePhase.COLD if restore.outcome == CacheOutcome.COLD else PipelinePhase.WARM_RESTORED
        )
        self.phase_machine.transition(
            run_id, start_phase, revision=revision, detail=restore.outcome.value
        )
        report = report.model_copy(update={"phase": start_phase, "cache_outcome": restore.outcome})
        self.last_report = report

        run_context: dict[str, Any] = {
            "run_id": run_id,
            "revision": revision,
            "repository": trigger.repository,
            "namespace": namespace,
            "trigger": trigger,
            "config": self.config,
            "toolchain": self.toolchain,
            "installer": self.installer,
            "registry": self.registry,
            "rotator": self.rotator,
            "tag_generator": self.tag_generator,
            "clock": self.clock,
            "active_cache": self.rotator.active_cache(),
            "staging_cache": staging,
            "stage_results": {},
        }

        for stage in build_stages():
            report = self._run_stage(stage, run_context, report)

        self.phase_machine.transition(
            run_id,
            PipelinePhase.DONE,
            revision=revision,
            output_hash=_last_output_hash(run_context["stage_results"]),
        )
        report = report.model_copy(update={"phase": PipelinePhase.DONE})
        self.last_report = report
        logger.info("Run %s done: %s", run_id, ", ".join(report.references))
        return report

    def _run_stage(
        self, stage: BaseStage, run_context: dict[str, Any], report: RunReport
    ) -> RunReport:
        run_id = run_context["run_id"]
        revision = run_context["revision"]
        prior = run_context["stage_results"]
        self.phase_machine.transition(
            run_id,
            stage.phase,
            revision=revision,
            input_hash=_last_output_hash(prior),
        )
        try:
            result = stage.run_stage(run_context)
        except ShipwrightError as exc:
            self._fail(run_id, revision, report, stage.phase, exc)
            raise
        except BaseException:
            # Cancelled from outside: leave the ledger and caches for the next run to sort out.
            self.rotator.abandon()
            raise

        report = report.model_copy(update=self._report_update(stage.phase, result))
        self.last_report = report
        return report

    @staticmethod
    def _report_update(phase: PipelinePhase, result: dict[str, Any]) -> dict[str, Any]:
        update: dict[str, Any] = {"phase": phase}
        if phase == PipelinePhase.DEP_BUILD:
            update["dependency_source"] = result["source"]
        elif phase == PipelinePhase.SRC_BUILD:
            update["artifact_digest"] = result["artifact_digest"]
        elif phase == PipelinePhase.ASSEMBLE:
            update["manifest_digest"] = result["manifest_digest"]
        elif phase == PipelinePhase.TAG:
            update["references"] = result["references"]
        elif phase == PipelinePhase.PUBLISH:
            update["published"] = True
        elif phase == PipelinePhase.ROTATE_CACHE:
            update["cache_promoted"] = True
        return update

    def _fail(
        self,
        run_id: str,
        revision: str,
        report: RunReport,
        phase: PipelinePhase,
        exc: BaseException,
    ) -> None:
        if phase != PipelinePhase.ROTATE_CACHE:
            self.rotator.abandon()
        self.phase_machine.fail(
            run_id, revision=revision, detail=f"{type(exc).__name__}: {exc}"
        )
        self.last_report = report.model_copy(
            update={
                "phase": PipelinePhase.FAILED,
                "failed_phase": phase,
                "error": f"{type(exc).__name__}: {exc}",
            }
        )
        logger.error("Run %s failed in %s: %s", run_id, phase.value, exc)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def history(self, run_id: str):
        return self.ledger.get_run_entries(run_id)

    def verify_chain(self, run_id: str) -> bool:
        return self.ledger.verify_chain(run_id)
