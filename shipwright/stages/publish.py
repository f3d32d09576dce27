"""Publish stage: one all-or-nothing push of the image under every tag."""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from shipwright.core.errors import RegistryPushError
from shipwright.models.context import TriggerContext
from shipwright.models.image import ImageManifest
from shipwright.models.phases import PipelinePhase
from shipwright.models.tags import ImageTagSet
from shipwright.registry.base import Registry
from shipwright.stages.base import BaseStage

logger = logging.getLogger(__name__)


class PublishStage(BaseStage):
    failure_error: ClassVar[type[RegistryPushError]] = RegistryPushError

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.PUBLISH

    @property
    def display_name(self) -> str:
        return "Publish"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        registry: Registry | None = run_context.get("registry")
        if registry is None:
            raise RegistryPushError("No registry configured")
        trigger: TriggerContext = run_context["trigger"]
        manifest: ImageManifest = run_context["image_manifest"]
        blobs: dict[str, bytes] = run_context["image_blobs"]
        tag_set: ImageTagSet = run_context["tag_set"]

        registry.authenticate(trigger.registry_credential)
        result = registry.push(
            tag_set.namespace,
            manifest,
            blobs,
            list(tag_set.tags),
            revision=(tag_set.revision_tag, tag_set.revision),
        )
        run_context["push_result"] = result
        for reference in tag_set.references():
            logger.info("Published %s", reference)
        return {
            "manifest_digest": result.manifest_digest,
            "references": tag_set.references(),
            "uploaded_blobs": len(result.uploaded_blobs),
            "reused_blobs": len(result.reused_blobs),
        }
