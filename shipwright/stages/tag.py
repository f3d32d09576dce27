"""Tag generation stage: derives the tag set and guards against collisions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from shipwright.core.errors import TagCollisionError
from shipwright.core.tagging import TagGenerator, check_collision
from shipwright.models.phases import PipelinePhase
from shipwright.registry.base import Registry
from shipwright.stages.base import BaseStage


class TagStage(BaseStage):
    failure_error: ClassVar[type[TagCollisionError]] = TagCollisionError

    @property
    def phase(self) -> PipelinePhase:
        return PipelinePhase.TAG

    @property
    def display_name(self) -> str:
        return "Tag Generation"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        generator: TagGenerator = run_context["tag_generator"]
        now: datetime = run_context["clock"]()
        tag_set = generator.generate(
            run_context["revision"], run_context["repository"], now=now
        )

        registry: Registry | None = run_context.get("registry")
        if registry is not None:
            check_collision(
                tag_set, registry.revision_for(tag_set.namespace, tag_set.revision_tag)
            )

        run_context["tag_set"] = tag_set
        return {
            "namespace": tag_set.namespace,
            "tags": list(tag_set.tags),
            "references": tag_set.references(),
        }
