"""Image tag set model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ImageTagSet(BaseModel):
    """The three tags published for one built image.

    ``latest`` moves on every successful build; ``date_tag`` and
    ``revision_tag`` are immutable references to this build.
    """

    model_config = ConfigDict(frozen=True)

    registry_host: str
    namespace: str
    revision: str  # full source revision the revision tag abbreviates
    latest: str = "latest"
    date_tag: str
    revision_tag: str

    @property
    def tags(self) -> tuple[str, str, str]:
        return (self.latest, self.date_tag, self.revision_tag)

    @property
    def repository_ref(self) -> str:
        return f"{self.registry_host}/{self.namespace}"

    def references(self) -> list[str]:
        """Return ``host/namespace:tag`` for each tag, in tag order."""
        return [f"{self.repository_ref}:{tag}" for tag in self.tags]
