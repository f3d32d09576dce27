"""Image tag generation.

Every successful build is published under three tags::

    latest            moves to the newest build
    20240301100000    UTC build time, fixed width, sorts lexicographically
    abc1234           short source revision

``generate_tags()`` is a pure function of the clock reading, the revision and
the repository name. ``TagGenerator`` wraps it to keep date tags monotonic
within one pipeline instance even if the wall clock steps backwards.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from shipwright.core.errors import TagCollisionError
from shipwright.models.tags import ImageTagSet

LATEST_TAG = "latest"
DATE_TAG_FORMAT = "%Y%m%d%H%M%S"
DEFAULT_SHORT_LENGTH = 7
MIN_SHORT_LENGTH = 4

_HEX = re.compile(r"^[0-9a-f]+$")
_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")


def normalize_namespace(repository: str) -> str:
    """Case-fold a fully-qualified repository name into a registry namespace.

    Registries reject uppercase repository names, so ``Org/Repo`` must be
    published as ``org/repo``.
    """
    namespace = repository.strip().lower()
    components = namespace.split("/")
    if len(components) < 2 or not all(_PATH_COMPONENT.match(c) for c in components):
        raise ValueError(
            f"Invalid repository name {repository!r}: expected 'owner/name'"
        )
    return namespace


def format_date_tag(moment: datetime) -> str:
    """Render a UTC timestamp tag. Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(DATE_TAG_FORMAT)


def short_revision(revision: str, length: int = DEFAULT_SHORT_LENGTH) -> str:
    """Abbreviate a hex revision id.

    Raises ``ValueError`` rather than silently accepting an id that is too
    short to abbreviate or is not a hex revision at all.
    """
    if length < MIN_SHORT_LENGTH:
        raise ValueError(f"Short revision length must be at least {MIN_SHORT_LENGTH}")
    normalized = revision.strip().lower()
    if not _HEX.match(normalized):
        raise ValueError(f"Revision {revision!r} is not a hexadecimal revision id")
    if len(normalized) < length:
        raise ValueError(
            f"Revision {revision!r} is shorter than the {length}-character revision tag"
        )
    return normalized[:length]


def generate_tags(
    now: datetime,
    revision: str,
    repository: str,
    *,
    registry_host: str = "ghcr.io",
    short_length: int = DEFAULT_SHORT_LENGTH,
) -> ImageTagSet:
    """Derive the tag set for one build."""
    return ImageTagSet(
        registry_host=registry_host,
        namespace=normalize_namespace(repository),
        revision=revision.strip().lower(),
        latest=LATEST_TAG,
        date_tag=format_date_tag(now),
        revision_tag=short_revision(revision, short_length),
    )


def check_collision(tag_set: ImageTagSet, known_revision: str | None) -> None:
    """Fail if the revision tag already names a different revision.

    *known_revision* is the full revision the registry currently maps the
    tag to, or None if the tag is unused. Republishing the same revision is
    allowed.
    """
    if known_revision is None:
        return
    known = known_revision.strip().lower()
    if known != tag_set.revision:
        raise TagCollisionError(
            f"Revision tag {tag_set.revision_tag!r} in {tag_set.namespace} already "
            f"points at revision {known}, not {tag_set.revision}"
        )


class TagGenerator:
    """Issues tag sets whose date tags never go backwards.

    Parameters
    ----------
    registry_host:
        Host part of every image reference.
    short_length:
        Number of revision characters in the revision tag.
    """

    def __init__(
        self,
        registry_host: str = "ghcr.io",
        short_length: int = DEFAULT_SHORT_LENGTH,
    ) -> None:
        self.registry_host = registry_host
        self.short_length = short_length
        self._last_date_tag: str | None = None

    def generate(self, revision: str, repository: str, now: datetime | None = None) -> ImageTagSet:
        tag_set = generate_tags(
            now or datetime.now(timezone.utc),
            revision,
            repository,
            registry_host=self.registry_host,
            short_length=self.short_length,
        )
        if self._last_date_tag is not None and tag_set.date_tag < self._last_date_tag:
            tag_set = tag_set.model_copy(update={"date_tag": self._last_date_tag})
        self._last_date_tag = tag_set.date_tag
        return tag_set
