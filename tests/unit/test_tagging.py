"""Tests for tag generation: case-folding, date tags, revision tags, collisions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shipwright.core.errors import TagCollisionError
from shipwright.core.tagging import (
    TagGenerator,
    check_collision,
    format_date_tag,
    generate_tags,
    normalize_namespace,
    short_revision,
)

T0 = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


class TestNamespace:
    def test_case_folding(self):
        assert normalize_namespace("Org/Repo") == "org/repo"

    def test_nested_namespace(self):
        assert normalize_namespace("Org/Team/Repo") == "org/team/repo"

    @pytest.mark.parametrize("bad", ["repo", "org/", "/repo", "org/re po", "org/repo!"])
    def test_invalid_names_rejected(self, bad: str):
        with pytest.raises(ValueError):
            normalize_namespace(bad)


class TestDateTag:
    def test_fixed_width_utc(self):
        assert format_date_tag(T0) == "20240301100000"

    def test_other_timezone_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert format_date_tag(datetime(2024, 3, 1, 12, 0, 0, tzinfo=plus_two)) == "20240301100000"

    def test_naive_is_utc(self):
        assert format_date_tag(datetime(2024, 3, 1, 10, 0, 0)) == "20240301100000"


class TestShortRevision:
    def test_truncates(self):
        assert short_revision("abc1234def5678abc1234def5678abc1234def56") == "abc1234"

    def test_lowercases(self):
        assert short_revision("ABC1234") == "abc1234"

    def test_too_short_fails(self):
        with pytest.raises(ValueError):
            short_revision("abc12")

    def test_non_hex_fails(self):
        with pytest.raises(ValueError):
            short_revision("main-branch")

    def test_length_floor(self):
        with pytest.raises(ValueError):
            short_revision("abc1234", length=2)


class TestGenerateTags:
    def test_three_tags_in_order(self):
        tag_set = generate_tags(T0, "abc1234", "Org/Repo")
        assert tag_set.tags == ("latest", "20240301100000", "abc1234")
        assert tag_set.namespace == "org/repo"
        assert tag_set.references() == [
            "ghcr.io/org/repo:latest",
            "ghcr.io/org/repo:20240301100000",
            "ghcr.io/org/repo:abc1234",
        ]

    def test_pure(self):
        assert generate_tags(T0, "abc1234", "Org/Repo") == generate_tags(T0, "abc1234", "Org/Repo")

    def test_custom_host_and_length(self):
        tag_set = generate_tags(
            T0, "abc1234def", "org/repo", registry_host="registry.example.com", short_length=9
        )
        assert tag_set.revision_tag == "abc1234de"
        assert tag_set.repository_ref == "registry.example.com/org/repo"


class TestTagGenerator:
    def test_date_tags_increase(self):
        gen = TagGenerator()
        first = gen.generate("abc1234", "Org/Repo", now=T0)
        second = gen.generate("def5678", "Org/Repo", now=T0 + timedelta(hours=1))
        assert first.date_tag == "20240301100000"
        assert second.date_tag == "20240301110000"

    def test_clock_regression_never_moves_date_backwards(self):
        gen = TagGenerator()
        gen.generate("abc1234", "Org/Repo", now=T0)
        regressed = gen.generate("def5678", "Org/Repo", now=T0 - timedelta(minutes=5))
        assert regressed.date_tag == "20240301100000"


class TestCollision:
    def test_unused_tag_ok(self):
        check_collision(generate_tags(T0, "abc1234", "org/repo"), None)

    def test_same_revision_ok(self):
        check_collision(generate_tags(T0, "abc1234", "org/repo"), "ABC1234")

    def test_different_revision_collides(self):
        tag_set = generate_tags(T0, "abc1234ffff", "org/repo")
        with pytest.raises(TagCollisionError):
            check_collision(tag_set, "abc1234eeee")
