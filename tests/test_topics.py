"""Tests for topic filter matching."""

import pytest

from mqtt_pubsub.bus.topics import has_wildcards, matches, split_topic


class TestExactMatching:
    @pytest.mark.parametrize(
        ("topic_filter", "topic"),
        [
            ("Posts", "Posts"),
            ("a/b/c", "a/b/c"),
            ("", ""),
            ("a//b", "a//b"),
        ],
    )
    def test_identical_strings_match(self, topic_filter: str, topic: str) -> None:
        assert matches(topic_filter, topic)

    @pytest.mark.parametrize(
        ("topic_filter", "topic"),
        [
            ("Posts", "posts"),
            ("a/b", "a/b/c"),
            ("a/b/c", "a/b"),
            ("a/b", "a/c"),
            ("Posts", ""),
        ],
    )
    def test_different_strings_do_not_match(self, topic_filter: str, topic: str) -> None:
        assert not matches(topic_filter, topic)


class TestSingleLevelWildcard:
    def test_matches_one_segment(self) -> None:
        assert matches("a/+/c", "a/b/c")
        assert matches("Posts/+/D", "Posts/B/D")
        assert matches("+", "anything")

    def test_does_not_span_segments(self) -> None:
        assert not matches("a/+/c", "a/b/d/c")
        assert not matches("Posts/+/D", "Posts/H/D/I")

    def test_requires_a_segment(self) -> None:
        assert not matches("a/+", "a")
        assert not matches("Posts/+/D", "Posts")

    def test_matches_empty_segment(self) -> None:
        assert matches("a/+", "a/")


class TestMultiLevelWildcard:
    def test_matches_zero_or_more_trailing_segments(self) -> None:
        assert matches("a/#", "a")
        assert matches("a/#", "a/b")
        assert matches("a/#", "a/b/c")

    def test_hash_alone_matches_everything(self) -> None:
        for topic in ("Posts", "Posts/A", "Posts/A/B", "Posts/A/D/C", ""):
            assert matches("#", topic)

    def test_prefix_must_match(self) -> None:
        assert not matches("a/#", "b/c")
        assert not matches("Posts/#", "Comments/A")

    def test_non_final_hash_never_matches(self) -> None:
        assert not matches("a/#/c", "a/b/c")
        assert not matches("#/a", "a")

    def test_combined_with_single_level(self) -> None:
        assert matches("+/b/#", "a/b")
        assert matches("+/b/#", "a/b/c/d")
        assert not matches("+/b/#", "a/c/d")


class TestTotality:
    @pytest.mark.parametrize(
        ("topic_filter", "topic"),
        [
            ("", "a"),
            ("#", "/"),
            ("/", ""),
            ("a/b#", "a/b#"),
            ("+/+", "/"),
            ("###", "a"),
        ],
    )
    def test_never_raises(self, topic_filter: str, topic: str) -> None:
        assert isinstance(matches(topic_filter, topic), bool)

    def test_partial_wildcard_is_literal(self) -> None:
        assert matches("a/b#", "a/b#")
        assert not matches("a/b#", "a/bc")


class TestHelpers:
    def test_split_topic(self) -> None:
        assert split_topic("a/b/c") == ["a", "b", "c"]
        assert split_topic("a") == ["a"]

    def test_has_wildcards(self) -> None:
        assert has_wildcards("a/+/c")
        assert has_wildcards("#")
        assert not has_wildcards("a/b+/c")
        assert not has_wildcards("Posts")
