"""Tests for the same-day headline registry."""

from __future__ import annotations

from phenomena.framework.headline_registry import (
    HeadlineRegistry,
    HeadlineRegistryConfig,
    headline_key,
)


# ---------------------------------------------------------------------------
# Key generation
# ---------------------------------------------------------------------------


class TestHeadlineKey:
    def test_deterministic(self) -> None:
        assert headline_key(3, "AAA", "AAA bounces") == headline_key(3, "AAA", "AAA bounces")

    def test_whitespace_and_case_insensitive(self) -> None:
        assert headline_key(3, "aaa", "AAA  Bounces ") == headline_key(3, "AAA", "aaa bounces")

    def test_day_and_symbol_matter(self) -> None:
        base = headline_key(3, "AAA", "headline")
        assert headline_key(4, "AAA", "headline") != base
        assert headline_key(3, "BBB", "headline") != base

    def test_key_length(self) -> None:
        key = headline_key(1, "AAA", "x")
        assert len(key) == 16
        assert all(c in "0123456789abcdef" for c in key)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestHeadlineRegistry:
    def test_new_headline_not_duplicate(self) -> None:
        reg = HeadlineRegistry()
        reg.begin_day(1)
        assert reg.is_duplicate("AAA", "AAA bounces") is False

    def test_registered_headline_is_duplicate_same_day(self) -> None:
        reg = HeadlineRegistry()
        reg.begin_day(1)
        reg.register("AAA", "AAA bounces")
        assert reg.is_duplicate("AAA", "AAA bounces") is True
        assert reg.stats.total_blocked == 1

    def test_other_symbol_not_duplicate(self) -> None:
        reg = HeadlineRegistry()
        reg.begin_day(1)
        reg.register("AAA", "market wrap")
        assert reg.is_duplicate("BBB", "market wrap") is False

    def test_new_day_forgets(self) -> None:
        reg = HeadlineRegistry()
        reg.begin_day(1)
        reg.register("AAA", "AAA bounces")
        reg.begin_day(2)
        assert reg.size() == 0
        assert reg.is_duplicate("AAA", "AAA bounces") is False

    def test_same_day_begin_keeps_entries(self) -> None:
        reg = HeadlineRegistry()
        reg.begin_day(1)
        reg.register("AAA", "AAA bounces")
        reg.begin_day(1)
        assert reg.is_duplicate("AAA", "AAA bounces") is True

    def test_disabled_never_blocks(self) -> None:
        reg = HeadlineRegistry(HeadlineRegistryConfig(enabled=False))
        reg.register("AAA", "AAA bounces")
        assert reg.is_duplicate("AAA", "AAA bounces") is False

    def test_eviction(self) -> None:
        reg = HeadlineRegistry(HeadlineRegistryConfig(max_entries=2))
        reg.register("AAA", "one")
        reg.register("AAA", "two")
        reg.register("AAA", "three")
        assert reg.size() == 2
        assert reg.stats.total_evicted == 1
        assert reg.is_duplicate("AAA", "one") is False
        assert reg.is_duplicate("AAA", "three") is True

    def test_stats_reset(self) -> None:
        reg = HeadlineRegistry()
        reg.register("AAA", "x")
        reg.is_duplicate("AAA", "x")
        reg.stats.reset()
        assert reg.stats.total_checked == 0
        assert reg.stats.total_registered == 0
