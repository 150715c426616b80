"""Tests for core/cache.py."""

from __future__ import annotations

import asyncio

import pytest

from reconpilot.core.cache import API_RESPONSE, TOOL_RESULT, ResultCache


class TestRoundTrip:
    def test_get_returns_value_before_expiry(self, cache: ResultCache, clock):
        cache.set("k", {"v": 1}, ttl_seconds=60)
        clock.advance(59.9)
        assert cache.get("k") == {"v": 1}
        assert cache.has("k")

    def test_expired_entry_is_a_miss_and_removed(self, cache: ResultCache, clock):
        cache.set("k", "v", ttl_seconds=60)
        clock.advance(60)
        assert cache.get("k") is None
        assert not cache.has("k")
        assert len(cache) == 0

    def test_expired_entry_not_resurrected(self, cache: ResultCache, clock):
        cache.set("k", "v", ttl_seconds=10)
        clock.advance(11)
        assert cache.get_entry("k") is None
        clock.now -= 5  # even if the clock went backwards
        assert cache.get("k") is None

    def test_last_writer_wins(self, cache: ResultCache):
        cache.set("k", "first", 60)
        cache.set("k", "second", 60)
        assert cache.get("k") == "second"

    def test_delete_and_clear(self, cache: ResultCache):
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        assert cache.delete("a")
        assert not cache.delete("a")
        cache.clear()
        assert len(cache) == 0


class TestKeys:
    def test_tool_key_is_deterministic(self):
        a = ResultCache.tool_key("httpx", "example.com", {"X-A": "1", "X-B": "2"})
        b = ResultCache.tool_key("httpx", "example.com", {"X-B": "2", "X-A": "1"})
        assert a == b

    def test_distinct_headers_do_not_collide(self):
        a = ResultCache.tool_key("httpx", "example.com", {"X-A": "1"})
        b = ResultCache.tool_key("httpx", "example.com", {"X-A": "2"})
        c = ResultCache.tool_key("httpx", "example.com", None)
        assert len({a, b, c}) == 3

    def test_empty_and_missing_options_match(self):
        assert ResultCache.tool_key("gau", "t", {}) == ResultCache.tool_key("gau", "t", None)

    def test_api_key_namespace(self):
        assert ResultCache.api_key("shodan", "host/search").startswith("api:shodan:host/search:")


class TestTypedHelpers:
    def test_tool_result_helpers(self, cache: ResultCache):
        cache.cache_tool_result("subfinder", "example.com", [{"host": "a"}], 60, origin="real")
        assert cache.get_cached_tool_result("subfinder", "example.com") == [{"host": "a"}]
        entry = cache.entries_by_type(TOOL_RESULT)[0]
        assert entry.metadata["origin"] == "real"

    def test_api_response_default_ttl(self, cache: ResultCache, clock):
        cache.cache_api_response("shodan", "host/search", {"matches": []}, params={"q": "x"})
        clock.advance(599)
        assert cache.get_cached_api_response("shodan", "host/search", {"q": "x"}) == {"matches": []}
        clock.advance(1)
        assert cache.get_cached_api_response("shodan", "host/search", {"q": "x"}) is None

    def test_stats(self, cache: ResultCache, clock):
        cache.cache_tool_result("subfinder", "a", [], 10)
        cache.cache_api_response("shodan", "x", {}, 100)
        cache.set("raw", 1, 100)
        clock.advance(20)
        stats = cache.stats()
        assert stats.total_entries == 3
        assert stats.expired_entries == 1
        assert stats.tool_results == 1
        assert stats.api_responses == 1
        assert [e.key for e in cache.entries_by_type(API_RESPONSE)] == [ResultCache.api_key("shodan", "x")]


class TestSweep:
    def test_sweep_removes_only_expired(self, cache: ResultCache, clock):
        cache.set("old", 1, 10)
        cache.set("new", 2, 100)
        clock.advance(50)
        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("new") == 2

    @pytest.mark.asyncio
    async def test_sweeper_task_runs_and_stops(self, clock):
        cache = ResultCache(clock=clock)
        cache.set("old", 1, 10)
        clock.advance(11)
        task = cache.start_sweeper(0.01)
        assert cache.start_sweeper(0.01) is task
        await asyncio.sleep(0.05)
        assert len(cache) == 0
        await cache.stop_sweeper()
        assert task.cancelled() or task.done()
