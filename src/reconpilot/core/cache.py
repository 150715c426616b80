"""Time-bounded result cache for tool outputs and upstream API responses.

Expiry is checked on every read, so correctness never depends on the sweep.
The optional sweep task only reclaims memory held by entries nobody reads.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from typing import Any, Callable, Optional

from ..models.cache import CacheEntry, CacheStats

logger = logging.getLogger(__name__)

TOOL_RESULT = "tool_result"
API_RESPONSE = "api_response"


def _digest(options: Optional[dict]) -> str:
    canonical = json.dumps(options or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ResultCache:
    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock or time.monotonic
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def set(
        self,
        key: str,
        payload: Any,
        ttl_seconds: float,
        metadata: Optional[dict[str, Any]] = None,
    ) -> CacheEntry:
        """Store ``payload`` under ``key``, replacing any previous entry."""
        now = self._clock()
        entry = CacheEntry(
            key=key,
            payload=payload,
            created_at=now,
            expires_at=now + ttl_seconds,
            metadata=metadata,
        )
        self._entries[key] = entry
        return entry

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        entry = self.get_entry(key)
        return entry.payload if entry is not None else None

    def has(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cleaned up %d expired cache entries", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        now = self._clock()
        stats = CacheStats(total_entries=len(self._entries))
        for entry in self._entries.values():
            if entry.expired(now):
                stats.expired_entries += 1
            kind = (entry.metadata or {}).get("type")
            if kind == TOOL_RESULT:
                stats.tool_results += 1
            elif kind == API_RESPONSE:
                stats.api_responses += 1
        return stats

    def entries_by_type(self, kind: str) -> list[CacheEntry]:
        now = self._clock()
        return [
            entry
            for entry in self._entries.values()
            if (entry.metadata or {}).get("type") == kind and not entry.expired(now)
        ]

    # Key builders

    @staticmethod
    def tool_key(tool: str, target: str, options: Optional[dict] = None) -> str:
        return f"tool:{tool}:{target}:{_digest(options)}"

    @staticmethod
    def api_key(service: str, endpoint: str, params: Optional[dict] = None) -> str:
        return f"api:{service}:{endpoint}:{_digest(params)}"

    # Typed helpers

    def cache_tool_result(
        self,
        tool: str,
        target: str,
        result: Any,
        ttl_seconds: float = 300,
        options: Optional[dict] = None,
        **extra: Any,
    ) -> str:
        key = self.tool_key(tool, target, options)
        self.set(key, result, ttl_seconds, {"type": TOOL_RESULT, "tool": tool, "target": target, **extra})
        return key

    def get_cached_tool_result(self, tool: str, target: str, options: Optional[dict] = None) -> Any:
        return self.get(self.tool_key(tool, target, options))

    def cache_api_response(
        self,
        service: str,
        endpoint: str,
        response: Any,
        ttl_seconds: float = 600,
        params: Optional[dict] = None,
    ) -> str:
        key = self.api_key(service, endpoint, params)
        self.set(key, response, ttl_seconds, {"type": API_RESPONSE, "service": service, "endpoint": endpoint})
        return key

    def get_cached_api_response(self, service: str, endpoint: str, params: Optional[dict] = None) -> Any:
        return self.get(self.api_key(service, endpoint, params))

    # Background sweep

    async def run_sweeper(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def start_sweeper(self, interval_seconds: float) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self.run_sweeper(interval_seconds), name="reconpilot-cache-sweep"
            )
        return self._sweeper

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
