"""Result cache data models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel


class CacheEntry(BaseModel):
    key: str
    payload: Any = None
    created_at: float
    expires_at: float
    metadata: Optional[dict[str, Any]] = None

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStats(BaseModel):
    total_entries: int = 0
    expired_entries: int = 0
    tool_results: int = 0
    api_responses: int = 0
