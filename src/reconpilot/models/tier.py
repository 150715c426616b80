"""Plan and tier limit data models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Plan(str, Enum):
    FREE = "free"
    PAID = "paid"


class TierLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_concurrent: int
    max_daily_runs: int
    allowed_tools: frozenset[str]
    priority_boost: int = 0
    cache_ttl_class: str = "standard"
    max_projects: int = 1
    max_scope_entries: int = 1
    max_headers: int = 0
    llm_model: str = "basic"
    export_formats: tuple[str, ...] = ()
    priority_queue: bool = False
    api_key_fallback: bool = False


class ToolAccess(BaseModel):
    allowed: bool
    reason: str | None = None


class TierInfo(BaseModel):
    plan: Plan
    limits: TierLimits
    features: list[str] = []
    restrictions: list[str] = []
