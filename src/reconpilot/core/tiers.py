"""Tier policy and plan gating.

Maps a plan to its limits and answers the "may this run" questions the queue
and executor ask before doing any work.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional, Union

from ..models.tier import Plan, TierInfo, TierLimits, ToolAccess
from .errors import TierRestricted

logger = logging.getLogger(__name__)

FREE_TOOLS = frozenset({
    "subfinder", "httpx", "waybackurls", "gau", "arjun", "trufflehog", "dnsx",
})

PAID_TOOLS = FREE_TOOLS | frozenset({
    "nmap", "masscan", "amass", "shodan", "securitytrails", "censys",
    "virustotal", "builtwith", "chaos", "grayhatwarfare",
})

TIER_LIMITS: dict[Plan, TierLimits] = {
    Plan.FREE: TierLimits(
        max_concurrent=1,
        max_daily_runs=10,
        allowed_tools=FREE_TOOLS,
        priority_boost=0,
        cache_ttl_class="standard",
        max_projects=2,
        max_scope_entries=5,
        max_headers=2,
        llm_model="basic",
        export_formats=(),
        priority_queue=False,
        api_key_fallback=False,
    ),
    Plan.PAID: TierLimits(
        max_concurrent=5,
        max_daily_runs=1000,
        allowed_tools=PAID_TOOLS,
        priority_boost=100,
        cache_ttl_class="extended",
        max_projects=50,
        max_scope_entries=100,
        max_headers=20,
        llm_model="advanced",
        export_formats=("pdf", "json", "csv", "html"),
        priority_queue=True,
        api_key_fallback=True,
    ),
}


def coerce_plan(plan: Union[Plan, str, None]) -> Plan:
    """Normalize a plan value, treating anything unrecognized as free."""
    if isinstance(plan, Plan):
        return plan
    value = (plan or "").strip().lower()
    if value in {p.value for p in Plan}:
        return Plan(value)
    logger.warning("Unrecognized plan %r, treating as free", plan)
    return Plan.FREE


class TierPolicy:
    """Pure lookup over the plan table."""

    def __init__(self, limits: Optional[dict[Plan, TierLimits]] = None):
        self._limits = dict(limits or TIER_LIMITS)

    def limits(self, plan: Union[Plan, str, None]) -> TierLimits:
        return self._limits[coerce_plan(plan)]

    def is_tool_allowed(
        self,
        tool: str,
        plan: Union[Plan, str, None],
        has_own_credential: bool = False,
    ) -> ToolAccess:
        """Check the plan allow-list for ``tool``.

        A requester who brings their own credential for the tool may use it on
        any plan; that bypass comes before the allow-list check.
        """
        if has_own_credential:
            return ToolAccess(allowed=True)

        resolved = coerce_plan(plan)
        if tool not in self.limits(resolved).allowed_tools:
            needed = "paid plan or user-provided API key" if resolved == Plan.FREE else "API key"
            return ToolAccess(allowed=False, reason=f"Tool '{tool}' requires {needed}")
        return ToolAccess(allowed=True)

    def validate_scope(self, scope: list[str], plan: Union[Plan, str, None]) -> ToolAccess:
        resolved = coerce_plan(plan)
        limit = self.limits(resolved).max_scope_entries
        if len(scope) > limit:
            return ToolAccess(
                allowed=False,
                reason=f"{resolved.value} plan limited to {limit} scope entries. Current: {len(scope)}",
            )
        return ToolAccess(allowed=True)

    def validate_headers(self, header_count: int, plan: Union[Plan, str, None]) -> ToolAccess:
        resolved = coerce_plan(plan)
        limit = self.limits(resolved).max_headers
        if header_count > limit:
            return ToolAccess(
                allowed=False,
                reason=f"{resolved.value} plan limited to {limit} custom headers. Current: {header_count}",
            )
        return ToolAccess(allowed=True)

    def llm_model(self, plan: Union[Plan, str, None]) -> str:
        return self.limits(plan).llm_model

    def has_api_key_fallback(self, plan: Union[Plan, str, None]) -> bool:
        return self.limits(plan).api_key_fallback

    def tier_info(self, plan: Union[Plan, str, None]) -> TierInfo:
        """Summarize a plan for display."""
        resolved = coerce_plan(plan)
        limits = self.limits(resolved)

        features = [
            f"{limits.max_projects} projects",
            f"{limits.max_daily_runs} daily runs",
            f"{len(limits.allowed_tools)} tools available",
            f"{limits.llm_model} AI model",
        ]
        if limits.export_formats:
            features.append(f"Export formats: {', '.join(limits.export_formats)}")
        if limits.priority_queue:
            features.append("Priority queue access")
        if limits.api_key_fallback:
            features.append("Developer API key fallback")

        restrictions: list[str] = []
        if resolved == Plan.FREE:
            restrictions.append(f"Limited to {limits.max_scope_entries} scope entries")
            restrictions.append(f"Limited to {limits.max_headers} custom headers")
            restrictions.append(f"Limited to {limits.max_concurrent} concurrent run")
            restrictions.append("No export capabilities")
            restrictions.append("No priority queue access")

        return TierInfo(plan=resolved, limits=limits, features=features, restrictions=restrictions)


class DailyRunCounter:
    """In-process count of runs per user per UTC day."""

    def __init__(self, policy: TierPolicy, today: Optional[Callable[[], date]] = None):
        self._policy = policy
        self._today = today or (lambda: datetime.now(timezone.utc).date())
        self._counts: dict[tuple[str, date], int] = {}

    def today(self) -> date:
        return self._today()

    def used(self, user_id: str) -> int:
        return self._counts.get((user_id, self._today()), 0)

    def remaining(self, user_id: str, plan: Union[Plan, str, None]) -> int:
        return max(self._policy.limits(plan).max_daily_runs - self.used(user_id), 0)

    def consume(self, user_id: str, plan: Union[Plan, str, None], tool: str = "") -> int:
        """Record one run, raising ``TierRestricted`` once the daily limit is hit."""
        resolved = coerce_plan(plan)
        limit = self._policy.limits(resolved).max_daily_runs
        day = self._today()
        # Drop counters from previous days
        for key in [k for k in self._counts if k[1] != day]:
            del self._counts[key]

        count = self._counts.get((user_id, day), 0)
        if count >= limit:
            raise TierRestricted(
                tool,
                resolved.value,
                f"Daily limit of {limit} runs reached. Resets at midnight UTC.",
            )
        self._counts[(user_id, day)] = count + 1
        return limit - count - 1

    def refund(self, user_id: str, day: Optional[date] = None) -> None:
        """Give back one run charged on ``day`` (today by default)."""
        key = (user_id, day or self._today())
        count = self._counts.get(key, 0)
        if count > 1:
            self._counts[key] = count - 1
        else:
            self._counts.pop(key, None)


def critical_tool_set(tools: Iterable[str]) -> frozenset[str]:
    return frozenset(t.strip().lower() for t in tools if t and t.strip())
