"""Tool executor: one tool against one target, with caching and fallback.

A call either returns a result tagged with its origin (real, cached or
simulated) or raises ``TierRestricted``/``UnknownTool`` before any work is
done. Transport failures and timeouts never escape: they become a simulated
result carrying a ``simulation_reason``.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Mapping, Optional, Union

from ..models.execution import ExecutionRequest
from ..models.tier import Plan
from ..models.tool import Origin, ResultMetadata, ToolDescriptor, ToolResult
from ..tools.registry import ToolInvocation, ToolRegistry, ToolSpec
from ..utils.sanitize import sanitize_error
from .cache import ResultCache
from .credentials import CredentialStore, DeveloperKeys, resolve_credential
from .errors import TierRestricted, UnknownTool
from .findings import extract_findings
from .tiers import TierPolicy, coerce_plan

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        cache: ResultCache,
        tier_policy: Optional[TierPolicy] = None,
        credential_store: Optional[CredentialStore] = None,
        developer_keys: Optional[DeveloperKeys] = None,
        timeout_seconds: float = 60.0,
        ttl_default: float = 60.0,
        ttl_rate_limited: float = 300.0,
        api_ttl_seconds: float = 600.0,
        real_execution: bool = True,
    ):
        self.registry = registry
        self.cache = cache
        self.tier_policy = tier_policy or TierPolicy()
        self.credential_store = credential_store
        self.developer_keys = developer_keys
        self.timeout_seconds = timeout_seconds
        self.ttl_default = ttl_default
        self.ttl_rate_limited = ttl_rate_limited
        self.api_ttl_seconds = api_ttl_seconds
        self.real_execution = real_execution

    def _spec(self, tool: str) -> ToolSpec:
        spec = self.registry.get(tool)
        if spec is None:
            raise UnknownTool(tool)
        return spec

    def _credential(
        self,
        tool: str,
        plan: Plan,
        user_id: Optional[str],
        credentials: Optional[Mapping[str, str]],
    ) -> tuple[Optional[str], Optional[str]]:
        return resolve_credential(
            tool,
            supplied=credentials,
            user_id=user_id,
            store=self.credential_store,
            developer_keys=self.developer_keys,
            allow_fallback=self.tier_policy.has_api_key_fallback(plan),
        )

    def authorize(
        self,
        tool: str,
        plan: Union[Plan, str, None],
        user_id: Optional[str] = None,
        credentials: Optional[Mapping[str, str]] = None,
    ) -> tuple[ToolDescriptor, Optional[str], Optional[str]]:
        """Gate a call on the plan, returning ``(descriptor, secret, source)``.

        Raises ``UnknownTool`` for unregistered names and ``TierRestricted``
        when neither the plan nor a requester-owned key permits the tool.
        """
        resolved = coerce_plan(plan)
        descriptor = self._spec(tool).descriptor
        secret, source = self._credential(tool, resolved, user_id, credentials)
        own = source == "user"

        access = self.tier_policy.is_tool_allowed(tool, resolved, has_own_credential=own)
        if not access.allowed:
            raise TierRestricted(tool, resolved.value, access.reason)
        if descriptor.tier == Plan.PAID and resolved == Plan.FREE and not own:
            raise TierRestricted(tool, resolved.value)
        return descriptor, secret, source

    def validate(self, request: ExecutionRequest) -> None:
        self.authorize(request.tool, request.plan, request.user_id, request.credentials)

    async def execute(
        self,
        tool: str,
        target: str,
        *,
        plan: Union[Plan, str, None] = Plan.FREE,
        project_id: str = "",
        run_id: Optional[str] = None,
        user_id: Optional[str] = None,
        credentials: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ToolResult:
        descriptor, secret, source = self.authorize(tool, plan, user_id, credentials)
        spec = self._spec(tool)
        headers = dict(headers or {})
        run_id = run_id or uuid.uuid4().hex[:12]
        started = time.monotonic()

        entry = self.cache.get_entry(self.cache.tool_key(tool, target, headers))
        if entry is not None:
            meta = entry.metadata or {}
            output = copy.deepcopy(entry.payload)
            metadata = ResultMetadata(
                origin=Origin.CACHED,
                cache_hit=True,
                cached_origin=meta.get("origin"),
                simulation_reason=meta.get("simulation_reason"),
            )
            logger.debug("Cache hit for %s on %s", tool, target)
        else:
            output, metadata = await self._run_or_simulate(spec, target, headers, secret, source)
            if metadata.origin == Origin.REAL and descriptor.rate_limited:
                ttl = self.ttl_rate_limited
            else:
                ttl = self.ttl_default
            self.cache.cache_tool_result(
                tool,
                target,
                copy.deepcopy(output),
                ttl,
                headers,
                origin=metadata.origin.value,
                simulation_reason=metadata.simulation_reason,
            )

        metadata.execution_time_ms = int((time.monotonic() - started) * 1000)
        findings = extract_findings(
            tool,
            output,
            target=target,
            project_id=project_id,
            run_id=run_id,
            category=descriptor.category.value,
            created_at=datetime.now(timezone.utc),
        )
        return ToolResult(
            success=True,
            tool=tool,
            target=target,
            output=output,
            metadata=metadata,
            findings=findings,
        )

    async def _run_or_simulate(
        self,
        spec: ToolSpec,
        target: str,
        headers: dict[str, str],
        secret: Optional[str],
        source: Optional[str],
    ) -> tuple[object, ResultMetadata]:
        descriptor = spec.descriptor
        tool = descriptor.name

        if not self.real_execution:
            reason = "Real tool execution is disabled"
        elif spec.execute is None:
            reason = f"No real execution path for {tool}"
        elif descriptor.requires_key and not secret:
            reason = f"No API key available for {tool}"
        else:
            invocation = ToolInvocation(
                tool=tool,
                target=target,
                headers=headers,
                credential=secret,
                timeout=self.timeout_seconds,
                cache=self.cache,
                api_ttl_seconds=self.api_ttl_seconds,
            )
            try:
                output = await asyncio.wait_for(spec.execute(invocation), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                reason = f"Tool execution timed out after {self.timeout_seconds:g}s"
            except Exception as e:
                reason = f"Tool execution failed: {sanitize_error(str(e), [secret] if secret else None)}"
            else:
                return output, ResultMetadata(origin=Origin.REAL, key_used=source)

        logger.info("Simulating %s for %s: %s", tool, target, reason)
        return spec.simulate(target), ResultMetadata(origin=Origin.SIMULATED, simulation_reason=reason)

    async def run(self, request: ExecutionRequest) -> ToolResult:
        """Execute a queued request."""
        return await self.execute(
            request.tool,
            request.target,
            plan=request.plan,
            project_id=request.project_id,
            run_id=request.id,
            user_id=request.user_id,
            credentials=request.credentials,
            headers=request.headers,
        )
