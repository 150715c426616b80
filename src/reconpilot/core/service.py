"""Composition root for the orchestration core.

``build_service`` wires the cache, executor, queue, decision gate and risk
aggregator from an effective config. The resulting ``ReconService`` owns their
lifetimes and is the only surface the CLI (or any other front end) talks to.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional, Union

from ..models.decision import Decision, DecisionContext, DecisionOutcome
from ..models.execution import ExecutionRequest, QueueStats
from ..models.finding import Finding
from ..models.threat import RiskAssessment
from ..models.tier import Plan
from ..providers.base import ReasoningProvider, get_reasoning_provider
from ..tools.registry import ToolRegistry, default_registry
from ..utils.sanitize import sanitize_error
from .cache import ResultCache
from .credentials import CredentialStore, DeveloperKeys
from .decision import DecisionGate
from .errors import ReconError, TierRestricted, UnknownTool
from .executor import ToolExecutor
from .persistence import JsonlPersistence, Persistence
from .queue import SchedulingQueue
from .risk import RiskAggregator
from .tiers import DailyRunCounter, TierPolicy, coerce_plan

logger = logging.getLogger(__name__)


class ReconService:
    def __init__(
        self,
        tier_policy: TierPolicy,
        cache: ResultCache,
        executor: ToolExecutor,
        queue: SchedulingQueue,
        gate: DecisionGate,
        aggregator: RiskAggregator,
        persistence: Optional[Persistence] = None,
        sweep_interval_seconds: float = 300,
    ):
        self.tier_policy = tier_policy
        self.cache = cache
        self.executor = executor
        self.queue = queue
        self.gate = gate
        self.aggregator = aggregator
        self.persistence = persistence
        self.sweep_interval_seconds = sweep_interval_seconds
        self._findings: dict[str, list[Finding]] = {}
        self.queue.add_listener(self._collect_findings)

    async def start(self) -> None:
        await self.queue.start()
        if self.sweep_interval_seconds > 0:
            self.cache.start_sweeper(self.sweep_interval_seconds)

    async def close(self) -> None:
        await self.queue.stop()
        await self.cache.stop_sweeper()

    async def __aenter__(self) -> "ReconService":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # Queue surface

    async def enqueue(
        self,
        project_id: str,
        tool: str,
        target: str,
        *,
        plan: Union[Plan, str, None] = Plan.FREE,
        confidence: Optional[float] = None,
        user_id: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        credentials: Optional[Mapping[str, str]] = None,
    ) -> str:
        execution_id = await self.queue.enqueue(
            project_id,
            tool,
            target,
            plan=plan,
            confidence=confidence,
            user_id=user_id,
            headers=headers,
            credentials=credentials,
        )
        self.queue.adjust_for_plan(plan)
        return execution_id

    def status(self, execution_id: str) -> Optional[ExecutionRequest]:
        return self.queue.status(execution_id)

    def cancel(self, execution_id: str) -> bool:
        return self.queue.cancel(execution_id)

    def queue_stats(self) -> QueueStats:
        return self.queue.queue_stats()

    async def wait_idle(self) -> None:
        await self.queue.join()

    # Decisions

    def _fill_context(self, context: DecisionContext) -> DecisionContext:
        if context.target or self.persistence is None:
            return context
        try:
            scope = self.persistence.load_project_scope(context.project_id)
        except Exception as e:
            logger.warning("Could not load scope for %s: %s", context.project_id, sanitize_error(str(e)))
            return context
        if scope is None:
            return context
        return context.model_copy(update={
            "target": scope.target,
            "scope": context.scope or scope.scope,
        })

    async def decide(self, text: str, context: DecisionContext, auto_enqueue: bool = True) -> Decision:
        """Ask the gate for a plan and enqueue it when it clears the gate."""
        context = self._fill_context(context)
        decision = await self.gate.decide(text, context)
        if decision.auto_execute and auto_enqueue:
            decision.execution_ids = await self._enqueue_actions(decision, context)
        return decision

    async def approve_decision(self, decision_id: str, context: DecisionContext) -> DecisionOutcome:
        outcome = self.gate.approve(context.project_id, decision_id)
        if outcome.success and outcome.decision is not None:
            context = self._fill_context(context)
            outcome.decision.execution_ids = await self._enqueue_actions(outcome.decision, context)
        return outcome

    def reject_decision(self, project_id: str, decision_id: str, reason: Optional[str] = None) -> DecisionOutcome:
        return self.gate.reject(project_id, decision_id, reason)

    async def _enqueue_actions(self, decision: Decision, context: DecisionContext) -> list[str]:
        ids: list[str] = []
        for action in decision.actions:
            try:
                ids.append(await self.enqueue(
                    decision.project_id,
                    action.tool,
                    action.target or context.target,
                    plan=context.plan,
                    confidence=action.confidence,
                    user_id=context.user_id,
                ))
            except (TierRestricted, UnknownTool) as e:
                logger.warning("Skipping %s from %s: %s", action.tool, decision.id, e)
        return ids

    # Findings and risk

    def _collect_findings(self, request: ExecutionRequest) -> None:
        if request.result is not None and request.result.findings:
            self._findings.setdefault(request.project_id, []).extend(request.result.findings)

    def findings(self, project_id: str) -> list[Finding]:
        return list(self._findings.get(project_id, []))

    def risk_assessment(
        self,
        findings: Optional[list[Finding]] = None,
        project_id: Optional[str] = None,
    ) -> RiskAssessment:
        """Assess ``findings``, or everything collected for ``project_id``."""
        if findings is None:
            if project_id is None:
                raise ReconError("risk_assessment needs findings or a project id")
            findings = self.findings(project_id)
        return self.aggregator.assess(findings, project_id)


def build_service(
    config: dict,
    provider: Optional[ReasoningProvider] = None,
    persistence: Optional[Persistence] = None,
    credential_store: Optional[CredentialStore] = None,
    registry: Optional[ToolRegistry] = None,
) -> ReconService:
    """Wire a service from an effective config (see ``get_effective_config``)."""
    queue_cfg = config.get("queue", {})
    executor_cfg = config.get("executor", {})
    ttl_cfg = executor_cfg.get("ttl_seconds", {})
    cache_cfg = config.get("cache", {})
    decision_cfg = config.get("decision", {})

    if persistence is None:
        directory = config.get("persistence", {}).get("directory")
        if directory:
            base = Path(config.get("_project_path", "."))
            persistence = JsonlPersistence(base / directory)

    tier_policy = TierPolicy()
    cache = ResultCache()
    executor = ToolExecutor(
        registry or default_registry(),
        cache,
        tier_policy,
        credential_store=credential_store,
        developer_keys=DeveloperKeys(config.get("credentials", {})),
        timeout_seconds=executor_cfg.get("timeout_seconds", 60),
        ttl_default=ttl_cfg.get("default", 60),
        ttl_rate_limited=ttl_cfg.get("rate_limited", 300),
        api_ttl_seconds=cache_cfg.get("api_response_ttl_seconds", 600),
        real_execution=executor_cfg.get("real_execution", True),
    )
    queue = SchedulingQueue(
        executor,
        tier_policy,
        max_concurrent=queue_cfg.get("max_concurrent", 3),
        critical_tools=queue_cfg.get("critical_tools", ["nmap", "trufflehog"]),
        persistence=persistence,
        run_counter=DailyRunCounter(tier_policy),
        history_size=queue_cfg.get("history_size", 500),
    )
    gate = DecisionGate(
        provider or get_reasoning_provider(config),
        tier_policy,
        safe_tools=decision_cfg.get("safe_tools", ["subfinder", "httpx", "waybackurls", "gau", "dnsx"]),
        auto_execute_confidence=decision_cfg.get("auto_execute_confidence", 0.8),
        action_confidence=decision_cfg.get("action_confidence", 0.7),
        history_size=decision_cfg.get("history_size", 10),
        max_tokens=config.get("ai", {}).get("max_tokens", 1000),
    )
    logger.debug(
        "Service wired: ceiling %d, provider %s, persistence %s",
        queue.max_concurrent, gate.provider.name, type(persistence).__name__,
    )
    return ReconService(
        tier_policy,
        cache,
        executor,
        queue,
        gate,
        RiskAggregator(),
        persistence=persistence,
        sweep_interval_seconds=cache_cfg.get("sweep_interval_seconds", 300),
    )


def default_context(config: dict, user_id: Optional[str] = None) -> DecisionContext:
    """Decision context for the project described by ``config``."""
    project = config.get("project", {})
    return DecisionContext(
        project_id=project.get("id") or "default",
        plan=coerce_plan(project.get("plan")),
        user_id=user_id,
        target=project.get("target", ""),
        scope=list(project.get("scope") or []),
    )
