"""Priority scheduling queue for tool executions.

A single scheduler task owns admission. It sleeps on a wakeup event that is
set by ``enqueue``, by every completion and by ceiling changes, then admits
pending requests in priority-then-FIFO order while running work is below
the ceiling. Each admitted request runs in its own task, so a slow tool never
holds up admission of the next one.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
import uuid
from collections import OrderedDict
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Mapping, Optional, Protocol, Union

from ..models.execution import ExecutionRequest, ExecutionStatus, QueueStats
from ..models.tier import Plan
from ..models.tool import ToolResult
from ..utils.sanitize import sanitize_error
from .errors import InfrastructureFailure, NotCancellable, TierRestricted
from .persistence import Persistence
from .tiers import DailyRunCounter, TierPolicy, coerce_plan, critical_tool_set

logger = logging.getLogger(__name__)

CRITICAL_TOOLS = frozenset({"nmap", "trufflehog"})
CRITICAL_TOOL_BOOST = 20

Listener = Callable[[ExecutionRequest], None]


class Dispatcher(Protocol):
    """What the queue needs from an executor."""

    def validate(self, request: ExecutionRequest) -> None: ...

    async def run(self, request: ExecutionRequest) -> ToolResult: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulingQueue:
    def __init__(
        self,
        executor: Dispatcher,
        tier_policy: Optional[TierPolicy] = None,
        max_concurrent: int = 3,
        critical_tools: Iterable[str] = CRITICAL_TOOLS,
        persistence: Optional[Persistence] = None,
        run_counter: Optional[DailyRunCounter] = None,
        history_size: int = 500,
        autostart: bool = True,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._executor = executor
        self.tier_policy = tier_policy or TierPolicy()
        self._max_concurrent = max_concurrent
        self.critical_tools = critical_tool_set(critical_tools)
        self._persistence = persistence
        self._run_counter = run_counter
        self._history_size = history_size
        self._autostart = autostart

        self._pending: list[ExecutionRequest] = []
        self._running: dict[str, ExecutionRequest] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._history: OrderedDict[str, ExecutionRequest] = OrderedDict()
        self._sequence = itertools.count()
        self._listeners: list[Listener] = []
        self._charges: dict[str, tuple[str, date]] = {}

        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._scheduler: Optional[asyncio.Task] = None

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def compute_priority(self, plan: Union[Plan, str, None], confidence: Optional[float], tool: str) -> int:
        """Plan boost + floor(confidence * 10) + critical tool boost."""
        priority = self.tier_policy.limits(plan).priority_boost
        conf = min(max(confidence or 0.0, 0.0), 1.0)
        priority += math.floor(conf * 10)
        if tool.lower() in self.critical_tools:
            priority += CRITICAL_TOOL_BOOST
        return priority

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
        """Accept a request and return its id.

        Raises ``TierRestricted`` (or ``UnknownTool``) before anything is
        queued when the request may not run on the requester's plan.
        """
        resolved = coerce_plan(plan)
        request = ExecutionRequest(
            id=uuid.uuid4().hex[:12],
            project_id=project_id,
            tool=tool,
            target=target,
            plan=resolved,
            confidence=min(max(confidence or 0.0, 0.0), 1.0),
            user_id=user_id,
            headers=dict(headers or {}),
            credentials=dict(credentials or {}),
            submitted_at=_now(),
        )
        self._executor.validate(request)

        header_check = self.tier_policy.validate_headers(len(request.headers), resolved)
        if not header_check.allowed:
            raise TierRestricted(tool, resolved.value, header_check.reason)
        if self._run_counter is not None:
            owner = user_id or project_id
            self._run_counter.consume(owner, resolved, tool)
            self._charges[request.id] = (owner, self._run_counter.today())

        request.priority = self.compute_priority(resolved, request.confidence, tool)
        request.sequence = next(self._sequence)
        self._pending.append(request)
        self._pending.sort(key=lambda r: (-r.priority, r.sequence))
        logger.info(
            "Queued %s on %s as %s (priority %d, %d pending)",
            tool, target, request.id, request.priority, len(self._pending),
        )

        self._idle.clear()
        if self._autostart:
            await self.start()
        self._wakeup.set()
        return request.id

    def status(self, execution_id: str) -> Optional[ExecutionRequest]:
        if execution_id in self._running:
            return self._running[execution_id]
        for request in self._pending:
            if request.id == execution_id:
                return request
        return self._history.get(execution_id)

    def cancel(self, execution_id: str) -> bool:
        """Remove a queued request and give back its daily run.

        Returns False for an unknown id and raises ``NotCancellable`` once the
        request has been admitted.
        """
        for index, request in enumerate(self._pending):
            if request.id == execution_id:
                del self._pending[index]
                self._refund(execution_id)
                logger.info("Cancelled %s (%s on %s)", execution_id, request.tool, request.target)
                self._set_idle_if_drained()
                return True
        existing = self.status(execution_id)
        if existing is not None:
            raise NotCancellable(execution_id, existing.status.value)
        return False

    def _refund(self, execution_id: str) -> None:
        charge = self._charges.pop(execution_id, None)
        if charge is not None and self._run_counter is not None:
            self._run_counter.refund(*charge)

    def queue_stats(self) -> QueueStats:
        return QueueStats(
            queued=len(self._pending),
            running=len(self._running),
            ceiling=self._max_concurrent,
            processing=bool(self._pending or self._running),
        )

    def pending(self) -> list[ExecutionRequest]:
        return list(self._pending)

    def running(self) -> list[ExecutionRequest]:
        return list(self._running.values())

    def set_max_concurrent(self, value: int) -> None:
        """Change the ceiling. Running work is never preempted."""
        if value < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_concurrent = value
        self._wakeup.set()

    def adjust_for_plan(self, plan: Union[Plan, str, None]) -> int:
        """Raise the ceiling to the plan's concurrency if that is higher."""
        limit = self.tier_policy.limits(plan).max_concurrent
        if limit > self._max_concurrent:
            self.set_max_concurrent(limit)
        return self._max_concurrent

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def join(self) -> None:
        """Wait until nothing is pending or running."""
        await self._idle.wait()

    async def start(self) -> None:
        if self._scheduler is None or self._scheduler.done():
            self._scheduler = asyncio.create_task(self._schedule(), name="reconpilot-scheduler")
            if self._pending:
                self._wakeup.set()

    async def stop(self) -> None:
        """Stop the scheduler and cancel in-flight executions."""
        scheduler, self._scheduler = self._scheduler, None
        tasks = list(self._tasks.values())
        if scheduler is not None:
            scheduler.cancel()
            tasks.append(scheduler)
        for task in self._tasks.values():
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # Tasks cancelled before their first step never reach _dispatch's handler
        for request in list(self._running.values()):
            self._finish(request, ToolResult.failure("Execution cancelled at shutdown", request.tool, request.target))

    async def _schedule(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            self._admit()

    def _admit(self) -> None:
        while self._pending and len(self._running) < self._max_concurrent:
            request = self._pending.pop(0)
            self._charges.pop(request.id, None)
            request.transition(ExecutionStatus.RUNNING)
            request.started_at = _now()
            self._running[request.id] = request
            self._tasks[request.id] = asyncio.create_task(
                self._dispatch(request), name=f"reconpilot-exec-{request.id}"
            )
            logger.debug("Admitted %s (%d/%d running)", request.id, len(self._running), self._max_concurrent)

    async def _dispatch(self, request: ExecutionRequest) -> None:
        try:
            result = await self._executor.run(request)
        except asyncio.CancelledError:
            self._finish(request, ToolResult.failure("Execution cancelled at shutdown", request.tool, request.target))
            raise
        except Exception as e:
            failure = InfrastructureFailure(f"{type(e).__name__}: {sanitize_error(str(e))}")
            logger.error("Execution %s failed: %s", request.id, failure)
            result = ToolResult.failure(str(failure), request.tool, request.target)
        self._finish(request, result)

    def _finish(self, request: ExecutionRequest, result: ToolResult) -> None:
        request.result = result
        request.finished_at = _now()
        request.transition(ExecutionStatus.COMPLETED if result.success else ExecutionStatus.FAILED)

        self._running.pop(request.id, None)
        self._tasks.pop(request.id, None)
        self._history[request.id] = request
        while len(self._history) > self._history_size:
            self._history.popitem(last=False)

        self._persist(request, result)
        for listener in list(self._listeners):
            try:
                listener(request)
            except Exception:
                logger.exception("Completion listener failed for %s", request.id)

        self._wakeup.set()
        self._set_idle_if_drained()

    def _persist(self, request: ExecutionRequest, result: ToolResult) -> None:
        if self._persistence is None:
            return
        try:
            self._persistence.save(request)
            for finding in result.findings:
                self._persistence.save(finding)
        except Exception as e:
            logger.warning("Could not persist execution %s: %s", request.id, sanitize_error(str(e)))

    def _set_idle_if_drained(self) -> None:
        if not self._pending and not self._running:
            self._idle.set()
