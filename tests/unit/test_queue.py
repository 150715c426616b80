"""Tests for core/queue.py."""

from __future__ import annotations

import asyncio
import random

import pytest

from reconpilot.core.errors import NotCancellable, TierRestricted, UnknownTool
from reconpilot.core.executor import ToolExecutor
from reconpilot.core.persistence import InMemoryPersistence
from reconpilot.core.queue import SchedulingQueue
from reconpilot.core.tiers import DailyRunCounter, TierPolicy
from reconpilot.models.execution import ExecutionRequest, ExecutionStatus
from reconpilot.models.tier import Plan
from reconpilot.models.tool import Origin, ResultMetadata, ToolResult
from reconpilot.tools.registry import ToolRegistry


class FakeDispatcher:
    """Executor stand-in that tracks concurrency and admission order."""

    def __init__(self, delay: float = 0.01, fail_tools: frozenset = frozenset(), known: frozenset = frozenset()):
        self.delay = delay
        self.fail_tools = fail_tools
        self.known = known
        self.active = 0
        self.peak = 0
        self.started: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}

    def validate(self, request: ExecutionRequest) -> None:
        if self.known and request.tool not in self.known:
            raise UnknownTool(request.tool)
        if request.tool == "amass" and request.plan == Plan.FREE:
            raise TierRestricted(request.tool, request.plan.value)

    async def run(self, request: ExecutionRequest) -> ToolResult:
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.started.append(request.id)
        try:
            gate = self.gates.get(request.tool)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(self.delay)
            if request.tool in self.fail_tools:
                raise ConnectionError(f"{request.tool} worker died")
            return ToolResult(
                success=True,
                tool=request.tool,
                target=request.target,
                output=[],
                metadata=ResultMetadata(origin=Origin.REAL),
            )
        finally:
            self.active -= 1


def make_queue(dispatcher: FakeDispatcher, **kwargs) -> SchedulingQueue:
    kwargs.setdefault("tier_policy", TierPolicy())
    return SchedulingQueue(dispatcher, **kwargs)


class TestPriority:
    def test_compute_priority(self):
        queue = make_queue(FakeDispatcher())
        assert queue.compute_priority(Plan.PAID, 0.9, "nmap") == 129
        assert queue.compute_priority(Plan.FREE, 0.5, "subfinder") == 5
        assert queue.compute_priority(Plan.FREE, None, "subfinder") == 0
        assert queue.compute_priority(Plan.FREE, 1.7, "trufflehog") == 30
        assert queue.compute_priority(Plan.FREE, -1, "gau") == 0

    @pytest.mark.asyncio
    async def test_high_priority_admitted_first(self):
        dispatcher = FakeDispatcher()
        queue = make_queue(dispatcher, max_concurrent=1, autostart=False)
        low = await queue.enqueue("p", "subfinder", "example.com", plan=Plan.FREE, confidence=0.5)
        high = await queue.enqueue("p", "nmap", "example.com", plan=Plan.PAID, confidence=0.9)
        assert queue.status(high).priority == 129
        assert queue.status(low).priority == 5

        await queue.start()
        await queue.join()
        assert dispatcher.started == [high, low]
        await queue.stop()

    @pytest.mark.asyncio
    async def test_equal_priority_is_fifo(self):
        dispatcher = FakeDispatcher()
        queue = make_queue(dispatcher, max_concurrent=1, autostart=False)
        ids = [await queue.enqueue("p", "subfinder", f"t{i}.example.com", confidence=0.3) for i in range(6)]
        await queue.start()
        await queue.join()
        assert dispatcher.started == ids
        await queue.stop()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_five_requests_one_at_a_time(self):
        dispatcher = FakeDispatcher()
        queue = make_queue(dispatcher, max_concurrent=1)
        seen_running: list[int] = []
        queue.add_listener(lambda r: seen_running.append(queue.queue_stats().running))

        ids = [await queue.enqueue("p", "subfinder", "example.com") for _ in range(5)]
        await queue.join()

        assert dispatcher.peak == 1
        assert all(n <= 1 for n in seen_running)
        assert all(queue.status(i).status == ExecutionStatus.COMPLETED for i in ids)
        await queue.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_ceiling_never_exceeded_under_bursts(self, seed):
        rng = random.Random(seed)
        ceiling = rng.randint(1, 4)
        dispatcher = FakeDispatcher(delay=0)
        queue = make_queue(dispatcher, max_concurrent=ceiling)

        ids: list[str] = []
        for _ in range(5):
            for _ in range(rng.randint(1, 8)):
                plan = rng.choice([Plan.FREE, Plan.PAID])
                tool = rng.choice(["subfinder", "httpx", "nmap"])
                ids.append(await queue.enqueue("p", tool, "example.com", plan=plan, confidence=rng.random()))
            await asyncio.sleep(rng.random() / 100)
            assert queue.queue_stats().running <= ceiling
        await queue.join()

        assert dispatcher.peak <= ceiling
        assert all(queue.status(i).terminal for i in ids)
        await queue.stop()

    @pytest.mark.asyncio
    async def test_raising_ceiling_admits_more_without_preempting(self):
        dispatcher = FakeDispatcher()
        dispatcher.gates["subfinder"] = asyncio.Event()
        queue = make_queue(dispatcher, max_concurrent=1)
        for _ in range(3):
            await queue.enqueue("p", "subfinder", "example.com")
        await asyncio.sleep(0.01)
        assert queue.queue_stats().running == 1

        queue.set_max_concurrent(3)
        await asyncio.sleep(0.01)
        assert queue.queue_stats().running == 3

        queue.set_max_concurrent(1)
        await asyncio.sleep(0.01)
        assert queue.queue_stats().running == 3

        dispatcher.gates["subfinder"].set()
        await queue.join()
        await queue.stop()

    def test_adjust_for_plan_only_raises(self):
        queue = make_queue(FakeDispatcher(), max_concurrent=3)
        assert queue.adjust_for_plan(Plan.FREE) == 3
        assert queue.adjust_for_plan(Plan.PAID) == 5

    def test_invalid_ceiling(self):
        with pytest.raises(ValueError):
            make_queue(FakeDispatcher(), max_concurrent=0)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_status_transitions(self):
        dispatcher = FakeDispatcher()
        dispatcher.gates["subfinder"] = asyncio.Event()
        queue = make_queue(dispatcher, max_concurrent=1)
        first = await queue.enqueue("p", "subfinder", "a.example.com")
        second = await queue.enqueue("p", "subfinder", "b.example.com")
        await asyncio.sleep(0.01)

        assert queue.status(first).status == ExecutionStatus.RUNNING
        assert queue.status(second).status == ExecutionStatus.QUEUED
        assert queue.queue_stats().queued == 1

        dispatcher.gates["subfinder"].set()
        await queue.join()
        done = queue.status(first)
        assert done.status == ExecutionStatus.COMPLETED
        assert done.started_at is not None and done.finished_at is not None
        assert not queue.queue_stats().processing
        await queue.stop()

    @pytest.mark.asyncio
    async def test_infrastructure_failure_does_not_block_queue(self):
        dispatcher = FakeDispatcher(fail_tools=frozenset({"httpx"}))
        queue = make_queue(dispatcher, max_concurrent=1)
        bad = await queue.enqueue("p", "httpx", "example.com", confidence=0.9)
        good = await queue.enqueue("p", "subfinder", "example.com")
        await queue.join()

        failed = queue.status(bad)
        assert failed.status == ExecutionStatus.FAILED
        assert "ConnectionError" in failed.result.error
        assert "worker died" in failed.result.error
        assert queue.status(good).status == ExecutionStatus.COMPLETED
        await queue.stop()

    @pytest.mark.asyncio
    async def test_join_on_empty_queue_returns(self):
        queue = make_queue(FakeDispatcher())
        await asyncio.wait_for(queue.join(), timeout=1)

    @pytest.mark.asyncio
    async def test_stop_fails_in_flight_work(self):
        dispatcher = FakeDispatcher()
        dispatcher.gates["subfinder"] = asyncio.Event()
        queue = make_queue(dispatcher, max_concurrent=1)
        running = await queue.enqueue("p", "subfinder", "example.com")
        await asyncio.sleep(0.01)
        await queue.stop()
        assert queue.status(running).status == ExecutionStatus.FAILED


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_queued(self):
        dispatcher = FakeDispatcher()
        dispatcher.gates["subfinder"] = asyncio.Event()
        queue = make_queue(dispatcher, max_concurrent=1)
        running = await queue.enqueue("p", "subfinder", "a.example.com")
        queued = await queue.enqueue("p", "subfinder", "b.example.com")
        await asyncio.sleep(0.01)

        assert queue.cancel(queued) is True
        assert queue.status(queued) is None
        with pytest.raises(NotCancellable, match="running"):
            queue.cancel(running)

        dispatcher.gates["subfinder"].set()
        await queue.join()
        assert dispatcher.started == [running]
        with pytest.raises(NotCancellable, match="completed"):
            queue.cancel(running)
        await queue.stop()

    def test_cancel_unknown(self):
        queue = make_queue(FakeDispatcher())
        assert queue.cancel("missing") is False


class TestAdmissionChecks:
    @pytest.mark.asyncio
    async def test_tier_restricted_is_not_queued(self):
        queue = make_queue(FakeDispatcher(), autostart=False)
        with pytest.raises(TierRestricted):
            await queue.enqueue("p", "amass", "example.com", plan=Plan.FREE)
        assert queue.queue_stats().queued == 0

    @pytest.mark.asyncio
    async def test_unknown_tool_rejected(self):
        queue = make_queue(FakeDispatcher(known=frozenset({"subfinder"})), autostart=False)
        with pytest.raises(UnknownTool):
            await queue.enqueue("p", "nope", "example.com")

    @pytest.mark.asyncio
    async def test_header_limit(self):
        queue = make_queue(FakeDispatcher(), autostart=False)
        headers = {"A": "1", "B": "2", "C": "3"}
        with pytest.raises(TierRestricted, match="custom headers"):
            await queue.enqueue("p", "httpx", "example.com", plan=Plan.FREE, headers=headers)
        await queue.enqueue("p", "httpx", "example.com", plan=Plan.PAID, headers=headers)

    @pytest.mark.asyncio
    async def test_daily_limit(self):
        policy = TierPolicy()
        queue = make_queue(FakeDispatcher(), autostart=False, run_counter=DailyRunCounter(policy))
        for _ in range(10):
            await queue.enqueue("p", "subfinder", "example.com", user_id="u1")
        with pytest.raises(TierRestricted, match="Daily limit"):
            await queue.enqueue("p", "subfinder", "example.com", user_id="u1")

    @pytest.mark.asyncio
    async def test_cancelled_request_gives_back_daily_run(self):
        counter = DailyRunCounter(TierPolicy())
        queue = make_queue(FakeDispatcher(), autostart=False, run_counter=counter)
        ids = [await queue.enqueue("p", "subfinder", "example.com", user_id="u1") for _ in range(10)]
        assert counter.remaining("u1", Plan.FREE) == 0
        assert queue.cancel(ids[-1]) is True
        assert counter.remaining("u1", Plan.FREE) == 1
        await queue.enqueue("p", "subfinder", "example.com", user_id="u1")
        with pytest.raises(TierRestricted, match="Daily limit"):
            await queue.enqueue("p", "subfinder", "example.com", user_id="u1")


class TestPersistence:
    @pytest.mark.asyncio
    async def test_terminal_requests_saved(self):
        store = InMemoryPersistence()
        queue = make_queue(FakeDispatcher(), persistence=store)
        execution_id = await queue.enqueue("p", "subfinder", "example.com", credentials={"subfinder": "k"})
        await queue.join()
        saved = store.executions[execution_id]
        assert saved.status == ExecutionStatus.COMPLETED
        assert "credentials" not in saved.model_dump()
        await queue.stop()

    @pytest.mark.asyncio
    async def test_persistence_failure_is_ignored(self, caplog):
        class BrokenStore(InMemoryPersistence):
            def save(self, record):
                raise OSError("disk full")

        queue = make_queue(FakeDispatcher(), persistence=BrokenStore())
        ids = [await queue.enqueue("p", "subfinder", "example.com") for _ in range(3)]
        with caplog.at_level("WARNING"):
            await queue.join()
        assert all(queue.status(i).status == ExecutionStatus.COMPLETED for i in ids)
        assert "disk full" in caplog.text
        await queue.stop()

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        queue = make_queue(FakeDispatcher(delay=0), history_size=2, max_concurrent=1)
        ids = [await queue.enqueue("p", "subfinder", "example.com") for _ in range(4)]
        await queue.join()
        assert queue.status(ids[0]) is None
        assert queue.status(ids[3]).status == ExecutionStatus.COMPLETED
        await queue.stop()


class TestWithExecutor:
    @pytest.mark.asyncio
    async def test_timed_out_tool_completes_as_simulated(self, cache, policy, spec_factory, tool_factory):
        registry = ToolRegistry([spec_factory("subfinder", tool_factory(delay=5))])
        executor = ToolExecutor(registry, cache, policy, timeout_seconds=0.05)
        queue = SchedulingQueue(executor, policy, max_concurrent=1)

        execution_id = await queue.enqueue("p", "subfinder", "example.com")
        await queue.join()

        request = queue.status(execution_id)
        assert request.status == ExecutionStatus.COMPLETED
        assert request.result.success
        assert request.result.origin == Origin.SIMULATED
        assert "timed out" in request.result.metadata.simulation_reason
        await queue.stop()

    @pytest.mark.asyncio
    async def test_paid_tool_rejected_by_executor_gate(self, executor, policy):
        queue = SchedulingQueue(executor, policy, autostart=False)
        with pytest.raises(TierRestricted):
            await queue.enqueue("p", "amass", "example.com", plan=Plan.FREE)
        await queue.enqueue("p", "shodan", "example.com", plan=Plan.FREE, credentials={"shodan": "mine"})
        assert queue.queue_stats().queued == 1
