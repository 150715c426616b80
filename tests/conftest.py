"""Shared fixtures for reconpilot tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest

from reconpilot.core.cache import ResultCache
from reconpilot.core.errors import ToolTransportFailure
from reconpilot.core.executor import ToolExecutor
from reconpilot.core.tiers import TierPolicy
from reconpilot.models.finding import Finding, Severity
from reconpilot.models.tier import Plan
from reconpilot.models.tool import ToolCategory, ToolDescriptor
from reconpilot.tools.registry import ToolInvocation, ToolRegistry, ToolSpec

FIXED_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedTool:
    """Records invocations and returns, raises or hangs on demand."""

    def __init__(self, output: Any = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.output = output if output is not None else [{"host": "www.example.com"}]
        self.error = error
        self.delay = delay
        self.calls: list[ToolInvocation] = []

    async def __call__(self, invocation: ToolInvocation) -> Any:
        self.calls.append(invocation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.output


def make_spec(
    name: str,
    execute=None,
    *,
    tier: Plan = Plan.FREE,
    requires_key: bool = False,
    rate_limited: bool = False,
    category: ToolCategory = ToolCategory.SUBDOMAIN,
    simulated: Any = None,
) -> ToolSpec:
    descriptor = ToolDescriptor(
        name=name,
        tier=tier,
        requires_key=requires_key,
        rate_limited=rate_limited,
        category=category,
    )
    fallback = simulated if simulated is not None else [{"host": "sim.example.com"}]
    return ToolSpec(descriptor=descriptor, simulate=lambda target: list(fallback), execute=execute)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ResultCache:
    return ResultCache(clock=clock)


@pytest.fixture
def policy() -> TierPolicy:
    return TierPolicy()


@pytest.fixture
def subfinder_tool() -> ScriptedTool:
    return ScriptedTool([{"host": "api.example.com"}, {"host": "dev.example.com"}])


@pytest.fixture
def registry(subfinder_tool: ScriptedTool) -> ToolRegistry:
    return ToolRegistry([
        make_spec("subfinder", subfinder_tool),
        make_spec("gau", ScriptedTool([{"url": "https://example.com/admin"}]), rate_limited=True,
                  category=ToolCategory.ENDPOINT),
        make_spec("nmap", ScriptedTool(error=ToolTransportFailure("nmap", "nmap is not installed")),
                  category=ToolCategory.PORT),
        make_spec("amass", ScriptedTool(), tier=Plan.PAID),
        make_spec("shodan", ScriptedTool([{"ip_str": "192.0.2.1", "port": 80}]), tier=Plan.PAID,
                  requires_key=True, rate_limited=True, category=ToolCategory.PORT),
    ])


@pytest.fixture
def executor(registry: ToolRegistry, cache: ResultCache, policy: TierPolicy) -> ToolExecutor:
    return ToolExecutor(registry, cache, policy, timeout_seconds=1.0)


def make_finding(
    index: int = 0,
    title: str = "Subdomain discovered: www.example.com",
    description: str = "Found subdomain www.example.com during reconnaissance",
    severity: Severity = Severity.LOW,
    type: str = "subdomain",
    project_id: str = "proj-1",
    metadata: Optional[dict] = None,
) -> Finding:
    return Finding(
        id=f"run-1-f{index}",
        project_id=project_id,
        run_id="run-1",
        type=type,
        severity=severity,
        title=title,
        description=description,
        target="example.com",
        metadata=metadata or {},
        created_at=FIXED_TIME,
    )


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    project = tmp_path / "test-project"
    project.mkdir()
    return project


@pytest.fixture
def initialized_project(tmp_project: Path) -> Path:
    """Project with .reconpilot/config.yaml present."""
    cfg_dir = tmp_project / ".reconpilot"
    cfg_dir.mkdir()
    (cfg_dir / "config.yaml").write_text(
        "project:\n"
        "  id: acme\n"
        "  target: example.com\n"
        "  scope: [example.com]\n"
        "  plan: free\n"
        "\n"
        "ai:\n"
        "  provider: stub\n"
        "\n"
        "queue:\n"
        "  max_concurrent: 2\n",
        encoding="utf-8",
    )
    return tmp_project


@pytest.fixture
def spec_factory():
    return make_spec


@pytest.fixture
def tool_factory():
    return ScriptedTool


@pytest.fixture
def finding_factory():
    return make_finding
