"""Error taxonomy for the orchestration core.

Only ``TierRestricted`` is ever surfaced to a caller as a rejection. The other
failure classes are converted into degraded-but-successful results by the
component that catches them.
"""

from __future__ import annotations

from typing import Optional


class ReconError(Exception):
    """Base class for reconpilot errors."""


class TierRestricted(ReconError):
    """Plan or credential gate failure. Not retried."""

    def __init__(self, tool: str, plan: str, reason: Optional[str] = None):
        self.tool = tool
        self.plan = plan
        self.reason = reason or (
            f"Tool '{tool}' requires upgrade or own credential ({plan} plan)"
        )
        super().__init__(self.reason)


class UnknownTool(ReconError):
    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Unknown tool: {tool}")


class ToolTransportFailure(ReconError):
    """Process or API failure for a single tool call (absorbed by simulation)."""

    def __init__(self, tool: str, message: str):
        self.tool = tool
        super().__init__(message)


class InfrastructureFailure(ReconError):
    """Unexpected exception raised while dispatching an execution."""


class DecisionParseFailure(ReconError):
    """The reasoning collaborator returned something that is not a decision."""


class NotCancellable(ReconError):
    def __init__(self, execution_id: str, status: str):
        self.execution_id = execution_id
        self.status = status
        super().__init__(f"Execution {execution_id} is {status} and cannot be cancelled")
