"""Execution request data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .tier import Plan
from .tool import ToolResult


class ExecutionStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.QUEUED: {ExecutionStatus.RUNNING},
    ExecutionStatus.RUNNING: {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED},
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
}


class ExecutionRequest(BaseModel):
    id: str
    project_id: str
    tool: str
    target: str
    plan: Plan = Plan.FREE
    priority: int = 0
    confidence: float = 0.0
    user_id: Optional[str] = None
    headers: dict[str, str] = {}
    credentials: dict[str, str] = Field(default_factory=dict, exclude=True, repr=False)
    sequence: int = 0
    submitted_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    status: ExecutionStatus = ExecutionStatus.QUEUED
    result: Optional[ToolResult] = None

    @property
    def terminal(self) -> bool:
        return self.status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)

    def transition(self, status: ExecutionStatus) -> None:
        """Move to ``status``, rejecting anything off the queued→running→done path."""
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal transition for {self.id}: {self.status.value} -> {status.value}"
            )
        self.status = status


class QueueStats(BaseModel):
    queued: int = 0
    running: int = 0
    ceiling: int = 0
    processing: bool = False
