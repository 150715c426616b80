"""Decision gate data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .tier import Plan


class ActionStatus(str, Enum):
    SUGGESTED = "suggested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ProposedAction(BaseModel):
    id: str
    tool: str
    target: str
    reason: str = ""
    confidence: float = 0.0
    inferred: bool = False
    status: ActionStatus = ActionStatus.SUGGESTED


class DecisionContext(BaseModel):
    project_id: str
    plan: Plan = Plan.FREE
    user_id: Optional[str] = None
    target: str = ""
    scope: list[str] = []
    own_credentials: list[str] = []


class Decision(BaseModel):
    id: str
    project_id: str
    actions: list[ProposedAction] = []
    reasoning: str = ""
    confidence: float = 0.0
    needs_clarification: bool = False
    clarification: Optional[str] = None
    auto_execute: bool = False
    requires_approval: bool = True
    created_at: datetime
    execution_ids: list[str] = []


class DecisionStats(BaseModel):
    total_decisions: int = 0
    auto_executed: int = 0
    pending_approval: int = 0
    average_confidence: float = 0.0


class DecisionOutcome(BaseModel):
    success: bool
    message: str
    decision: Optional[Decision] = None
