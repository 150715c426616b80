"""Finding data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    run_id: str
    type: str
    severity: Severity
    title: str
    description: str
    target: str
    metadata: dict[str, Any] = {}
    created_at: datetime


class SeverityBreakdown(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
