"""Tool descriptor and tool result data models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from .finding import Finding
from .tier import Plan


class ToolCategory(str, Enum):
    SUBDOMAIN = "subdomain"
    ENDPOINT = "endpoint"
    VULNERABILITY = "vulnerability"
    SECRET = "secret"
    PORT = "port"
    DNS = "dns"


class Origin(str, Enum):
    REAL = "real"
    CACHED = "cached"
    SIMULATED = "simulated"


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    tier: Plan = Plan.FREE
    requires_key: bool = False
    rate_limited: bool = False
    category: ToolCategory
    binary: Optional[str] = None


class ResultMetadata(BaseModel):
    origin: Origin
    cache_hit: bool = False
    cached_origin: Optional[Origin] = None
    simulation_reason: Optional[str] = None
    key_used: Optional[str] = None
    execution_time_ms: int = 0


class ToolResult(BaseModel):
    """Outcome of one tool execution.

    ``success`` is True for real, cached and simulated results alike; the
    ``metadata.origin`` field is what tells them apart. ``success`` is only
    False when the dispatch itself broke, in which case ``error`` is set.
    """

    success: bool
    tool: Optional[str] = None
    target: Optional[str] = None
    output: Any = None
    metadata: Optional[ResultMetadata] = None
    findings: list[Finding] = []
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, tool: Optional[str] = None, target: Optional[str] = None) -> "ToolResult":
        return cls(success=False, tool=tool, target=target, error=error)

    @property
    def origin(self) -> Optional[Origin]:
        return self.metadata.origin if self.metadata else None
