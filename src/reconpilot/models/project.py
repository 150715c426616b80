"""Project scope data model."""

from __future__ import annotations

from pydantic import BaseModel

from .tier import Plan


class ProjectScope(BaseModel):
    project_id: str
    target: str
    scope: list[str] = []
    plan: Plan = Plan.FREE
