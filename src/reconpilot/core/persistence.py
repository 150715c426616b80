"""Persistence collaborator: audit trail for executions and findings.

The scheduling path treats every call here as best-effort. Callers wrap
``save`` and log failures instead of propagating them.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

import yaml

from ..models.execution import ExecutionRequest
from ..models.finding import Finding
from ..models.project import ProjectScope

Record = Union[ExecutionRequest, Finding]


@runtime_checkable
class Persistence(Protocol):
    def save(self, record: Record) -> None: ...

    def load_project_scope(self, project_id: str) -> Optional[ProjectScope]: ...


class InMemoryPersistence:
    def __init__(self, scopes: Optional[dict[str, ProjectScope]] = None):
        self.executions: dict[str, ExecutionRequest] = {}
        self.findings: dict[str, Finding] = {}
        self.scopes: dict[str, ProjectScope] = dict(scopes or {})

    def save(self, record: Record) -> None:
        if isinstance(record, ExecutionRequest):
            self.executions[record.id] = record.model_copy(deep=True)
        elif isinstance(record, Finding):
            self.findings[record.id] = record
        else:
            raise TypeError(f"Cannot persist {type(record).__name__}")

    def load_project_scope(self, project_id: str) -> Optional[ProjectScope]:
        return self.scopes.get(project_id)


class JsonlPersistence:
    """Append-only JSON lines under a directory.

    ``executions.jsonl`` and ``findings.jsonl`` receive one line per save.
    Project scopes are read from an optional ``scopes.yaml`` mapping of
    project id to ``{target, scope, plan}``.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def save(self, record: Record) -> None:
        if isinstance(record, ExecutionRequest):
            path = self.directory / "executions.jsonl"
        elif isinstance(record, Finding):
            path = self.directory / "findings.jsonl"
        else:
            raise TypeError(f"Cannot persist {type(record).__name__}")
        line = record.model_dump_json()
        with self._lock, path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def load_project_scope(self, project_id: str) -> Optional[ProjectScope]:
        scopes_path = self.directory / "scopes.yaml"
        if not scopes_path.exists():
            return None
        data = yaml.safe_load(scopes_path.read_text(encoding="utf-8-sig")) or {}
        entry = data.get(project_id)
        if not entry:
            return None
        return ProjectScope(project_id=project_id, **entry)
