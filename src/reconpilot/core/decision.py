"""Decision gate: free text in, proposed tool runs and an approval verdict out.

The reasoning itself is delegated to a provider. This module builds the
prompt, parses whatever comes back, and applies the all-or-nothing
auto-execute rule. A bad or missing answer never raises: it becomes an empty
decision that asks the user to clarify.
"""

from __future__ import annotations

import json
import logging
import math
import re
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, ValidationError, field_validator

from ..models.decision import (
    ActionStatus,
    Decision,
    DecisionContext,
    DecisionOutcome,
    DecisionStats,
    ProposedAction,
)
from ..providers.base import ReasoningProvider
from .errors import DecisionParseFailure
from .tiers import TierPolicy, coerce_plan

logger = logging.getLogger(__name__)

SAFE_TOOLS = frozenset({"subfinder", "httpx", "waybackurls", "gau", "dnsx"})

SYSTEM_PROMPT = """You are a reconnaissance planner for authorized security testing.
Given a user's request and the project context, propose tool runs.

Respond with a single JSON object and nothing else:
{{
  "actions": [
    {{"tool": "<tool name>", "target": "<host or domain>", "reason": "<why>", "confidence": <0.0-1.0>}}
  ],
  "reasoning": "<overall explanation>",
  "confidence": <0.0-1.0>,
  "clarification": "<question for the user, only if the request is ambiguous>"
}}

Only use these tools: {tools}.
Only target hosts inside the project scope. If the request is unclear, return no
actions and ask a clarification question."""

PARSE_CLARIFICATION = "I couldn't interpret a plan for that request. Could you rephrase it?"
PROVIDER_CLARIFICATION = "The planning service is unavailable right now. Please try again shortly."


class _RawAction(BaseModel):
    tool: str
    target: str = ""
    reason: str = ""
    confidence: float = 0.0

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        if not math.isfinite(v):
            return 0.0
        return min(max(v, 0.0), 1.0)


class _RawDecision(BaseModel):
    actions: list[_RawAction] = []
    reasoning: str = ""
    confidence: float = 0.0
    needs_clarification: bool = False
    clarification: Optional[str] = None

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        if not math.isfinite(v):
            return 0.0
        return min(max(v, 0.0), 1.0)


_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def parse_decision(content: Optional[str]) -> _RawDecision:
    """Extract the decision object from provider text.

    Tolerates code fences and prose around the JSON object. Raises
    ``DecisionParseFailure`` for anything that is not a usable decision.
    """
    if not content or not content.strip():
        raise DecisionParseFailure("Empty response from reasoning provider")
    text = _FENCE.sub("", content.strip())
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise DecisionParseFailure("No JSON object in response")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise DecisionParseFailure(f"Invalid JSON: {e}") from e
    try:
        return _RawDecision.model_validate(data)
    except ValidationError as e:
        raise DecisionParseFailure(f"Unexpected decision shape: {e.error_count()} errors") from e


class DecisionGate:
    def __init__(
        self,
        provider: ReasoningProvider,
        tier_policy: Optional[TierPolicy] = None,
        safe_tools: Iterable[str] = SAFE_TOOLS,
        auto_execute_confidence: float = 0.8,
        action_confidence: float = 0.7,
        history_size: int = 10,
        max_tokens: int = 1000,
    ):
        self.provider = provider
        self.tier_policy = tier_policy or TierPolicy()
        self.safe_tools = frozenset(safe_tools)
        self.auto_execute_confidence = auto_execute_confidence
        self.action_confidence = action_confidence
        self.history_size = history_size
        self.max_tokens = max_tokens
        self._history: dict[str, list[Decision]] = {}

    def allowed_tools(self, context: DecisionContext) -> list[str]:
        limits = self.tier_policy.limits(context.plan)
        return sorted(set(limits.allowed_tools) | set(context.own_credentials))

    def build_prompts(self, text: str, context: DecisionContext) -> tuple[str, str]:
        tools = self.allowed_tools(context)
        system_prompt = SYSTEM_PROMPT.format(tools=", ".join(tools))
        user_prompt = "\n".join([
            f"Target: {context.target}",
            f"Scope: {', '.join(context.scope) or context.target}",
            f"Plan: {coerce_plan(context.plan).value}",
            f"Request: {' '.join(text.split())}",
        ])
        return system_prompt, user_prompt

    async def decide(self, text: str, context: DecisionContext) -> Decision:
        system_prompt, user_prompt = self.build_prompts(text, context)
        model_class = self.tier_policy.llm_model(context.plan)

        try:
            result = await self.provider.complete_with_retry(
                system_prompt, user_prompt, model_class, self.max_tokens
            )
        except Exception as e:
            logger.warning("Reasoning provider raised %s: %s", type(e).__name__, e)
            decision = self._fallback(context, PROVIDER_CLARIFICATION)
        else:
            if not result.success:
                logger.warning("Reasoning provider failed: %s", result.error)
                decision = self._fallback(context, PROVIDER_CLARIFICATION)
            else:
                try:
                    raw = parse_decision(result.content)
                except DecisionParseFailure as e:
                    logger.warning("Discarding reasoning output: %s", e)
                    decision = self._fallback(context, PARSE_CLARIFICATION)
                else:
                    decision = self._build(raw, context)

        self._record(decision)
        logger.info(
            "Decision %s: %d actions, confidence %.2f, %s",
            decision.id,
            len(decision.actions),
            decision.confidence,
            "auto-execute" if decision.auto_execute else "requires approval",
        )
        return decision

    def should_auto_execute(self, decision: Decision) -> bool:
        """All-or-nothing gate: one unsafe or unsure action holds the batch."""
        if not decision.confidence >= self.auto_execute_confidence or decision.needs_clarification:
            return False
        return all(
            action.tool in self.safe_tools and action.confidence >= self.action_confidence
            for action in decision.actions
        )

    def _new_decision(self, context: DecisionContext, **fields) -> Decision:
        return Decision(
            id=f"decision_{uuid.uuid4().hex[:12]}",
            project_id=context.project_id,
            created_at=datetime.now(timezone.utc),
            **fields,
        )

    def _fallback(self, context: DecisionContext, clarification: str) -> Decision:
        return self._new_decision(
            context,
            actions=[],
            confidence=0.0,
            needs_clarification=True,
            clarification=clarification,
            auto_execute=False,
            requires_approval=True,
        )

    def _build(self, raw: _RawDecision, context: DecisionContext) -> Decision:
        decision = self._new_decision(
            context,
            reasoning=raw.reasoning,
            confidence=raw.confidence,
            needs_clarification=raw.needs_clarification or bool(raw.clarification),
            clarification=raw.clarification,
        )
        decision.actions = [
            ProposedAction(
                id=f"{decision.id}-a{index}",
                tool=action.tool.strip().lower(),
                target=action.target or context.target,
                reason=action.reason,
                confidence=action.confidence,
                inferred=not action.target,
            )
            for index, action in enumerate(raw.actions)
        ]
        decision.auto_execute = self.should_auto_execute(decision)
        decision.requires_approval = not decision.auto_execute
        return decision

    # History

    def _record(self, decision: Decision) -> None:
        history = self._history.setdefault(decision.project_id, [])
        history.append(decision)
        if len(history) > self.history_size:
            del history[: len(history) - self.history_size]

    def _find(self, project_id: str, decision_id: str) -> tuple[Optional[list[Decision]], Optional[Decision]]:
        history = self._history.get(project_id)
        if history is None:
            return None, None
        return history, next((d for d in history if d.id == decision_id), None)

    def approve(self, project_id: str, decision_id: str) -> DecisionOutcome:
        history, decision = self._find(project_id, decision_id)
        if history is None:
            return DecisionOutcome(success=False, message="Project not found")
        if decision is None:
            return DecisionOutcome(success=False, message="Decision not found")
        if not decision.requires_approval:
            return DecisionOutcome(success=False, message="Decision does not require approval", decision=decision)

        decision.requires_approval = False
        decision.auto_execute = True
        for action in decision.actions:
            action.status = ActionStatus.ACCEPTED
        return DecisionOutcome(success=True, message=f"Decision {decision_id} approved for execution", decision=decision)

    def reject(self, project_id: str, decision_id: str, reason: Optional[str] = None) -> DecisionOutcome:
        history, decision = self._find(project_id, decision_id)
        if history is None:
            return DecisionOutcome(success=False, message="Project not found")
        if decision is None:
            return DecisionOutcome(success=False, message="Decision not found")

        history.remove(decision)
        for action in decision.actions:
            action.status = ActionStatus.REJECTED
        message = f"Decision {decision_id} rejected" + (f": {reason}" if reason else "")
        return DecisionOutcome(success=True, message=message, decision=decision)

    def history(self, project_id: str) -> list[Decision]:
        return list(self._history.get(project_id, []))

    def pending(self, project_id: str) -> list[Decision]:
        return [d for d in self._history.get(project_id, []) if d.requires_approval]

    def auto_executable(self, project_id: str) -> list[Decision]:
        return [d for d in self._history.get(project_id, []) if d.auto_execute and not d.requires_approval]

    def clear(self, project_id: str) -> None:
        self._history.pop(project_id, None)

    def stats(self, project_id: str) -> DecisionStats:
        history = self._history.get(project_id, [])
        if not history:
            return DecisionStats()
        return DecisionStats(
            total_decisions=len(history),
            auto_executed=sum(1 for d in history if d.auto_execute and not d.requires_approval),
            pending_approval=sum(1 for d in history if d.requires_approval),
            average_confidence=round(sum(d.confidence for d in history) / len(history), 2),
        )
