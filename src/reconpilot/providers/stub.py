"""Offline provider returning canned decisions.

Used for ``--dry-run`` and whenever no hosted model is configured. It reads
the ``Target:`` and ``Request:`` lines the decision gate writes into the user
prompt and answers with a fixed plan for the handful of phrasings it knows.
"""

from __future__ import annotations

import json
import re

from ..models.provider import CompletionResult
from .base import BaseProvider

CLARIFICATION = (
    "Could you please specify what type of reconnaissance you'd like to perform? "
    'For example: "run basic recon", "find endpoints", "check for vulnerabilities", etc.'
)


def _line(prompt: str, label: str) -> str:
    m = re.search(rf"^{label}:\s*(.*)$", prompt, re.MULTILINE)
    return m.group(1).strip() if m else ""


def canned_decision(request: str, target: str) -> dict:
    text = request.lower()
    target = target or "example.com"

    if "basic recon" in text or "start" in text:
        return {
            "actions": [
                {
                    "tool": "subfinder",
                    "target": target,
                    "reason": "Enumerate subdomains to discover the attack surface",
                    "confidence": 0.9,
                },
                {
                    "tool": "httpx",
                    "target": target,
                    "reason": "Check which discovered subdomains are live and accessible",
                    "confidence": 0.8,
                },
            ],
            "reasoning": (
                "Starting with subdomain enumeration is the standard first step in "
                "reconnaissance. This maps the target's infrastructure before deeper analysis."
            ),
            "confidence": 0.85,
        }

    if "endpoints" in text or "urls" in text:
        return {
            "actions": [
                {
                    "tool": "waybackurls",
                    "target": target,
                    "reason": "Gather historical URLs from Wayback Machine",
                    "confidence": 0.7,
                },
                {
                    "tool": "gau",
                    "target": target,
                    "reason": "Collect URLs from multiple sources including AlienVault",
                    "confidence": 0.7,
                },
            ],
            "reasoning": (
                "URL collection surfaces endpoints and attack vectors that traditional "
                "crawling might miss."
            ),
            "confidence": 0.75,
        }

    return {
        "actions": [],
        "reasoning": "The request needs more specificity to suggest appropriate reconnaissance actions.",
        "confidence": 0.3,
        "clarification": CLARIFICATION,
    }


class StubProvider(BaseProvider):
    name = "stub"
    default_model = "stub"

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model_class: str = "basic",
        max_tokens: int = 0,
    ) -> CompletionResult:
        decision = canned_decision(_line(user_prompt, "Request"), _line(user_prompt, "Target"))
        return CompletionResult(
            success=True,
            content=json.dumps(decision),
            model=f"stub-{model_class}",
        )
