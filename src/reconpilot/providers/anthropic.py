"""Anthropic Messages API provider."""

from __future__ import annotations

import os
from typing import Optional

import httpx

from ..models.provider import CompletionResult
from .base import BaseProvider


class AnthropicProvider(BaseProvider):
    name = "anthropic"
    API_URL = "https://api.anthropic.com/v1/messages"
    default_model = "claude-sonnet-4-5-20250929"
    default_basic_model = "claude-haiku-4-5-20251001"

    def _get_api_key(self) -> Optional[str]:
        env_var = self.config.get("api_key_env", "ANTHROPIC_API_KEY")
        return os.environ.get(env_var)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model_class: str = "basic",
        max_tokens: int = 0,
    ) -> CompletionResult:
        api_key = self._get_api_key()
        if not api_key:
            env_var = self.config.get("api_key_env", "ANTHROPIC_API_KEY")
            return CompletionResult(
                success=False,
                error=f"API key not found in environment variable: {env_var}",
            )

        model = self._resolve_model(model_class)
        body = {
            "model": model,
            "max_tokens": max_tokens or self.common.get("max_tokens", 1000),
            "temperature": self.common.get("temperature", 0.1),
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.common.get("timeout_seconds", 120)) as client:
                response = await client.post(self.API_URL, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()

            content = next(
                (block.get("text") for block in data.get("content", []) if block.get("type") == "text"),
                None,
            )
            usage = data.get("usage", {})
            return CompletionResult(
                success=True,
                content=content,
                model=model,
                tokens_used={
                    "input": usage.get("input_tokens", 0),
                    "output": usage.get("output_tokens", 0),
                },
            )
        except httpx.TimeoutException:
            return CompletionResult(success=False, model=model, error="Request timed out")
        except httpx.HTTPStatusError as e:
            return CompletionResult(
                success=False,
                model=model,
                error=f"{e.response.status_code} | {e.response.text[:500]}",
            )
        except (httpx.HTTPError, ValueError) as e:
            return CompletionResult(success=False, model=model, error=str(e) or type(e).__name__)
