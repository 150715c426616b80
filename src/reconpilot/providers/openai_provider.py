"""OpenAI chat completions provider."""

from __future__ import annotations

import os
from typing import Optional

import httpx

from ..models.provider import CompletionResult
from .base import BaseProvider


class OpenAIProvider(BaseProvider):
    name = "openai"
    API_URL = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-4o"
    default_basic_model = "gpt-4o-mini"

    def _get_api_key(self) -> Optional[str]:
        env_var = self.config.get("api_key_env", "OPENAI_API_KEY")
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
            env_var = self.config.get("api_key_env", "OPENAI_API_KEY")
            return CompletionResult(
                success=False,
                error=f"API key not found in environment variable: {env_var}",
            )

        model = self._resolve_model(model_class)
        body = {
            "model": model,
            "max_tokens": max_tokens or self.common.get("max_tokens", 1000),
            "temperature": self.common.get("temperature", 0.1),
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.common.get("timeout_seconds", 120)) as client:
                response = await client.post(self.API_URL, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()

            content = data["choices"][0]["message"]["content"]
            usage = data.get("usage", {})
            return CompletionResult(
                success=True,
                content=content,
                model=model,
                tokens_used={
                    "input": usage.get("prompt_tokens", 0),
                    "output": usage.get("completion_tokens", 0),
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
        except (httpx.HTTPError, ValueError, KeyError, IndexError) as e:
            return CompletionResult(success=False, model=model, error=str(e) or type(e).__name__)
