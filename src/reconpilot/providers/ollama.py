"""Ollama local inference provider."""

from __future__ import annotations

import httpx

from ..models.provider import CompletionResult
from .base import BaseProvider


class OllamaProvider(BaseProvider):
    name = "ollama"
    default_model = "llama3.1:70b"
    default_basic_model = "llama3.1:8b"

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model_class: str = "basic",
        max_tokens: int = 0,
    ) -> CompletionResult:
        endpoint = self.config.get("endpoint", "http://localhost:11434")
        model = self._resolve_model(model_class)

        body = {
            "model": model,
            "system": system_prompt,
            "prompt": user_prompt,
            "format": "json",
            "stream": False,
            "options": {
                "temperature": self.common.get("temperature", 0.1),
                "num_predict": max_tokens or self.common.get("max_tokens", 1000),
            },
        }

        try:
            url = f"{endpoint.rstrip('/')}/api/generate"
            async with httpx.AsyncClient(timeout=self.common.get("timeout_seconds", 120)) as client:
                response = await client.post(url, json=body)
                response.raise_for_status()
                data = response.json()

            return CompletionResult(success=True, content=data.get("response", ""), model=model)
        except httpx.TimeoutException:
            return CompletionResult(success=False, model=model, error="Request timed out")
        except httpx.HTTPStatusError as e:
            return CompletionResult(success=False, model=model, error=f"{e.response.status_code} | {e.response.text[:500]}")
        except (httpx.HTTPError, ValueError) as e:
            return CompletionResult(success=False, model=model, error=str(e) or type(e).__name__)
