"""Client for OpenAI-compatible chat completion endpoints."""
from __future__ import annotations

from typing import Any, Dict
import logging
import os
import time

import httpx

from roundtable.errors import API_KEY_INVALID, ProviderConnectionError, TIMEOUT_EXCEEDED
from roundtable.models.base import CompletionProvider, CompletionResult, estimate_tokens, raise_for_status

logger = logging.getLogger(__name__)


class OpenAIClient(CompletionProvider):
    """Talks to ``/chat/completions`` on OpenAI or any server that mimics it."""

    name = "openai"

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.model = model
        self.api_key = api_key if api_key is not None else os.environ.get("OPENAI_API_KEY", "")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                resp = client.post(f"{self.base_url}/chat/completions", json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise ProviderConnectionError(
                self.name, f"OpenAI timeout after {self.timeout_seconds}s", code=TIMEOUT_EXCEEDED
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderConnectionError(self.name, f"OpenAI request failed: {exc}") from exc
        duration = (time.perf_counter() - start) * 1000

        if resp.status_code == 401:
            raise ProviderConnectionError(
                self.name, "OpenAI rejected the API key", status_code=401, code=API_KEY_INVALID
            )
        raise_for_status(self.name, resp)

        try:
            data = resp.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderConnectionError(self.name, "OpenAI returned an unexpected payload") from exc
        if not isinstance(text, str):
            raise ProviderConnectionError(self.name, "OpenAI response missing message content")

        usage = data.get("usage") or {}
        logger.debug("openai %s completed in %.0fms", self.model, duration)
        return CompletionResult(
            text=text,
            input_tokens=int(usage.get("prompt_tokens") or estimate_tokens(system_prompt + user_prompt)),
            output_tokens=int(usage.get("completion_tokens") or estimate_tokens(text)),
            duration_ms=duration,
        )
