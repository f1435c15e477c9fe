"""Minimal Ollama client for local inference."""
from __future__ import annotations

from typing import Any, Dict
import httpx
import time

from roundtable.errors import ProviderConnectionError, TIMEOUT_EXCEEDED
from roundtable.models.base import CompletionProvider, CompletionResult, estimate_tokens, raise_for_status


class OllamaClient(CompletionProvider):
    name = "ollama"

    def __init__(
        self,
        model: str = "qwen2.5:14b",
        base_url: str = "http://localhost:11434",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": user_prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if system_prompt:
            payload["system"] = system_prompt

        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                resp = client.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderConnectionError(
                self.name, f"Ollama timeout after {self.timeout_seconds}s", code=TIMEOUT_EXCEEDED
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderConnectionError(self.name, f"Ollama request failed: {exc}") from exc
        duration = (time.perf_counter() - start) * 1000
        raise_for_status(self.name, resp)
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderConnectionError(self.name, "Ollama returned a non-JSON body") from exc
        text = data.get("response")
        if not isinstance(text, str):
            raise ProviderConnectionError(self.name, "Ollama response missing 'response' text")
        return CompletionResult(
            text=text,
            input_tokens=int(data.get("prompt_eval_count") or estimate_tokens(system_prompt + user_prompt)),
            output_tokens=int(data.get("eval_count") or estimate_tokens(text)),
            duration_ms=duration,
        )
