"""Native Gemini API client for Roundtable."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from roundtable.errors import API_KEY_INVALID, ProviderConnectionError, RateLimitError, TIMEOUT_EXCEEDED
from roundtable.models.base import CompletionProvider, CompletionResult, estimate_tokens
from roundtable.models.base import retry_after_ms as parse_retry_after

logger = logging.getLogger(__name__)


@dataclass
class GeminiResult:
    """Result from a Gemini API call."""
    text: str = ""
    ok: bool = True
    error: str | None = None
    duration_ms: float = 0.0
    usage: Dict[str, Any] | None = None
    status_code: int | None = None
    retry_after_ms: int | None = None


class GeminiClient(CompletionProvider):
    """Native Gemini API client using httpx."""

    name = "gemini"

    MODEL_MAP = {
        "2.5-flash": "gemini-2.5-flash",
        "2.5-pro": "gemini-2.5-pro",
        "2.0-flash": "gemini-2.0-flash",
        "1.5-flash": "gemini-1.5-flash",
        "1.5-pro": "gemini-1.5-pro",
    }

    def __init__(
        self,
        model: str = "2.5-flash",
        api_key: str | None = None,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.model = model
        self.api_key = api_key if api_key is not None else os.environ.get("GEMINI_API_KEY", "")
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> GeminiResult:
        if not self.api_key:
            return GeminiResult(ok=False, error="GEMINI_API_KEY not set")

        model_id = self.MODEL_MAP.get(self.model, self.model)
        url = f"{self.base_url}/models/{model_id}:generateContent?key={self.api_key}"

        generation: Dict[str, Any] = {"temperature": temperature}
        if max_tokens is not None:
            generation["maxOutputTokens"] = max_tokens
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, json=body)

            duration_ms = (time.perf_counter() - start) * 1000

            if response.status_code != 200:
                return GeminiResult(
                    ok=False,
                    error=f"HTTP {response.status_code}: {response.text[:500]}",
                    duration_ms=duration_ms,
                    status_code=response.status_code,
                    retry_after_ms=parse_retry_after(response) if response.status_code == 429 else None,
                )

            data = response.json()
            candidates = data.get("candidates", [])
            if not candidates:
                return GeminiResult(
                    ok=False,
                    error="No candidates in response",
                    duration_ms=duration_ms,
                    status_code=response.status_code,
                )

            parts = candidates[0].get("content", {}).get("parts", [])
            text = "".join(p.get("text", "") for p in parts)

            usage_meta = data.get("usageMetadata", {})
            usage = {
                "prompt_tokens": usage_meta.get("promptTokenCount", 0),
                "completion_tokens": usage_meta.get("candidatesTokenCount", 0),
                "total_tokens": usage_meta.get("totalTokenCount", 0),
            }

            return GeminiResult(
                text=text,
                ok=True,
                duration_ms=duration_ms,
                usage=usage,
                status_code=response.status_code,
            )

        except httpx.TimeoutException:
            duration_ms = (time.perf_counter() - start) * 1000
            return GeminiResult(
                ok=False,
                error=f"Gemini API timeout after {self.timeout_seconds}s",
                duration_ms=duration_ms,
            )
        except (httpx.HTTPError, ValueError) as e:
            duration_ms = (time.perf_counter() - start) * 1000
            return GeminiResult(
                ok=False,
                error=str(e),
                duration_ms=duration_ms,
            )

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult:
        result = self.generate(user_prompt, system=system_prompt, temperature=temperature, max_tokens=max_tokens)
        if not result.ok:
            logger.warning("Gemini call failed: %s", result.error)
            if result.status_code == 429:
                raise RateLimitError(self.name, retry_after_ms=result.retry_after_ms)
            if not self.api_key or result.status_code in (401, 403):
                raise ProviderConnectionError(
                    self.name, result.error or "missing API key", status_code=result.status_code, code=API_KEY_INVALID
                )
            if result.error and "timeout" in result.error.lower():
                raise ProviderConnectionError(self.name, result.error, code=TIMEOUT_EXCEEDED)
            raise ProviderConnectionError(self.name, result.error or "unknown error", status_code=result.status_code)
        usage = result.usage or {}
        return CompletionResult(
            text=result.text,
            input_tokens=int(usage.get("prompt_tokens") or estimate_tokens(system_prompt + user_prompt)),
            output_tokens=int(usage.get("completion_tokens") or estimate_tokens(result.text)),
            duration_ms=result.duration_ms,
        )
