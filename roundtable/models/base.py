"""Completion provider contract shared by every model adapter."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import math

import httpx

from roundtable.errors import ProviderConnectionError, RateLimitError


@dataclass
class CompletionResult:
    text: str
    input_tokens: int
    output_tokens: int
    duration_ms: float = 0.0


class CompletionProvider:
    """Prompt in, text and token counts out.

    Implementations raise ``RateLimitError`` or ``ProviderConnectionError``
    instead of returning partial or malformed text.
    """

    name = "provider"

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> CompletionResult:
        raise NotImplementedError


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / 4)


def retry_after_ms(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


def raise_for_status(provider: str, response: httpx.Response) -> None:
    if response.status_code == 429:
        raise RateLimitError(provider, retry_after_ms=retry_after_ms(response))
    if response.status_code >= 400:
        raise ProviderConnectionError(
            provider,
            f"{provider} HTTP {response.status_code}: {response.text[:500]}",
            status_code=response.status_code,
        )
