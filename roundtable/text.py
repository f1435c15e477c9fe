"""Text helpers shared by the reasoning engine and the workflow."""
from __future__ import annotations

from typing import Any, Dict, Set
import json
import re

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def word_set(text: str) -> Set[str]:
    return set(text.lower().split())


def jaccard(a: str, b: str) -> float:
    """Word-set overlap: |A & B| / |A | B| over lowercase whitespace tokens."""
    set_a = word_set(a or "")
    set_b = word_set(b or "")
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def parse_json_payload(text: str) -> Dict[str, Any] | None:
    """Best-effort extraction of a JSON object from model output."""
    if not text:
        return None
    candidates = [text]
    match = _FENCE.search(text)
    if match:
        candidates.append(match.group(1))
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])
    for blob in candidates:
        try:
            data = json.loads(blob)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."
