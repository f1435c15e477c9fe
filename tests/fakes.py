"""Scripted completion provider shared by the test modules."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from roundtable.config import AgentSettings
from roundtable.models.base import CompletionProvider, CompletionResult, estimate_tokens


@dataclass
class Call:
    system_prompt: str
    user_prompt: str
    max_tokens: int
    temperature: float


def cot_response(
    recommendation: str,
    confidence: Any = 0.8,
    steps: int = 1,
    alternatives: Optional[Sequence[str]] = None,
    warnings: Optional[Sequence[str]] = None,
    code_output: Optional[str] = None,
    validations: Optional[Dict[str, List[str]]] = None,
) -> str:
    payload: Dict[str, Any] = {
        "reasoning": [
            {"step": i, "thought": f"Thought {i}", "action": f"Action {i}", "observation": f"Observation {i}"}
            for i in range(1, steps + 1)
        ],
        "recommendation": recommendation,
        "confidence": confidence,
        "alternatives": list(alternatives or []),
        "warnings": list(warnings or []),
        "validations": validations or {"passed": [], "failed": []},
    }
    if code_output is not None:
        payload["code_output"] = code_output
    return json.dumps(payload)


class ScriptedProvider(CompletionProvider):
    """Replays queued outputs, or asks ``responder`` for each call.

    Queued items that are exceptions are raised instead of returned.
    """

    name = "scripted"

    def __init__(
        self,
        responses: Optional[Sequence[Any]] = None,
        responder: Optional[Callable[[str, str], str]] = None,
    ) -> None:
        self.responses = list(responses or [])
        self.responder = responder
        self.calls: List[Call] = []

    def complete(self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float) -> CompletionResult:
        self.calls.append(Call(system_prompt, user_prompt, max_tokens, temperature))
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, Exception):
                raise item
            text = item
        elif self.responder is not None:
            text = self.responder(system_prompt, user_prompt)
        else:
            text = cot_response("Proceed with the straightforward design as written.")
        return CompletionResult(
            text=text,
            input_tokens=estimate_tokens(system_prompt + user_prompt),
            output_tokens=estimate_tokens(text),
            duration_ms=1.0,
        )


ROLE_MARKERS = {
    "planner": "You are The Planner",
    "fixer": "You are The Fixer",
    "implementer": "You are The Implementer",
    "critic": "You are The Critic",
}


def role_of(system_prompt: str) -> str:
    for role, marker in ROLE_MARKERS.items():
        if marker in system_prompt:
            return role
    return "reviewer"


def single_shot_settings(**overrides: Any) -> AgentSettings:
    """One provider call per invocation: no voting, no self-critique."""
    values: Dict[str, Any] = {"consistency_mode": "none", "enable_self_critique": False}
    values.update(overrides)
    return AgentSettings(**values)


class PromptScript:
    """Responder keyed on how the user prompt starts.

    Values are recommendation strings, wrapped in a well-formed response.
    """

    def __init__(self, script: Dict[str, str], default: str = "Acknowledged, nothing further to add here.") -> None:
        self.script = script
        self.default = default
        self.seen: List[str] = []

    def __call__(self, system_prompt: str, user_prompt: str) -> str:
        for prefix, recommendation in self.script.items():
            if user_prompt.startswith(prefix):
                self.seen.append(prefix)
                return cot_response(recommendation, steps=2)
        self.seen.append("<default>")
        return cot_response(self.default, steps=2)
