"""Single-role calls, the two-role quick review and the four-role pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import json
import logging

from roundtable.config import AgentSettings, Config
from roundtable.evaluator import ResponseEvaluator
from roundtable.memory import MemoryStore
from roundtable.models.base import CompletionProvider
from roundtable.models.registry import build_provider
from roundtable.personas import Critic, Fixer, Implementer, Persona, Planner, build_persona
from roundtable.schemas import InvocationResult

logger = logging.getLogger(__name__)


@dataclass
class QuickReviewResult:
    blueprint: InvocationResult
    fixes: InvocationResult

    def to_dict(self) -> Dict[str, Any]:
        return {"blueprint": self.blueprint.to_dict(), "fixes": self.fixes.to_dict()}


@dataclass
class PipelineResult:
    blueprint: InvocationResult
    implementation: InvocationResult
    diagnosis: Optional[InvocationResult] = None
    meta_analysis: Optional[InvocationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "blueprint": self.blueprint.to_dict(),
            "implementation": self.implementation.to_dict(),
        }
        if self.diagnosis is not None:
            payload["diagnosis"] = self.diagnosis.to_dict()
        if self.meta_analysis is not None:
            payload["meta_analysis"] = self.meta_analysis.to_dict()
        return payload


class Orchestrator:
    def __init__(
        self,
        provider: CompletionProvider,
        settings: AgentSettings | None = None,
        memory: MemoryStore | None = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or AgentSettings()
        self.memory = memory
        self.evaluator = ResponseEvaluator.from_settings(self.settings)
        self._personas: Dict[str, Persona] = {}

    @classmethod
    def from_config(cls, config: Config) -> "Orchestrator":
        memory = None
        if config.memory.get("enabled", True):
            memory = MemoryStore(
                config.memory_path,
                max_entries=int(config.memory.get("max_entries", 5)),
                min_similarity=float(config.memory.get("min_similarity", 0.2)),
            )
        return cls(build_provider(config), AgentSettings.from_config(config), memory)

    def get_persona(self, role: str) -> Persona:
        persona = self._personas.get(role)
        if persona is None:
            persona = build_persona(role, self.provider, self.settings, self.evaluator)
            self._personas[role] = persona
        return persona

    @property
    def planner(self) -> Planner:
        return self.get_persona(Planner.role)  # type: ignore[return-value]

    @property
    def fixer(self) -> Fixer:
        return self.get_persona(Fixer.role)  # type: ignore[return-value]

    @property
    def implementer(self) -> Implementer:
        return self.get_persona(Implementer.role)  # type: ignore[return-value]

    @property
    def critic(self) -> Critic:
        return self.get_persona(Critic.role)  # type: ignore[return-value]

    def invoke_agent(self, role: str, prompt: str, review: Optional[bool] = None) -> InvocationResult:
        """Invoke one role. ``review`` overrides the strict-mode Critic review."""
        result = self.get_persona(role).invoke(prompt)
        if review is None:
            review = self.settings.enable_critic_review and self.settings.strict
        if review:
            verdict = self.critic.evaluate(json.dumps(result.response.to_dict()), f"Original prompt: {prompt}")
            result.response.validations.passed.extend(f"[Critic] {v}" for v in verdict.response.validations.passed)
            result.response.validations.failed.extend(f"[Critic] {v}" for v in verdict.response.validations.failed)
            logger.info("Critic review of %s: %d failed checks", role, len(verdict.response.validations.failed))
        return result

    def invoke_with_memory(self, role: str, prompt: str, review: Optional[bool] = None) -> InvocationResult:
        """Like ``invoke_agent`` but with relevant stored memories appended to the prompt.

        The returned result carries the invocation run id.
        """
        enhanced = prompt
        if self.memory is not None:
            context = self.memory.build_context(role, prompt)
            if context:
                enhanced = f"{prompt}\n\n{context}"
                logger.info("Added memory context to %s prompt", role)
        return self.invoke_agent(role, enhanced, review=review)

    def quick_review(self, task: str) -> QuickReviewResult:
        blueprint = self.planner.invoke(task)
        fixes = self.fixer.invoke(f"Check for issues in this design:\n\n{blueprint.response.recommendation}")
        return QuickReviewResult(blueprint=blueprint, fixes=fixes)

    def run_pipeline(self, task: str) -> PipelineResult:
        blueprint = self.planner.design(task)
        implementation = self.implementer.implement(
            blueprint.response.recommendation,
            blueprint.response.alternatives,
        )

        diagnosis = None
        failed = implementation.response.validations.failed
        if failed:
            logger.info("Implementation reported %d validation failures; asking the Fixer", len(failed))
            diagnosis = self.fixer.diagnose("Implementation has validation failures", json.dumps(failed))

        meta_analysis = None
        if self.settings.enable_critic_review:
            meta_analysis = self.critic.meta_think([
                json.dumps(blueprint.response.to_dict()),
                json.dumps(implementation.response.to_dict()),
                json.dumps(diagnosis.response.to_dict()) if diagnosis else "",
            ])

        return PipelineResult(
            blueprint=blueprint,
            implementation=implementation,
            diagnosis=diagnosis,
            meta_analysis=meta_analysis,
        )
