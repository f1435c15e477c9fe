"""The four deliberation roles.

Every role shares one ``invoke`` implementation (self-consistency, optional
self-critique, tolerant parsing, CLASSic scoring). Roles differ only in their
system prompt and in the helpers that format a prompt before invoking.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Type
import json
import logging
import time

from roundtable.config import AgentSettings
from roundtable.errors import AgentNotFoundError, ErrorContext, ProviderError, hash_prompt, new_run_id
from roundtable.evaluator import ResponseEvaluator
from roundtable.models.base import CompletionProvider
from roundtable.reasoning import ReasoningEngine
from roundtable.schemas import (
    InvocationResponse,
    InvocationResult,
    ReasoningPath,
    Validations,
    parse_steps,
)
from roundtable.text import parse_json_payload

logger = logging.getLogger(__name__)


def _bullets(items: Sequence[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _string_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str) and value:
        return [value]
    return []


def path_payload(path: ReasoningPath) -> Dict[str, Any]:
    """Serializable response for a selected path, keeping its attempt's extras.

    The model's own confidence is kept as reported; ``path.confidence`` is the
    clamped value used only for consensus scoring.
    """
    payload = dict(path.payload)
    payload["reasoning"] = [s.to_dict() for s in path.steps]
    payload["recommendation"] = path.conclusion
    payload.setdefault("confidence", path.confidence)
    return payload


def build_response(text: str, fallback: ReasoningPath) -> InvocationResponse:
    """Parse the final response text; unparseable output falls back to the path."""
    data = parse_json_payload(text)
    if data is None:
        return InvocationResponse(
            reasoning=list(fallback.steps),
            recommendation=fallback.conclusion,
            confidence=fallback.confidence,
        )

    recommendation = data.get("recommendation") or data.get("conclusion") or fallback.conclusion
    try:
        confidence = float(data["confidence"])
    except (KeyError, TypeError, ValueError):
        confidence = fallback.confidence
    code_output = data.get("code_output", data.get("codeOutput"))
    return InvocationResponse(
        reasoning=parse_steps(data.get("reasoning")) or list(fallback.steps),
        recommendation=str(recommendation),
        confidence=confidence,
        alternatives=_string_list(data.get("alternatives")),
        warnings=_string_list(data.get("warnings")),
        code_output=str(code_output) if code_output else None,
        validations=Validations.from_dict(data.get("validations")),
    )


class Persona:
    role = "persona"
    display_name = "Persona"
    system_prompt = ""

    def __init__(
        self,
        provider: CompletionProvider,
        settings: AgentSettings | None = None,
        evaluator: ResponseEvaluator | None = None,
    ) -> None:
        self.settings = settings or AgentSettings()
        self.engine = ReasoningEngine(provider, self.settings)
        self.evaluator = evaluator or ResponseEvaluator.from_settings(self.settings)

    def invoke(self, prompt: str) -> InvocationResult:
        started = time.perf_counter()
        run_id = new_run_id()
        context = ErrorContext(
            run_id=run_id,
            role=self.role,
            action="invoke",
            prompt_hash=hash_prompt(prompt),
        )
        try:
            consistency = self.engine.run_self_consistency(
                self.system_prompt, prompt, self.settings.consistency_mode
            )
        except ProviderError as exc:
            exc.context = context
            raise

        selected = consistency.selected_path
        input_tokens = consistency.input_tokens
        output_tokens = consistency.output_tokens
        final_text = json.dumps(path_payload(selected))

        if self.settings.enable_self_critique:
            critique = self.engine.apply_self_critique(final_text, self.system_prompt)
            final_text = critique.improved_response
            input_tokens += critique.input_tokens
            output_tokens += critique.output_tokens
            if critique.improvements_made:
                logger.debug("%s self-critique applied %d improvements", self.role, len(critique.improvements_made))

        response = build_response(final_text, selected)
        checks = self.evaluator.validate_response(response)
        response.validations = Validations(
            passed=response.validations.passed + checks.passed,
            failed=response.validations.failed + checks.failed,
        )

        metrics = self.evaluator.build_metrics(
            started,
            input_tokens,
            output_tokens,
            response,
            consistency.consensus_score,
            len(consistency.all_paths),
            consistency.step_ms,
        )
        self.evaluator.enforce(response, metrics, context)
        self.evaluator.check_thresholds(self.role, metrics, context)
        logger.debug(
            "%s invoked run=%s consensus=%.2f tokens=%d",
            self.display_name, run_id, consistency.consensus_score, metrics.cost.tokens,
        )
        return InvocationResult(role=self.role, response=response, metrics=metrics, run_id=run_id)


class Planner(Persona):
    role = "planner"
    display_name = "The Planner"
    system_prompt = """You are The Planner, a system designer who turns open-ended goals into robust, buildable plans.

Your core capabilities:
1. Architecture design: produce a complete blueprint for the system or change
2. Decomposition: split complex work into small, well-defined components
3. Pattern selection: pick architectural patterns that fit the constraints
4. Trade-off analysis: state the pros and cons of competing approaches
5. Growth planning: design for changing requirements and scale

When analysing a task:
- Understand the problem domain and its constraints first
- Cover functional and non-functional requirements
- Describe data flow, state ownership and system boundaries
- Call out bottlenecks and failure points

Your outputs should include component descriptions, data flow, API boundaries,
scalability considerations and a risk assessment. Keep maintainability,
testability, security and operations in view."""

    def design(self, task: str, constraints: Optional[Sequence[str]] = None) -> InvocationResult:
        extra = f"\n\nConstraints to consider:\n{_bullets(constraints)}" if constraints else ""
        return self.invoke(f"Design a system architecture for: {task}{extra}")

    def review(self, architecture: str) -> InvocationResult:
        return self.invoke(f"Evaluate the following architecture and suggest improvements:\n\n{architecture}")

    def decompose(self, system: str) -> InvocationResult:
        return self.invoke(f"Decompose the following system into well-defined components:\n\n{system}")


class Fixer(Persona):
    role = "fixer"
    display_name = "The Fixer"
    system_prompt = """You are The Fixer, an expert debugger who diagnoses and repairs problems in designs and code.

Your core capabilities:
1. Root cause analysis: find the underlying cause, not the symptom
2. Error interpretation: read error messages, stack traces and logs
3. Performance work: locate and remove bottlenecks
4. Quality fixes: improve code while keeping its behaviour
5. Dependency resolution: untangle package and module conflicts

Your diagnostic process:
1. Reproduce: understand how the problem is triggered
2. Isolate: narrow it down to a component
3. Identify: name the root cause
4. Fix: give a targeted change with minimal side effects
5. Verify: say how to confirm the fix

Check for edge cases, race conditions, null references, off-by-one errors and
resource leaks. Always explain the issue, the fix, why it works and how to
prevent it recurring."""

    def diagnose(self, issue: str, error_log: Optional[str] = None) -> InvocationResult:
        extra = f"\n\nError Log:\n```\n{error_log}\n```" if error_log else ""
        return self.invoke(f"Diagnose and fix this issue: {issue}{extra}")

    def fix(self, code: str, problem: str) -> InvocationResult:
        return self.invoke(f"Fix the following problem in this code:\n\nProblem: {problem}\n\nCode:\n```\n{code}\n```")

    def optimize(self, code: str, metric: str = "performance") -> InvocationResult:
        return self.invoke(f"Optimize the following code for {metric}:\n\n```\n{code}\n```")


class Implementer(Persona):
    role = "implementer"
    display_name = "The Implementer"
    system_prompt = """You are The Implementer, a programmer who turns approved designs into clean, tested, production-ready code.

Your core capabilities:
1. Feature implementation: translate requirements into working code
2. Code generation: follow the conventions of the surrounding project
3. Refactoring: improve structure without changing behaviour
4. Test writing: cover behaviour and edge cases
5. API development: build small, well-documented interfaces

When implementing:
1. Understand the requirements before writing code
2. Design the interface first
3. Handle errors explicitly and add logging hooks
4. Validate inputs and consider edge cases

Put any code you produce in the code_output field. Keep functions small, names
meaningful and behaviour testable in isolation."""

    def implement(self, feature: str, constraints: Optional[Sequence[str]] = None) -> InvocationResult:
        extra = f"\n\nTechnical constraints:\n{_bullets(constraints)}" if constraints else ""
        return self.invoke(f"Implement the following feature: {feature}{extra}")

    def refactor(self, code: str, goals: Optional[Sequence[str]] = None) -> InvocationResult:
        extra = f"\n\nRefactoring goals:\n{_bullets(goals)}" if goals else ""
        return self.invoke(f"Refactor the following code:{extra}\n\n```\n{code}\n```")

    def write_tests(self, code: str, framework: str = "pytest") -> InvocationResult:
        return self.invoke(f"Write comprehensive tests for this code using {framework}:\n\n```\n{code}\n```")


class Critic(Persona):
    role = "critic"
    display_name = "The Critic"
    system_prompt = """You are The Critic, a meta-evaluator who judges the quality of decisions and finds what others miss.

Your core capabilities:
1. Decision analysis: weigh trade-offs and long-term implications
2. Bias detection: spot confirmation bias, sunk cost, anchoring, availability and survivorship bias
3. Opportunity mapping: find adjacent possibilities and future options
4. Process evaluation: judge how a decision was reached
5. Risk assessment: surface hidden risks and second-order effects

When evaluating:
1. Summarize the core proposal
2. State the explicit and implicit goals
3. Analyse the reasoning that was used
4. Point out blind spots and wrong assumptions
5. Suggest alternative framings

Score the reasoning quality from 0 to 100, list the biases you detect and
rate the overall decision. Put each adjacent or future opportunity on its own
line starting with "Opportunity:"."""

    def evaluate(self, content: str, context: Optional[str] = None) -> InvocationResult:
        extra = f"\n\nContext:\n{context}" if context else ""
        return self.invoke(f"Evaluate the following for quality, biases, and missed opportunities:{extra}\n\n{content}")

    def identify_biases(self, decision: str) -> InvocationResult:
        return self.invoke(f"Identify cognitive biases in this decision-making process:\n\n{decision}")

    def map_opportunities(self, situation: str) -> InvocationResult:
        return self.invoke(f"Map adjacent opportunities and unexplored possibilities for:\n\n{situation}")

    def meta_think(self, outputs: Sequence[str]) -> InvocationResult:
        body = "\n\n---\n\n".join(f"Agent Output {i}:\n{text}" for i, text in enumerate(outputs, start=1))
        return self.invoke(f"Perform meta-analysis on these agent outputs and provide an integrated assessment:\n\n{body}")


PERSONAS: Dict[str, Type[Persona]] = {
    Planner.role: Planner,
    Fixer.role: Fixer,
    Implementer.role: Implementer,
    Critic.role: Critic,
}


def build_persona(
    role: str,
    provider: CompletionProvider,
    settings: AgentSettings | None = None,
    evaluator: ResponseEvaluator | None = None,
) -> Persona:
    cls = PERSONAS.get(role)
    if cls is None:
        raise AgentNotFoundError(role)
    return cls(provider, settings, evaluator)
