"""CLASSic evaluation: Cost, Latency, Accuracy, Security, Stability."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence
import json
import logging
import re
import time

from roundtable.config import AgentSettings
from roundtable.errors import ErrorContext, FAKE_DATA_DETECTED, SecurityError, ValidationError
from roundtable.schemas import (
    AccuracyMetrics,
    CostMetrics,
    InvocationResponse,
    LatencyMetrics,
    QualityMetrics,
    SecurityMetrics,
    StabilityMetrics,
)

logger = logging.getLogger(__name__)

FAKE_DATA_PATTERNS = [
    (re.compile(r"lorem\s+ipsum", re.IGNORECASE), "Lorem ipsum text"),
    (re.compile(r"example\.com", re.IGNORECASE), "example.com domain"),
    (re.compile(r"test@|@test\.", re.IGNORECASE), "Test email pattern"),
    (re.compile(r"\bfoo\b|\bbar\b|\bbaz\b", re.IGNORECASE), "foo/bar/baz placeholder"),
    (re.compile(r"TODO:|FIXME:|XXX:|HACK:", re.IGNORECASE), "TODO/FIXME marker"),
    (re.compile(r"\b(mock|placeholder|sample|dummy)\b", re.IGNORECASE), "Mock/sample indicator"),
    (re.compile(r"123-?45-?6789"), "Fake SSN pattern"),
    (re.compile(r"555-\d{4}"), "Fake phone pattern"),
    (re.compile(r"John\s+Doe|Jane\s+Doe", re.IGNORECASE), "Placeholder name"),
    (re.compile(r"1234\s*5678\s*9012\s*3456"), "Fake credit card"),
]

PROMPT_INJECTION_PATTERNS = [
    re.compile(r"ignore.*previous.*instructions", re.IGNORECASE),
    re.compile(r"disregard.*rules", re.IGNORECASE),
    re.compile(r"system.*prompt", re.IGNORECASE),
    re.compile(r"jailbreak", re.IGNORECASE),
    re.compile(r"pretend.*you.*are", re.IGNORECASE),
    re.compile(r"forget.*everything", re.IGNORECASE),
]

UNSAFE_CODE_PATTERNS = [
    re.compile(r"\beval\s*\("),
    re.compile(r"\bexec\s*\("),
    re.compile(r"child_process"),
    re.compile(r"os\.system\s*\("),
    re.compile(r"\bsubprocess\b"),
    re.compile(r"rm\s+-rf"),
    re.compile(r"DROP\s+TABLE", re.IGNORECASE),
    re.compile(r"DELETE\s+FROM.*WHERE\s*1\s*=\s*1", re.IGNORECASE),
    re.compile(r"TRUNCATE\s+TABLE", re.IGNORECASE),
]

HALLUCINATION_PATTERNS = [
    re.compile(r"as of my (last |knowledge )?(cutoff|update)", re.IGNORECASE),
    re.compile(r"as of my last (training )?update", re.IGNORECASE),
    re.compile(r"I don'?t have access to real-time", re.IGNORECASE),
    re.compile(r"I cannot browse the internet", re.IGNORECASE),
    re.compile(r"my training data", re.IGNORECASE),
]


@dataclass(frozen=True)
class RoleThresholds:
    min_accuracy: float
    max_latency_ms: float
    max_cost: float


ROLE_THRESHOLDS: Dict[str, RoleThresholds] = {
    "planner": RoleThresholds(min_accuracy=0.85, max_latency_ms=30000, max_cost=0.10),
    "fixer": RoleThresholds(min_accuracy=0.90, max_latency_ms=20000, max_cost=0.08),
    "implementer": RoleThresholds(min_accuracy=0.88, max_latency_ms=25000, max_cost=0.12),
    "critic": RoleThresholds(min_accuracy=0.80, max_latency_ms=35000, max_cost=0.15),
}


@dataclass
class ValidationResult:
    passed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def score(self) -> float:
        total = len(self.passed) + len(self.failed)
        return len(self.passed) / total if total else 0.0


def check_fake_data(text: str) -> List[str]:
    """Names of the placeholder patterns found in ``text``."""
    return [name for pattern, name in FAKE_DATA_PATTERNS if pattern.search(text or "")]


class ResponseEvaluator:
    def __init__(
        self,
        validation_level: str = "medium",
        cost_per_1k_input: float = 0.0025,
        cost_per_1k_output: float = 0.01,
        min_validation_score: float = 0.7,
        enforce: bool = False,
        thresholds: Dict[str, RoleThresholds] | None = None,
    ) -> None:
        self.validation_level = validation_level
        self.cost_per_1k_input = cost_per_1k_input
        self.cost_per_1k_output = cost_per_1k_output
        self.min_validation_score = min_validation_score
        self.enforcing = enforce or validation_level == "strict"
        self.thresholds = thresholds if thresholds is not None else dict(ROLE_THRESHOLDS)

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> "ResponseEvaluator":
        return cls(
            validation_level=settings.validation_level,
            cost_per_1k_input=settings.cost_per_1k_input,
            cost_per_1k_output=settings.cost_per_1k_output,
            min_validation_score=settings.min_validation_score,
            enforce=settings.enforce,
        )

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> CostMetrics:
        cost = (input_tokens / 1000) * self.cost_per_1k_input + (output_tokens / 1000) * self.cost_per_1k_output
        return CostMetrics(
            tokens=input_tokens + output_tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost=round(cost, 4),
        )

    def measure_latency(self, started: float, step_times: Sequence[float] = ()) -> LatencyMetrics:
        """``started`` is a ``time.perf_counter()`` reading."""
        return LatencyMetrics(
            total_ms=round((time.perf_counter() - started) * 1000, 3),
            per_step_ms=[round(t, 3) for t in step_times],
        )

    def validate_response(self, response: InvocationResponse) -> ValidationResult:
        result = ValidationResult()
        passed, failed = result.passed, result.failed

        if response.reasoning:
            passed.append("Contains reasoning steps")
        else:
            failed.append("Missing reasoning steps")

        if 0 <= response.confidence <= 1:
            passed.append("Valid confidence score")
        else:
            failed.append("Invalid confidence score")

        if response.recommendation and len(response.recommendation) > 10:
            passed.append("Has substantive recommendation")
        else:
            failed.append("Recommendation too short or missing")

        if self.validation_level in ("high", "strict"):
            if len(response.reasoning) >= 3:
                passed.append("Sufficient reasoning depth")
            else:
                failed.append("Insufficient reasoning depth for high validation")
            if response.alternatives:
                passed.append("Provides alternatives")
            else:
                failed.append("No alternatives provided")

        if self.validation_level == "strict":
            if response.warnings:
                passed.append("Identifies potential risks")
            else:
                failed.append("No risk analysis provided")
            fake = check_fake_data(self._content_text(response))
            if fake:
                failed.append(f"Fake data detected: {', '.join(fake)}")
            else:
                passed.append("No fake/placeholder data detected")

        return result

    def check_fake_data(self, response: InvocationResponse) -> List[str]:
        return check_fake_data(self._content_text(response))

    def check_security(self, response: InvocationResponse) -> SecurityMetrics:
        full_text = json.dumps(response.to_dict())
        injection_free = not any(p.search(full_text) for p in PROMPT_INJECTION_PATTERNS)
        safe_code = True
        if response.code_output:
            safe_code = not any(p.search(response.code_output) for p in UNSAFE_CODE_PATTERNS)
        return SecurityMetrics(prompt_injection_blocked=injection_free, safe_code_generated=safe_code)

    def assess_stability(
        self,
        consensus_score: float,
        paths_evaluated: int,
        response: InvocationResponse,
    ) -> StabilityMetrics:
        text = self._content_text(response)
        return StabilityMetrics(
            consistency_score=consensus_score,
            hallucination_detected=any(p.search(text) for p in HALLUCINATION_PATTERNS),
            paths_evaluated=paths_evaluated,
        )

    def build_metrics(
        self,
        started: float,
        input_tokens: int,
        output_tokens: int,
        response: InvocationResponse,
        consensus_score: float,
        paths_evaluated: int,
        step_times: Sequence[float] = (),
    ) -> QualityMetrics:
        validation = self.validate_response(response)
        return QualityMetrics(
            cost=self.calculate_cost(input_tokens, output_tokens),
            latency=self.measure_latency(started, step_times),
            accuracy=AccuracyMetrics(
                task_success_rate=validation.score,
                validations_passed=len(validation.passed),
                validations_failed=len(validation.failed),
            ),
            security=self.check_security(response),
            stability=self.assess_stability(consensus_score, paths_evaluated, response),
        )

    def enforce(
        self,
        response: InvocationResponse,
        metrics: QualityMetrics,
        context: ErrorContext | None = None,
    ) -> List[str]:
        """Raise on violations when enforcing, otherwise log and return them."""
        violations: List[str] = []
        if not metrics.security.prompt_injection_blocked:
            message = "Prompt injection pattern detected in response"
            if self.enforcing:
                raise SecurityError("prompt_injection", message, context)
            violations.append(message)
        if not metrics.security.safe_code_generated:
            message = "Unsafe code pattern detected in code output"
            if self.enforcing:
                raise SecurityError("unsafe_code", message, context)
            violations.append(message)

        fake = self.check_fake_data(response)
        if fake and self.validation_level == "strict":
            if self.enforcing:
                raise ValidationError([f"Fake data detected: {', '.join(fake)}"], context, code=FAKE_DATA_DETECTED)
            violations.append(f"Fake data detected: {', '.join(fake)}")

        if metrics.accuracy.task_success_rate < self.min_validation_score:
            failed = self.validate_response(response).failed
            if self.enforcing:
                raise ValidationError(failed, context)
            violations.extend(failed)

        if violations:
            role = context.role if context else None
            logger.warning("Validation issues for %s: %s", role or "response", "; ".join(violations))
        return violations

    def check_thresholds(
        self,
        role: str,
        metrics: QualityMetrics,
        context: ErrorContext | None = None,
    ) -> List[str]:
        thresholds = self.thresholds.get(role)
        if thresholds is None:
            return []
        failures: List[str] = []
        if metrics.accuracy.task_success_rate < thresholds.min_accuracy:
            failures.append(
                f"Accuracy {metrics.accuracy.task_success_rate:.2f} below threshold {thresholds.min_accuracy}"
            )
        if metrics.latency.total_ms > thresholds.max_latency_ms:
            failures.append(
                f"Latency {metrics.latency.total_ms:.0f}ms exceeds threshold {thresholds.max_latency_ms:.0f}ms"
            )
        if metrics.cost.estimated_cost > thresholds.max_cost:
            failures.append(
                f"Cost ${metrics.cost.estimated_cost:.4f} exceeds threshold ${thresholds.max_cost}"
            )
        if failures:
            logger.warning("CLASSic threshold violations for %s: %s", role, "; ".join(failures))
            if self.enforcing:
                raise ValidationError(failures, context)
        return failures

    @staticmethod
    def _content_text(response: InvocationResponse) -> str:
        return response.recommendation + "\n" + (response.code_output or "")
