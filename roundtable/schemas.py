"""Records passed between the reasoning engine, evaluator and personas."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ReasoningStep:
    step: int
    thought: str
    action: Optional[str] = None
    observation: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, index: int) -> "ReasoningStep":
        if not isinstance(data, dict):
            return cls(step=index, thought=str(data))
        try:
            step = int(data.get("step", index))
        except (TypeError, ValueError):
            step = index
        action = data.get("action")
        observation = data.get("observation")
        return cls(
            step=step,
            thought=str(data.get("thought", "")),
            action=str(action) if action is not None else None,
            observation=str(observation) if observation is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"step": self.step, "thought": self.thought}
        if self.action is not None:
            payload["action"] = self.action
        if self.observation is not None:
            payload["observation"] = self.observation
        return payload


def parse_steps(raw: Any) -> List[ReasoningStep]:
    if not isinstance(raw, list):
        return []
    return [ReasoningStep.from_dict(item, idx) for idx, item in enumerate(raw, start=1)]


@dataclass
class ReasoningPath:
    steps: List[ReasoningStep]
    conclusion: str
    confidence: float
    # Full parsed attempt payload (alternatives, warnings, ...); not serialized.
    payload: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "conclusion": self.conclusion,
            "confidence": self.confidence,
        }


@dataclass
class ConsistencyResult:
    selected_path: ReasoningPath
    all_paths: List[ReasoningPath]
    consensus_score: float
    disagreements: List[str]
    cluster_sizes: List[int] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    step_ms: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_path": self.selected_path.to_dict(),
            "all_paths": [p.to_dict() for p in self.all_paths],
            "consensus_score": self.consensus_score,
            "disagreements": list(self.disagreements),
            "cluster_sizes": list(self.cluster_sizes),
        }


@dataclass
class SelfCritiqueResult:
    original_response: str
    critique: str
    improved_response: str
    improvements_made: List[str]
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Validations:
    passed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Validations":
        if not isinstance(data, dict):
            return cls()
        passed = data.get("passed") or []
        failed = data.get("failed") or []
        return cls(
            passed=[str(p) for p in passed] if isinstance(passed, list) else [],
            failed=[str(f) for f in failed] if isinstance(failed, list) else [],
        )


@dataclass
class InvocationResponse:
    reasoning: List[ReasoningStep]
    recommendation: str
    confidence: float
    alternatives: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    code_output: Optional[str] = None
    validations: Validations = field(default_factory=Validations)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "reasoning": [s.to_dict() for s in self.reasoning],
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "alternatives": list(self.alternatives),
            "warnings": list(self.warnings),
            "validations": {
                "passed": list(self.validations.passed),
                "failed": list(self.validations.failed),
            },
        }
        if self.code_output is not None:
            payload["code_output"] = self.code_output
        return payload


@dataclass(frozen=True)
class CostMetrics:
    tokens: int
    input_tokens: int
    output_tokens: int
    estimated_cost: float


@dataclass(frozen=True)
class LatencyMetrics:
    total_ms: float
    per_step_ms: List[float]


@dataclass(frozen=True)
class AccuracyMetrics:
    task_success_rate: float
    validations_passed: int
    validations_failed: int


@dataclass(frozen=True)
class SecurityMetrics:
    prompt_injection_blocked: bool
    safe_code_generated: bool


@dataclass(frozen=True)
class StabilityMetrics:
    consistency_score: float
    hallucination_detected: bool
    paths_evaluated: int


@dataclass(frozen=True)
class QualityMetrics:
    """CLASSic rubric: Cost, Latency, Accuracy, Security, Stability."""

    cost: CostMetrics
    latency: LatencyMetrics
    accuracy: AccuracyMetrics
    security: SecurityMetrics
    stability: StabilityMetrics

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InvocationResult:
    role: str
    response: InvocationResponse
    metrics: QualityMetrics
    run_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "run_id": self.run_id,
            "response": self.response.to_dict(),
            "metrics": self.metrics.to_dict(),
        }
