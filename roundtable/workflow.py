"""Three-stage deliberation between Planner, Fixer, Critic and Implementer.

Stage 1 (foundation) sets goals, drafts a plan and validates it. Stage 2
(refinement) revises the plan and only asks the Critic to re-check alignment
when the plan moved by more than ``critic_trigger_threshold``. Stage 3 (final)
locks the roadmap with one joint Fixer/Critic validation call. The Implementer
then executes the approved roadmap.

Findings are pulled line by line out of each role's recommendation and
cross-checked between Planner and Fixer. Similar findings form conflicts:
simple ones are merged locally, contradictory ones cost one Critic call.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union
import logging
import re

from roundtable.config import WorkflowSettings
from roundtable.errors import new_run_id
from roundtable.orchestrator import Orchestrator
from roundtable.schemas import InvocationResult
from roundtable.text import jaccard, truncate

logger = logging.getLogger(__name__)

WORKFLOW_VERSION = "2.1"

FINDING_PREFIXES = {
    "planner": "PLAN",
    "fixer": "FIX",
    "implementer": "IMPL",
    "critic": "CRIT",
}

FINDING_WORDS = ("finding", "issue", "recommendation")
OPPORTUNITY_WORDS = ("opportunity", "adjacent", "future")
GOAL_WORDS = ("goal", "metric", "target")
DEFAULT_GOAL = "Complete task successfully"
FALLBACK_FINDING_CHARS = 200
MERGE_MIN_EXTRA_CHARS = 10
OPPORTUNITY_QUALITY = 0.9

HIGH_IMPACT_WORDS = ("critical", "security", "breaking")
LOW_IMPACT_WORDS = ("minor", "optional", "nice to have")


def _verb(*forms: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(forms) + r")\b", re.IGNORECASE)


# (positive, negative) forms. A negation-based positive must not be followed by "not".
ANTONYM_PAIRS = [
    (_verb("add", "adds", "added", "adding"), _verb("remove", "removes", "removed", "removing")),
    (_verb("increase", "increases", "increased", "increasing"), _verb("decrease", "decreases", "decreased", "decreasing")),
    (_verb("enable", "enables", "enabled", "enabling"), _verb("disable", "disables", "disabled", "disabling")),
    (re.compile(r"\bshould\b(?!\s+not\b)", re.IGNORECASE), re.compile(r"\bshould\s+not\b|\bshouldn'?t\b", re.IGNORECASE)),
    (re.compile(r"\bmust\b(?!\s+not\b)", re.IGNORECASE), re.compile(r"\bmust\s+not\b|\bmustn'?t\b", re.IGNORECASE)),
    (re.compile(r"\bdo\b(?!\s+not\b)", re.IGNORECASE), re.compile(r"\bdo\s+not\b|\bdon'?t\b", re.IGNORECASE)),
]


class MemoryWriter(Protocol):
    def store_memory(self, role: str, task_description: str, content: str, quality_score: float) -> Any:
        ...


@dataclass
class Finding:
    id: str
    role: str
    description: str
    impact: str
    resolution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "description": self.description,
            "impact": self.impact,
        }
        if self.resolution is not None:
            payload["resolution"] = self.resolution
        return payload


@dataclass
class Conflict:
    id: str
    finding_a: Finding
    finding_b: Finding
    type: str
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "finding_a": self.finding_a.to_dict(),
            "finding_b": self.finding_b.to_dict(),
            "type": self.type,
            "resolution": self.resolution,
            "resolved_by": self.resolved_by,
        }


@dataclass
class Opportunity:
    id: str
    description: str
    origin_stage: int
    persisted_to_memory: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "origin_stage": self.origin_stage,
            "persisted_to_memory": self.persisted_to_memory,
        }


@dataclass
class StageResult:
    stage: int
    call_count: int = 0
    escalations: int = 0
    findings: List[Finding] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    opportunities: List[Opportunity] = field(default_factory=list)
    outputs: Dict[str, InvocationResult] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "call_count": self.call_count,
            "escalations": self.escalations,
            "findings": [f.to_dict() for f in self.findings],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "opportunities": [o.to_dict() for o in self.opportunities],
            "outputs": {role: result.to_dict() for role, result in self.outputs.items()},
        }


@dataclass
class SignOff:
    stage1: Dict[str, bool] = field(default_factory=lambda: {"planner": False, "fixer": False, "critic": False})
    stage2: Dict[str, Union[bool, str]] = field(
        default_factory=lambda: {"planner": False, "fixer": False, "critic": "skipped"}
    )
    stage3: Dict[str, bool] = field(
        default_factory=lambda: {"planner": False, "fixer": False, "critic": False, "implementer": False}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {"stage1": dict(self.stage1), "stage2": dict(self.stage2), "stage3": dict(self.stage3)}


@dataclass
class WorkflowResult:
    task: str
    run_id: str
    version: str = WORKFLOW_VERSION
    status: str = "running"
    stages: List[StageResult] = field(default_factory=list)
    total_calls: int = 0
    execution_calls: int = 0
    meta_goals: List[str] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    opportunities: List[Opportunity] = field(default_factory=list)
    final_artifact: str = ""
    change_percentage: float = 0.0
    implementation: Optional[InvocationResult] = None
    sign_off: SignOff = field(default_factory=SignOff)

    def add_stage(self, stage: StageResult) -> None:
        self.stages.append(stage)
        self.total_calls += stage.call_count
        self.findings.extend(stage.findings)
        self.conflicts.extend(stage.conflicts)
        self.opportunities.extend(stage.opportunities)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "status": self.status,
            "run_id": self.run_id,
            "task": self.task,
            "stages": [s.to_dict() for s in self.stages],
            "total_calls": self.total_calls,
            "execution_calls": self.execution_calls,
            "meta_goals": list(self.meta_goals),
            "findings": [f.to_dict() for f in self.findings],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "opportunities": [o.to_dict() for o in self.opportunities],
            "final_artifact": self.final_artifact,
            "change_percentage": self.change_percentage,
            "implementation": self.implementation.to_dict() if self.implementation else None,
            "sign_off": self.sign_off.to_dict(),
        }

    def format_report(self) -> str:
        """Markdown rendering of the whole run."""
        def mark(value: Union[bool, str]) -> str:
            if value == "skipped":
                return "Skipped"
            return "✓" if value else "-"

        def finding_rows(role: str) -> str:
            rows = [
                f"| {f.id} | {truncate(f.description, 60)} | {f.impact} |"
                for f in self.findings if f.role == role
            ]
            return "\n".join(rows) or "| - | None | - |"

        conflict_rows = "\n".join(
            f"| {c.id} | {c.finding_a.id} / {c.finding_b.id} | {c.type} | "
            f"{truncate(c.resolution or '', 40)} | {c.resolved_by or '-'} |"
            for c in self.conflicts
        ) or "| - | - | - | No conflicts | - |"
        stage1_opps = [o for o in self.opportunities if o.origin_stage == 1]
        final_opps = "\n".join(f"- {o.description}" for o in self.opportunities if o.origin_stage == 3)
        persisted = sum(1 for o in self.opportunities if o.persisted_to_memory)
        execution = self.implementation.response.recommendation if self.implementation else "Execution pending"
        s1, s2, s3 = self.sign_off.stage1, self.sign_off.stage2, self.sign_off.stage3
        goals = "\n".join(f"- {g}" for g in self.meta_goals)

        sections = [
            "# Deliberation Report\n\n"
            f"**Version:** {self.version}\n"
            f"**Date:** {date.today().isoformat()}\n"
            f"**Run:** {self.run_id}\n"
            f"**Status:** {self.status}\n\n"
            f"**Task:** {self.task}\n\n---",
            f"## 1. Meta-Goals (Critic, Stage 1)\n\n{goals}\n\n"
            f"**Opportunities:** {len(stage1_opps)} identified, {persisted} persisted\n\n---",
            "## 2. Planner Findings\n\n| ID | Description | Impact |\n|----|-------------|--------|\n"
            f"{finding_rows('planner')}\n\n---",
            "## 3. Fixer Findings\n\n| ID | Description | Impact |\n|----|-------------|--------|\n"
            f"{finding_rows('fixer')}\n\n---",
            "## 4. Conflict Resolutions\n\n| ID | Findings | Type | Resolution | Resolved By |\n"
            f"|----|----------|------|------------|-------------|\n{conflict_rows}\n\n---",
            f"## 5. Final Roadmap\n\n**Plan change (stage 1 to 2):** {self.change_percentage:.1%}\n\n"
            f"{self.final_artifact}\n\n---",
            f"## 6. Implementation\n\n{execution}\n\n---",
            f"## 7. Final Opportunities (Stage 3)\n\n{final_opps or 'None identified'}\n\n---",
            "## 8. Sign-off\n\n| Stage | Planner | Fixer | Critic | Implementer |\n"
            "|-------|---------|-------|--------|-------------|\n"
            f"| 1 | {mark(s1['planner'])} | {mark(s1['fixer'])} | {mark(s1['critic'])} | - |\n"
            f"| 2 | {mark(s2['planner'])} | {mark(s2['fixer'])} | {mark(s2['critic'])} | - |\n"
            f"| 3 | {mark(s3['planner'])} | {mark(s3['fixer'])} | {mark(s3['critic'])} | {mark(s3['implementer'])} |\n\n"
            f"**Deliberation calls:** {self.total_calls}  \n"
            f"**Execution calls:** {self.execution_calls}",
        ]
        return "\n\n".join(sections) + "\n"


class RunContext:
    """ID counters for one ``execute()`` call."""

    def __init__(self) -> None:
        self.run_id = new_run_id()
        self._counters: Dict[str, int] = {}

    def next_id(self, prefix: str) -> str:
        value = self._counters.get(prefix, 0) + 1
        self._counters[prefix] = value
        return f"{prefix}-{value:03d}"


def text_similarity(a: str, b: str) -> float:
    return jaccard(a, b)


def is_contradictory(a: str, b: str) -> bool:
    for positive, negative in ANTONYM_PAIRS:
        if (positive.search(a) and negative.search(b)) or (negative.search(a) and positive.search(b)):
            return True
    return False


def infer_impact(text: str) -> str:
    lower = text.lower()
    if any(word in lower for word in HIGH_IMPACT_WORDS):
        return "high"
    if any(word in lower for word in LOW_IMPACT_WORDS):
        return "low"
    return "medium"


def merge_findings(a: Finding, b: Finding) -> str:
    merged = f"Merged finding: {a.description}"
    extra = b.description.replace(a.description, "").strip()
    if len(extra) > MERGE_MIN_EXTRA_CHARS:
        return f"{merged}. Additional context: {extra}"
    return merged


def change_percentage(original: str, updated: str) -> float:
    """Share of words added or removed between two texts.

    Counts are over word occurrences while membership is by set, so fully
    disjoint texts of equal length score 2.0. The value is not clamped.
    """
    original_words = original.lower().split()
    updated_words = updated.lower().split()
    original_set = set(original_words)
    updated_set = set(updated_words)
    added = sum(1 for word in updated_words if word not in original_set)
    removed = sum(1 for word in original_words if word not in updated_set)
    total = max(len(original_words), len(updated_words))
    return (added + removed) / total if total else 0.0


def _matching_lines(text: str, words: Sequence[str]) -> List[str]:
    lines = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and any(word in stripped.lower() for word in words):
            lines.append(stripped)
    return lines


def extract_findings(text: str, role: str, ctx: RunContext) -> List[Finding]:
    """One finding per indicator line; always at least one."""
    prefix = FINDING_PREFIXES[role]
    findings = [
        Finding(id=ctx.next_id(prefix), role=role, description=line, impact=infer_impact(line))
        for line in _matching_lines(text, FINDING_WORDS)
    ]
    if not findings:
        findings.append(Finding(
            id=ctx.next_id(prefix),
            role=role,
            description=text[:FALLBACK_FINDING_CHARS].strip(),
            impact="medium",
        ))
    return findings


def extract_opportunities(text: str, stage: int, ctx: RunContext) -> List[Opportunity]:
    return [
        Opportunity(id=ctx.next_id("ADJ"), description=line, origin_stage=stage)
        for line in _matching_lines(text, OPPORTUNITY_WORDS)
    ]


def extract_goals(text: str) -> List[str]:
    return _matching_lines(text, GOAL_WORDS) or [DEFAULT_GOAL]


def detect_conflicts(
    planner_findings: Sequence[Finding],
    fixer_findings: Sequence[Finding],
    ctx: RunContext,
    threshold: float = 0.5,
) -> List[Conflict]:
    conflicts = []
    for a in planner_findings:
        for b in fixer_findings:
            if text_similarity(a.description, b.description) < threshold:
                continue
            kind = "complex" if is_contradictory(a.description, b.description) else "simple"
            conflicts.append(Conflict(id=ctx.next_id("C"), finding_a=a, finding_b=b, type=kind))
    return conflicts


class DeliberationWorkflow:
    def __init__(
        self,
        orchestrator: Orchestrator,
        settings: WorkflowSettings | None = None,
        memory: MemoryWriter | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.settings = settings or WorkflowSettings()
        self.memory = memory

    def _call(self, stage: StageResult, role: str, prompt: str, key: Optional[str] = None) -> InvocationResult:
        result = self.orchestrator.invoke_agent(role, prompt, review=False)
        stage.call_count += 1
        stage.outputs[key or role] = result
        return result

    def execute(self, task: str) -> WorkflowResult:
        ctx = RunContext()
        result = WorkflowResult(task=task, run_id=ctx.run_id)
        logger.info("Deliberation %s started", ctx.run_id)

        stage1 = self._foundation(task, ctx)
        result.add_stage(stage1)
        result.sign_off.stage1 = {"planner": True, "fixer": True, "critic": True}
        result.meta_goals = extract_goals(stage1.outputs["critic"].response.recommendation)

        stage2, changed = self._refinement(stage1, ctx)
        result.add_stage(stage2)
        result.change_percentage = changed
        result.sign_off.stage2 = {
            "planner": True,
            "fixer": True,
            "critic": True if "critic" in stage2.outputs else "skipped",
        }

        stage3 = self._final(stage1, stage2, ctx)
        result.add_stage(stage3)
        result.final_artifact = stage3.outputs["planner"].response.recommendation

        result.implementation = self._execute_roadmap(result.final_artifact)
        result.execution_calls = 1
        result.sign_off.stage3 = {"planner": True, "fixer": True, "critic": True, "implementer": True}
        result.status = "complete"

        logger.info(
            "Deliberation %s complete: %d calls (+%d execution), %d findings, %d conflicts, %d opportunities",
            ctx.run_id,
            result.total_calls,
            result.execution_calls,
            len(result.findings),
            len(result.conflicts),
            len(result.opportunities),
        )
        return result

    def _foundation(self, task: str, ctx: RunContext) -> StageResult:
        logger.info("Stage 1: foundation")
        stage = StageResult(stage=1)

        goals = self._call(stage, "critic", (
            f"Establish meta-goals for this task:\n{task}\n\n"
            "1. Define success metrics (max 5)\n"
            "2. Identify adjacent opportunities for future optimization\n"
            "3. Set quality thresholds\n"
            "Keep under 300 words."
        ))
        self._capture_opportunities(stage, goals, ctx)

        plan = self._call(stage, "planner", (
            f"Create a plan for this task:\n{task}\n\n"
            f"Meta-goals from the Critic:\n{goals.response.recommendation}\n\n"
            "Provide:\n"
            "1. Findings list, one finding per line (PLAN-001, PLAN-002...)\n"
            "2. Core components (max 3)\n"
            "3. Data flow (text-based)\n"
            "Keep under 500 words. No implementation details."
        ))
        planner_findings = extract_findings(plan.response.recommendation, "planner", ctx)

        validation = self._call(stage, "fixer", (
            f"Validate the Planner's findings for this task:\n{task}\n\n"
            f"Planner's plan:\n{plan.response.recommendation}\n\n"
            "Provide:\n"
            "1. Validation status per finding\n"
            "2. Your own findings, one per line (FIX-001...)\n"
            "3. Risk assessment\n"
            "Flag contradictions for Critic escalation."
        ))
        fixer_findings = extract_findings(validation.response.recommendation, "fixer", ctx)

        self._cross_check(stage, planner_findings, fixer_findings, ctx)
        return stage

    def _refinement(self, stage1: StageResult, ctx: RunContext) -> tuple[StageResult, float]:
        logger.info("Stage 2: refinement")
        stage = StageResult(stage=2)
        original_plan = stage1.outputs["planner"].response.recommendation
        resolved = "\n".join(f"{c.id}: {c.resolution}" for c in stage1.conflicts) or "None"

        revision = self._call(stage, "planner", (
            "Update your plan based on the Fixer's feedback.\n\n"
            f"Original plan:\n{original_plan}\n\n"
            f"Fixer feedback:\n{stage1.outputs['fixer'].response.recommendation or 'No feedback'}\n\n"
            f"Resolved conflicts:\n{resolved}\n\n"
            "Incorporate edge cases and address all issues. List remaining findings one per line."
        ))
        planner_findings = extract_findings(revision.response.recommendation, "planner", ctx)

        revalidation = self._call(stage, "fixer", (
            f"Validate the updated plan:\n{revision.response.recommendation}\n\n"
            "Provide:\n"
            "1. Risk analysis\n"
            "2. Edge case coverage check\n"
            "3. Remaining findings, one per line"
        ))
        fixer_findings = extract_findings(revalidation.response.recommendation, "fixer", ctx)

        self._cross_check(stage, planner_findings, fixer_findings, ctx)

        changed = change_percentage(original_plan, revision.response.recommendation)
        threshold = self.settings.critic_trigger_threshold
        if changed > threshold:
            logger.info("Critic alignment check triggered: plan changed %.1f%% (> %.1f%%)", changed * 100, threshold * 100)
            alignment = self._call(stage, "critic", (
                f"Check alignment after significant changes ({changed:.1%} changed).\n\n"
                f"Original goals:\n{stage1.outputs['critic'].response.recommendation or 'N/A'}\n\n"
                f"Updated plan:\n{revision.response.recommendation}\n\n"
                "1. Confirm goals are still aligned\n"
                "2. Spot new adjacent opportunities\n"
                "3. Flag any concerns"
            ))
            self._capture_opportunities(stage, alignment, ctx)
        else:
            logger.info("Critic alignment check skipped: plan changed %.1f%% (<= %.1f%%)", changed * 100, threshold * 100)
        return stage, changed

    def _final(self, stage1: StageResult, stage2: StageResult, ctx: RunContext) -> StageResult:
        logger.info("Stage 3: final")
        stage = StageResult(stage=3)
        addressed = "\n".join(f"{f.id}: {f.description}" for f in stage2.findings) or "None pending"

        roadmap = self._call(stage, "planner", (
            "Finalize the roadmap.\n\n"
            f"Current plan:\n{stage2.outputs['planner'].response.recommendation}\n\n"
            f"Findings to address:\n{addressed}\n\n"
            "Create the final implementation roadmap. Note any open finding on its own line."
        ))
        planner_findings = extract_findings(roadmap.response.recommendation, "planner", ctx)

        joint = self._joint_validation(stage, roadmap.response.recommendation, stage1)
        fixer_findings = extract_findings(joint.response.recommendation, "fixer", ctx)
        self._capture_opportunities(stage, joint, ctx)

        self._cross_check(stage, planner_findings, fixer_findings, ctx)
        return stage

    def _joint_validation(self, stage: StageResult, roadmap: str, stage1: StageResult) -> InvocationResult:
        """JOINT_VALIDATION: one Critic-persona call covering the Fixer checklist too."""
        logger.info("Joint Fixer/Critic validation (1 combined call)")
        goals = stage1.outputs["critic"].response.recommendation
        result = self._call(stage, "critic", (
            "Joint validation of the final roadmap. Act as both the Fixer and the Critic.\n\n"
            f"Final roadmap:\n{roadmap}\n\n"
            f"Original meta-goals:\n{goals}\n\n"
            "=== FIXER VALIDATION ===\n"
            "Verify:\n"
            "- [ ] All findings addressed\n"
            "- [ ] Edge cases covered\n"
            "- [ ] Risk analysis complete\n"
            "List any remaining issue as a finding, one per line.\n\n"
            "=== CRITIC VALIDATION ===\n"
            "Confirm:\n"
            "- [ ] Goals aligned with the original meta-goals\n"
            "- [ ] Strategic impact is positive\n"
            "- [ ] Document any final adjacent opportunities for future optimization\n\n"
            "Provide a validation covering both perspectives."
        ), key="joint")
        stage.outputs["critic"] = result
        return result

    def _execute_roadmap(self, roadmap: str) -> InvocationResult:
        logger.info("Execution: Implementer applies the approved roadmap")
        return self.orchestrator.invoke_agent("implementer", (
            f"Implement approved changes from the validated roadmap:\n{roadmap}\n\n"
            "Rules:\n"
            "1. Follow the approved blueprint exactly\n"
            "2. No additional features\n"
            "3. No scope expansion\n"
            "Execute and report completion status."
        ), review=False)

    def _cross_check(
        self,
        stage: StageResult,
        planner_findings: List[Finding],
        fixer_findings: List[Finding],
        ctx: RunContext,
    ) -> None:
        stage.findings.extend(planner_findings)
        stage.findings.extend(fixer_findings)
        conflicts = detect_conflicts(planner_findings, fixer_findings, ctx, self.settings.similarity_threshold)
        for conflict in conflicts:
            self._resolve(stage, conflict)
        stage.conflicts.extend(conflicts)

    def _resolve(self, stage: StageResult, conflict: Conflict) -> None:
        a, b = conflict.finding_a, conflict.finding_b
        if conflict.type == "simple" and self.settings.auto_merge_simple_conflicts:
            logger.info("Auto-merge %s + %s", a.id, b.id)
            conflict.resolution = merge_findings(a, b)
            conflict.resolved_by = "auto"
        else:
            logger.info("Escalating %s conflict %s vs %s to the Critic", conflict.type, a.id, b.id)
            verdict = self._call(stage, "critic", (
                "Resolve this contradictory conflict:\n\n"
                f"Finding A ({a.id}): {a.description}\n"
                f"Finding B ({b.id}): {b.description}\n\n"
                "Determine which recommendation is correct and explain why."
            ), key=f"escalation:{conflict.id}")
            stage.escalations += 1
            conflict.resolution = verdict.response.recommendation
            conflict.resolved_by = "critic"
        a.resolution = conflict.resolution
        b.resolution = conflict.resolution

    def _capture_opportunities(self, stage: StageResult, output: InvocationResult, ctx: RunContext) -> None:
        for opportunity in extract_opportunities(output.response.recommendation, stage.stage, ctx):
            self._persist(opportunity)
            stage.opportunities.append(opportunity)

    def _persist(self, opportunity: Opportunity) -> None:
        if self.memory is None or not self.settings.persist_opportunities:
            return
        try:
            self.memory.store_memory(
                "critic",
                f"Adjacent opportunity from Stage {opportunity.origin_stage}",
                opportunity.description,
                OPPORTUNITY_QUALITY,
            )
        except Exception as exc:
            logger.warning("Failed to persist opportunity %s: %s", opportunity.id, exc)
            return
        opportunity.persisted_to_memory = True
