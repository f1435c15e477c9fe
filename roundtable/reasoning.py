"""Self-consistency and self-critique over a completion provider.

Each attempt asks the model for a chain-of-thought JSON object. Attempts are
grouped by word-set similarity of their conclusions; the largest group is the
plurality cluster and the selected path is the one that is both confident and
close to that cluster.
"""
from __future__ import annotations

from typing import Any, List, Sequence, Tuple
import json
import logging
import math
import time

from roundtable.config import AgentSettings
from roundtable.errors import ProviderError
from roundtable.models.base import CompletionProvider, CompletionResult
from roundtable.schemas import ConsistencyResult, ReasoningPath, SelfCritiqueResult, parse_steps
from roundtable.text import jaccard, parse_json_payload

logger = logging.getLogger(__name__)

COT_SYSTEM_SUFFIX = """

You MUST structure your response using Chain-of-Thought reasoning.
For each step of your reasoning:
1. State what you're thinking (thought)
2. What action you're taking or considering (action)
3. What you observe from that action (observation)

After completing your reasoning steps, provide your final recommendation.
Respond with a single JSON object:
{
  "reasoning": [
    {"step": 1, "thought": "...", "action": "...", "observation": "..."}
  ],
  "recommendation": "Your final answer/recommendation",
  "confidence": 0.0-1.0,
  "alternatives": ["Alternative approach 1"],
  "warnings": ["Potential issue 1"],
  "code_output": "Code if applicable, otherwise omit",
  "validations": {"passed": ["..."], "failed": ["..."]}
}"""

REVIEWER_SYSTEM_PROMPT = (
    "You are a critical reviewer evaluating AI-generated responses for accuracy, "
    "completeness, and quality."
)

CRITIQUE_TEMPLATE = """Review the following response and identify any issues, gaps, or improvements.
Then produce a revised response that fixes them, keeping the same JSON structure.

Role instructions the response was written under:
{system_prompt}

Original Response:
{original}

Reply with JSON only:
{{
  "critique": "Your detailed critique",
  "improvements": ["Improvement 1", "Improvement 2"],
  "improved_response": {{ ...the full revised response object... }}
}}"""

DEFAULT_CONFIDENCE = 0.5


def clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, number))


def path_from_text(text: str) -> ReasoningPath:
    """Turn one attempt's raw output into a path; never raises."""
    data = parse_json_payload(text)
    if data is None:
        return ReasoningPath(steps=[], conclusion=text.strip(), confidence=DEFAULT_CONFIDENCE)
    conclusion = data.get("recommendation")
    if conclusion is None:
        conclusion = data.get("conclusion", "")
    return ReasoningPath(
        steps=parse_steps(data.get("reasoning")),
        conclusion=str(conclusion),
        confidence=clamp_confidence(data.get("confidence", DEFAULT_CONFIDENCE)),
        payload=data,
    )


def similarity_matrix(conclusions: Sequence[str]) -> List[List[float]]:
    size = len(conclusions)
    matrix = [[0.0] * size for _ in range(size)]
    for i in range(size):
        matrix[i][i] = 1.0
        for j in range(i + 1, size):
            score = jaccard(conclusions[i], conclusions[j])
            matrix[i][j] = score
            matrix[j][i] = score
    return matrix


def _cluster_of(index: int, members: Sequence[int], matrix: List[List[float]], threshold: float) -> List[int]:
    return [j for j in members if matrix[index][j] >= threshold]


def _best_cluster(
    members: Sequence[int],
    paths: Sequence[ReasoningPath],
    matrix: List[List[float]],
    threshold: float,
) -> List[int]:
    best: List[int] = []
    best_key: Tuple[int, float] = (-1, -1.0)
    for index in members:
        cluster = _cluster_of(index, members, matrix, threshold)
        key = (len(cluster), sum(paths[j].confidence for j in cluster))
        # Strictly greater keeps the earliest candidate on ties.
        if key > best_key:
            best, best_key = cluster, key
    return best


def partition(
    paths: Sequence[ReasoningPath],
    matrix: List[List[float]],
    threshold: float,
) -> List[List[int]]:
    """Greedy partition: repeatedly peel off the largest remaining cluster."""
    remaining = list(range(len(paths)))
    clusters: List[List[int]] = []
    while remaining:
        cluster = _best_cluster(remaining, paths, matrix, threshold)
        clusters.append(cluster)
        remaining = [i for i in remaining if i not in cluster]
    return clusters


def select_consensus(
    paths: Sequence[ReasoningPath],
    threshold: float,
    full_partition: bool = False,
) -> Tuple[int, List[int], List[int]]:
    """Return (selected index, plurality cluster, cluster sizes)."""
    matrix = similarity_matrix([p.conclusion for p in paths])
    everyone = list(range(len(paths)))
    plurality = _best_cluster(everyone, paths, matrix, threshold)

    selected = 0
    best_score = -1.0
    for index, path in enumerate(paths):
        agreement = sum(matrix[index][j] for j in plurality) / len(plurality)
        score = path.confidence * agreement
        if score > best_score:
            selected, best_score = index, score

    if full_partition:
        sizes = sorted((len(c) for c in partition(paths, matrix, threshold)), reverse=True)
    else:
        sizes = [len(plurality)]
    return selected, plurality, sizes


class ReasoningEngine:
    def __init__(self, provider: CompletionProvider, settings: AgentSettings) -> None:
        self.provider = provider
        self.settings = settings

    def attempts_for(self, mode: str) -> int:
        return max(1, int(self.settings.paths.get(mode, 1)))

    def generate_with_cot(self, system_prompt: str, user_prompt: str) -> Tuple[ReasoningPath, CompletionResult]:
        result = self.provider.complete(
            system_prompt + COT_SYSTEM_SUFFIX,
            user_prompt,
            self.settings.max_tokens,
            self.settings.temperature,
        )
        return path_from_text(result.text), result

    def run_self_consistency(self, system_prompt: str, user_prompt: str, mode: str) -> ConsistencyResult:
        count = self.attempts_for(mode)
        paths: List[ReasoningPath] = []
        step_ms: List[float] = []
        input_tokens = 0
        output_tokens = 0
        for attempt in range(count):
            prompt = user_prompt if attempt == 0 else f"{user_prompt}\n[Reasoning attempt {attempt + 1}]"
            started = time.perf_counter()
            path, completion = self.generate_with_cot(system_prompt, prompt)
            step_ms.append((time.perf_counter() - started) * 1000)
            input_tokens += completion.input_tokens
            output_tokens += completion.output_tokens
            paths.append(path)

        selected, plurality, sizes = select_consensus(
            paths,
            self.settings.cluster_threshold,
            full_partition=(mode == "robust"),
        )
        disagreements = [p.conclusion for i, p in enumerate(paths) if i not in plurality]
        consensus = len(plurality) / len(paths)
        logger.debug(
            "self-consistency mode=%s paths=%d consensus=%.2f selected=%d",
            mode, len(paths), consensus, selected,
        )
        return ConsistencyResult(
            selected_path=paths[selected],
            all_paths=paths,
            consensus_score=consensus,
            disagreements=disagreements,
            cluster_sizes=sizes,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            step_ms=step_ms,
        )

    def apply_self_critique(self, original_response: str, system_prompt: str) -> SelfCritiqueResult:
        """One extra call that reviews and revises a response; never raises."""
        prompt = CRITIQUE_TEMPLATE.format(system_prompt=system_prompt, original=original_response)
        try:
            completion = self.provider.complete(
                REVIEWER_SYSTEM_PROMPT,
                prompt,
                self.settings.critique_max_tokens,
                self.settings.critique_temperature,
            )
        except ProviderError as exc:
            logger.warning("Self-critique call failed, keeping original response: %s", exc)
            return SelfCritiqueResult(original_response, "", original_response, [])

        data = parse_json_payload(completion.text)
        unchanged = SelfCritiqueResult(
            original_response,
            "",
            original_response,
            [],
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )
        if data is None:
            logger.debug("Self-critique output was not JSON; keeping original response")
            return unchanged

        critique = str(data.get("critique", ""))
        improvements = data.get("improvements") or []
        if not isinstance(improvements, list):
            improvements = [improvements]
        improved = data.get("improved_response")
        if isinstance(improved, dict):
            improved_text = json.dumps(improved)
        elif isinstance(improved, str) and parse_json_payload(improved) is not None:
            improved_text = improved
        else:
            improved_text = original_response
            improvements = []

        return SelfCritiqueResult(
            original_response=original_response,
            critique=critique,
            improved_response=improved_text,
            improvements_made=[str(i) for i in improvements],
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )
