"""Configuration loader for Roundtable."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict
import copy
import os
import yaml

from roundtable.errors import ConfigError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "roundtable" / "config.yaml"

CONSISTENCY_MODES = ("none", "fast", "robust")
VALIDATION_LEVELS = ("low", "medium", "high", "strict")

# Used when config/default.yaml is not shipped alongside the package.
BUILTIN_DEFAULTS: Dict[str, Any] = {
    "provider": {
        "kind": "openai",
        "model": "gpt-4o",
        "base_url": "https://api.openai.com/v1",
        "timeout_seconds": 120,
    },
    "agent": {
        "consistency_mode": "fast",
        "validation_level": "medium",
        "enable_self_critique": True,
        "enable_critic_review": False,
        "enforce": False,
        "max_tokens": 4096,
        "temperature": 0.7,
    },
    "reasoning": {
        "paths": {"none": 1, "fast": 3, "robust": 5},
        "cluster_threshold": 0.6,
        "critique_max_tokens": 1000,
        "critique_temperature": 0.3,
    },
    "evaluator": {
        "cost_per_1k_input": 0.0025,
        "cost_per_1k_output": 0.01,
        "min_validation_score": 0.7,
    },
    "workflow": {
        "critic_trigger_threshold": 0.15,
        "similarity_threshold": 0.5,
        "auto_merge_simple_conflicts": True,
        "persist_opportunities": True,
    },
    "memory": {
        "enabled": True,
        "max_entries": 5,
        "min_similarity": 0.2,
    },
    "logging": {
        "level": "INFO",
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config() -> Dict[str, Any]:
    data: Dict[str, Any] = copy.deepcopy(BUILTIN_DEFAULTS)
    if DEFAULT_CONFIG_PATH.exists():
        data = _deep_merge(data, yaml.safe_load(DEFAULT_CONFIG_PATH.read_text()) or {})
    if USER_CONFIG_PATH.exists():
        override = yaml.safe_load(USER_CONFIG_PATH.read_text()) or {}
        data = _deep_merge(data, override)

    # Environment overrides - Data directory
    data_dir = os.getenv("ROUNDTABLE_DATA_DIR")
    if data_dir:
        data["data_dir"] = data_dir

    # Environment overrides - Provider
    provider = os.getenv("ROUNDTABLE_PROVIDER")
    if provider:
        data.setdefault("provider", {})["kind"] = provider
    model = os.getenv("ROUNDTABLE_MODEL")
    if model:
        data.setdefault("provider", {})["model"] = model
    base_url = os.getenv("ROUNDTABLE_BASE_URL")
    if base_url:
        data.setdefault("provider", {})["base_url"] = base_url

    # Environment overrides - Agent behaviour
    mode = os.getenv("ROUNDTABLE_CONSISTENCY_MODE")
    if mode:
        data.setdefault("agent", {})["consistency_mode"] = mode.lower()
    level = os.getenv("ROUNDTABLE_VALIDATION_LEVEL")
    if level:
        data.setdefault("agent", {})["validation_level"] = level.lower()

    # Environment overrides - Workflow
    threshold = os.getenv("ROUNDTABLE_CRITIC_THRESHOLD")
    if threshold:
        try:
            data.setdefault("workflow", {})["critic_trigger_threshold"] = float(threshold)
        except ValueError:
            pass

    log_level = os.getenv("ROUNDTABLE_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level.upper()

    return data


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def data_dir(self) -> Path:
        default = str(Path.home() / ".roundtable")
        return Path(self.raw.get("data_dir", default)).expanduser()

    @property
    def provider(self) -> Dict[str, Any]:
        return self.raw.get("provider", {})

    @property
    def agent(self) -> Dict[str, Any]:
        return self.raw.get("agent", {})

    @property
    def reasoning(self) -> Dict[str, Any]:
        return self.raw.get("reasoning", {})

    @property
    def evaluator(self) -> Dict[str, Any]:
        return self.raw.get("evaluator", {})

    @property
    def workflow(self) -> Dict[str, Any]:
        return self.raw.get("workflow", {})

    @property
    def memory(self) -> Dict[str, Any]:
        return self.raw.get("memory", {})

    @property
    def memory_path(self) -> Path:
        path = self.memory.get("path")
        return Path(path).expanduser() if path else self.data_dir / "memory.jsonl"

    @property
    def log_level(self) -> str:
        return str(self.raw.get("logging", {}).get("level", "INFO")).upper()


@dataclass
class AgentSettings:
    """Per-persona behaviour shared by every role in a run."""

    consistency_mode: str = "fast"
    validation_level: str = "medium"
    enable_self_critique: bool = True
    enable_critic_review: bool = False
    enforce: bool = False
    max_tokens: int = 4096
    temperature: float = 0.7
    paths: Dict[str, int] = field(default_factory=lambda: {"none": 1, "fast": 3, "robust": 5})
    cluster_threshold: float = 0.6
    critique_max_tokens: int = 1000
    critique_temperature: float = 0.3
    cost_per_1k_input: float = 0.0025
    cost_per_1k_output: float = 0.01
    min_validation_score: float = 0.7

    def __post_init__(self) -> None:
        if self.consistency_mode not in CONSISTENCY_MODES:
            raise ConfigError(f"consistency_mode must be one of {CONSISTENCY_MODES}, got {self.consistency_mode!r}")
        if self.validation_level not in VALIDATION_LEVELS:
            raise ConfigError(f"validation_level must be one of {VALIDATION_LEVELS}, got {self.validation_level!r}")
        for mode in CONSISTENCY_MODES:
            if int(self.paths.get(mode, 1)) < 1:
                raise ConfigError(f"paths.{mode} must be at least 1")
        if not 0 < self.cluster_threshold <= 1:
            raise ConfigError(f"cluster_threshold must be in (0, 1], got {self.cluster_threshold!r}")

    @property
    def strict(self) -> bool:
        return self.validation_level == "strict"

    @classmethod
    def from_config(cls, config: Config) -> "AgentSettings":
        agent = config.agent
        reasoning = config.reasoning
        evaluator = config.evaluator
        defaults = cls()
        paths = dict(defaults.paths)
        paths.update({k: int(v) for k, v in (reasoning.get("paths") or {}).items()})
        return cls(
            consistency_mode=str(agent.get("consistency_mode", defaults.consistency_mode)),
            validation_level=str(agent.get("validation_level", defaults.validation_level)),
            enable_self_critique=bool(agent.get("enable_self_critique", defaults.enable_self_critique)),
            enable_critic_review=bool(agent.get("enable_critic_review", defaults.enable_critic_review)),
            enforce=bool(agent.get("enforce", defaults.enforce)),
            max_tokens=int(agent.get("max_tokens", defaults.max_tokens)),
            temperature=float(agent.get("temperature", defaults.temperature)),
            paths=paths,
            cluster_threshold=float(reasoning.get("cluster_threshold", defaults.cluster_threshold)),
            critique_max_tokens=int(reasoning.get("critique_max_tokens", defaults.critique_max_tokens)),
            critique_temperature=float(reasoning.get("critique_temperature", defaults.critique_temperature)),
            cost_per_1k_input=float(evaluator.get("cost_per_1k_input", defaults.cost_per_1k_input)),
            cost_per_1k_output=float(evaluator.get("cost_per_1k_output", defaults.cost_per_1k_output)),
            min_validation_score=float(evaluator.get("min_validation_score", defaults.min_validation_score)),
        )


@dataclass
class WorkflowSettings:
    critic_trigger_threshold: float = 0.15
    similarity_threshold: float = 0.5
    auto_merge_simple_conflicts: bool = True
    persist_opportunities: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "WorkflowSettings":
        workflow = config.workflow
        defaults = cls()
        return cls(
            critic_trigger_threshold=float(workflow.get("critic_trigger_threshold", defaults.critic_trigger_threshold)),
            similarity_threshold=float(workflow.get("similarity_threshold", defaults.similarity_threshold)),
            auto_merge_simple_conflicts=bool(workflow.get("auto_merge_simple_conflicts", defaults.auto_merge_simple_conflicts)),
            persist_opportunities=bool(workflow.get("persist_opportunities", defaults.persist_opportunities)),
        )


def get_config() -> Config:
    return Config(load_config())
