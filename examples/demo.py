#!/usr/bin/env python3
"""
Roundtable Demo -- three-stage deliberation on a few engineering tasks.

Run:
    python examples/demo.py

Requires a configured provider (OPENAI_API_KEY, GEMINI_API_KEY or a local Ollama).
Set ROUNDTABLE_PROVIDER / ROUNDTABLE_MODEL to switch, or edit config/default.yaml.
"""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure roundtable is importable when running from the repo root.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from roundtable.config import WorkflowSettings, get_config
from roundtable.orchestrator import Orchestrator
from roundtable.workflow import DeliberationWorkflow


DEMO_TASKS = [
    {
        "task": "Add a read-through cache in front of the product catalogue API.",
        "description": "Small change; the Critic usually stays out of Stage 2.",
    },
    {
        "task": (
            "Split the billing module out of the monolith into its own service "
            "without downtime for existing customers."
        ),
        "description": "Large redesign; expect conflicts and a Stage 2 Critic check.",
    },
    {
        "task": "Replace the nightly cron jobs with an event-driven job scheduler.",
        "description": "Open-ended migration with several reasonable plans.",
    },
]


def run_demo(index: int | None = None) -> None:
    """Run one or all demo tasks through the deliberation workflow."""
    config = get_config()
    workflow = DeliberationWorkflow(Orchestrator.from_config(config), WorkflowSettings.from_config(config))

    tasks = DEMO_TASKS if index is None else [DEMO_TASKS[index]]

    for i, item in enumerate(tasks):
        num = index if index is not None else i
        print(f"\n{'=' * 72}")
        print(f"  Demo {num + 1}: {item['description']}")
        print(f"{'=' * 72}")
        print(f"\n  Task: {item['task']}\n")

        result = workflow.execute(item["task"])

        print(f"  Calls: {result.total_calls} ({', '.join(str(s.call_count) for s in result.stages)})")
        print(f"  Findings: {len(result.findings)}  Conflicts: {len(result.conflicts)}")
        print(f"  Opportunities: {len(result.opportunities)}")
        print(f"\n  Roadmap:\n")
        for line in result.final_artifact.splitlines():
            print(f"    {line}")
        print()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        description="Run Roundtable demo tasks through the three-stage deliberation."
    )
    parser.add_argument(
        "--task",
        "-t",
        type=int,
        choices=range(1, len(DEMO_TASKS) + 1),
        help="Run a specific demo task (1-%d)" % len(DEMO_TASKS),
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List available demo tasks and exit.",
    )
    args = parser.parse_args()

    if args.list:
        print("\nAvailable demo tasks:\n")
        for i, item in enumerate(DEMO_TASKS, 1):
            print(f"  {i}. {item['task']}")
            print(f"     {item['description']}\n")
        return

    idx = (args.task - 1) if args.task else None
    run_demo(idx)


if __name__ == "__main__":
    main()
