"""Command line interface for Roundtable."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from roundtable.config import Config, WorkflowSettings, get_config
from roundtable.errors import AgentError
from roundtable.orchestrator import Orchestrator
from roundtable.personas import PERSONAS
from roundtable.workflow import DeliberationWorkflow


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _read_task(args: argparse.Namespace) -> str:
    if getattr(args, "input_file", None):
        return Path(args.input_file).read_text(encoding="utf-8").strip()
    return args.task


def _apply_overrides(args: argparse.Namespace, config: Config) -> None:
    agent = config.raw.setdefault("agent", {})
    if getattr(args, "mode", None):
        agent["consistency_mode"] = args.mode
    if getattr(args, "level", None):
        agent["validation_level"] = args.level
    if getattr(args, "no_critique", False):
        agent["enable_self_critique"] = False


def _setup_logging(config: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def cmd_invoke(args: argparse.Namespace, config: Config) -> None:
    orchestrator = Orchestrator.from_config(config)
    review = True if args.review else None
    invoke = orchestrator.invoke_with_memory if args.with_memory else orchestrator.invoke_agent
    result = invoke(args.role, _read_task(args), review=review)
    _print(result.to_dict())


def cmd_review(args: argparse.Namespace, config: Config) -> None:
    orchestrator = Orchestrator.from_config(config)
    _print(orchestrator.quick_review(_read_task(args)).to_dict())


def cmd_pipeline(args: argparse.Namespace, config: Config) -> None:
    orchestrator = Orchestrator.from_config(config)
    _print(orchestrator.run_pipeline(_read_task(args)).to_dict())


def cmd_deliberate(args: argparse.Namespace, config: Config) -> None:
    if args.threshold is not None:
        config.raw.setdefault("workflow", {})["critic_trigger_threshold"] = args.threshold
    orchestrator = Orchestrator.from_config(config)
    memory = None if args.no_memory else orchestrator.memory
    workflow = DeliberationWorkflow(orchestrator, WorkflowSettings.from_config(config), memory=memory)
    result = workflow.execute(_read_task(args))
    if args.report:
        report = result.format_report()
        if args.output_md:
            Path(args.output_md).write_text(report, encoding="utf-8")
        else:
            print(report)
        return
    if args.output_md:
        Path(args.output_md).write_text(result.format_report(), encoding="utf-8")
    _print(result.to_dict())


def _add_task_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("task", nargs="?", default="")
    parser.add_argument("--input-file", help="Read the task from a file")
    parser.add_argument("--mode", choices=["none", "fast", "robust"])
    parser.add_argument("--level", choices=["low", "medium", "high", "strict"])
    parser.add_argument("--no-critique", action="store_true", help="Skip the self-critique call")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="roundtable")
    sub = parser.add_subparsers(dest="command")

    invoke = sub.add_parser("invoke", help="Invoke a single role")
    invoke.add_argument("--role", required=True, choices=sorted(PERSONAS))
    invoke.add_argument("--review", action="store_true", help="Have the Critic review the response")
    invoke.add_argument("--with-memory", action="store_true", help="Append relevant stored memories to the prompt")
    _add_task_args(invoke)

    review = sub.add_parser("review", help="Planner design checked by the Fixer")
    _add_task_args(review)

    pipeline = sub.add_parser("pipeline", help="Plan, implement, diagnose and meta-analyse")
    _add_task_args(pipeline)

    deliberate = sub.add_parser("deliberate", help="Run the three-stage deliberation")
    _add_task_args(deliberate)
    deliberate.add_argument("--threshold", type=float, help="Stage 2 Critic trigger threshold")
    deliberate.add_argument("--report", action="store_true", help="Print the markdown report instead of JSON")
    deliberate.add_argument("--output-md", help="Write the markdown report to this path")
    deliberate.add_argument("--no-memory", action="store_true", help="Do not persist opportunities")

    return parser


COMMANDS = {
    "invoke": cmd_invoke,
    "review": cmd_review,
    "pipeline": cmd_pipeline,
    "deliberate": cmd_deliberate,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    if not _read_task(args):
        parser.error("a task is required (positional argument or --input-file)")

    config = get_config()
    _apply_overrides(args, config)
    _setup_logging(config)
    try:
        handler(args, config)
    except AgentError as exc:
        _print({"error": exc.to_dict()})
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
