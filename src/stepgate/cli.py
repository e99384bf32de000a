"""Command-line entry point: ``stepgate run|validate|history``."""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from .agents.scorer import ScoreHistory
from .config.settings import LOG_FORMAT, LOG_LEVEL, SCORE_HISTORY_PATH, ExecutionConfig, default_checks
from .core.errors import ExitCode, ParseError
from .core.executor import StepExecutor, history_path_for, resolve_workspace
from .core.manifest import ManifestStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepgate",
        description="Execute a change manifest step by step behind a quality gate",
    )
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level (default: %(default)s)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute the pending steps of a manifest")
    run.add_argument("manifest", type=Path, help="Path to the manifest YAML file")
    run.add_argument("--no-commit", action="store_true", help="Apply steps without committing")
    run.add_argument("--no-quality-gate", action="store_true", help="Skip the quality checks")
    run.add_argument(
        "--no-branch-safety", action="store_true", help="Do not stash or confirm on a dirty tree"
    )
    run.add_argument("--interactive", action="store_true", help="Ask before branching off a dirty tree")
    run.add_argument("--checks", help="Comma-separated checks to run (lint, typecheck, test)")
    run.add_argument("--sandbox-image", help="Run checks inside this Docker image")

    validate = subparsers.add_parser("validate", help="Parse a manifest and report resumability")
    validate.add_argument("manifest", type=Path, help="Path to the manifest YAML file")

    history = subparsers.add_parser("history", help="Summarize the score history")
    history.add_argument(
        "manifest",
        type=Path,
        nargs="?",
        help="Read the history of this manifest's working directory",
    )
    history.add_argument(
        "--path",
        type=Path,
        help=f"Score history file (default: {SCORE_HISTORY_PATH} in the workspace)",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ExecutionConfig:
    overrides: dict[str, Any] = {}
    if args.no_commit:
        overrides["commits_enabled"] = False
    if args.no_quality_gate:
        overrides["quality_gate_enabled"] = False
    if args.no_branch_safety:
        overrides["branch_safety_enabled"] = False
    if args.interactive:
        overrides["interactive"] = True
    if args.checks is not None:
        overrides["checks"] = default_checks([n.strip() for n in args.checks.split(",") if n.strip()])
    if args.sandbox_image:
        overrides["sandbox_image"] = args.sandbox_image
    return ExecutionConfig(**overrides)


def cmd_run(args: argparse.Namespace) -> int:
    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return ExitCode.PARSE_FAILURE

    executor = StepExecutor(args.manifest, config=config)

    def _on_sigint(signum: int, frame: Any) -> None:
        # A second interrupt falls back to the default handler.
        signal.signal(signal.SIGINT, signal.default_int_handler)
        executor.cancel()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        report = executor.run()
    finally:
        signal.signal(signal.SIGINT, previous)

    executor.reporter.emit(report)
    return report.exit_code


def cmd_validate(args: argparse.Namespace) -> int:
    store = ManifestStore()
    try:
        manifest = store.load(args.manifest)
    except ParseError as e:
        print(json.dumps({"valid": False, "error": str(e)}, indent=2))
        return ExitCode.PARSE_FAILURE

    counts: dict[str, int] = {}
    for step in manifest.steps:
        counts[step.status.value] = counts.get(step.status.value, 0) + 1
    print(
        json.dumps(
            {
                "valid": True,
                "steps": len(manifest.steps),
                "statuses": counts,
                "resumable": store.is_resumable(manifest),
                "uncorrected_failures": store.uncorrected_failures(manifest),
            },
            indent=2,
        )
    )
    return ExitCode.SUCCESS


def history_path_from_args(args: argparse.Namespace) -> Path:
    """Resolve the history file the same way ``run`` does for the manifest's workspace."""
    if args.path is not None:
        return args.path
    if args.manifest is None:
        return Path(SCORE_HISTORY_PATH)
    manifest = ManifestStore().load(args.manifest)
    return history_path_for(resolve_workspace(args.manifest, manifest), ExecutionConfig())


def cmd_history(args: argparse.Namespace) -> int:
    try:
        path = history_path_from_args(args)
    except ParseError as e:
        print(f"Cannot read manifest: {e}", file=sys.stderr)
        return ExitCode.PARSE_FAILURE
    print(json.dumps(ScoreHistory(path).summary(), indent=2))
    return ExitCode.SUCCESS


COMMANDS = {"run": cmd_run, "validate": cmd_validate, "history": cmd_history}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
