#!/usr/bin/env python
"""
Loop Runner
===========

Runs the iteration loop over a project's task manifest.

Example Usage:
    python -m loopforge run --project-dir ./my_app
    python -m loopforge run --project-dir ./my_app --max-iterations 5
    python -m loopforge run --project-dir ./my_app --profile overnight
"""

import argparse
import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Sequence

from loopforge import __version__
from loopforge.config import LoopConfig, get_default_model
from loopforge.exceptions import PersistenceError
from loopforge.orchestrator import IterationOrchestrator
from loopforge.output import (
    console,
    print_banner,
    print_error,
    print_key_value_table,
    print_muted,
    print_warning,
    set_verbose,
    setup_rich_logging,
)


def parse_gate(value: str) -> tuple[str, str]:
    """Parse ``name=command`` into a gate entry."""
    name, sep, command = value.partition("=")
    if not sep or not name.strip() or not command.strip():
        raise argparse.ArgumentTypeError(f"Expected NAME=COMMAND, got {value!r}")
    return name.strip(), command.strip()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    default_model = get_default_model()
    parser = argparse.ArgumentParser(
        prog="loopforge run",
        description="Run the autonomous iteration loop over a task manifest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Work through TASKS.md in the current directory
  python -m loopforge run

  # Limit iterations for a trial run
  python -m loopforge run --project-dir ./my_app --max-iterations 3

  # Long unattended run
  python -m loopforge run --project-dir ./my_app --profile overnight

  # Custom quality gates
  python -m loopforge run --gate tests="pytest -q" --gate lint="ruff check ."

Environment Variables:
  CLAUDE_CODE_OAUTH_TOKEN    Claude credentials (required)
  LOOPFORGE_MODEL            Default Claude model (current: {default_model})
  LOOPFORGE_MAX_ITERATIONS   Iteration cap (0 for unlimited)
        """,
    )
    parser.add_argument("--project-dir", type=Path, default=Path("."), help="Project directory (default: .)")
    parser.add_argument("--profile", choices=["default", "overnight"], default="default", help="Base settings profile")
    parser.add_argument("--tasks", type=str, default=None, help="Task manifest path relative to the project")
    parser.add_argument("--knowledge", type=str, default=None, help="Knowledge document path relative to the project")
    parser.add_argument("--model", type=str, default=None, help=f"Claude model to use (default: {default_model})")
    parser.add_argument("--max-iterations", type=int, default=None, help="Maximum iterations (0 for unlimited)")
    parser.add_argument("--max-hours", type=float, default=None, help="Stop after this many hours")
    parser.add_argument("--review-every", type=int, default=None, help="Print a review cycle every N iterations")
    parser.add_argument("--generation-timeout", type=float, default=None, help="Seconds allowed per worker call")
    parser.add_argument("--gate-timeout", type=float, default=None, help="Seconds allowed per quality gate")
    parser.add_argument(
        "--gate",
        type=parse_gate,
        action="append",
        default=None,
        metavar="NAME=COMMAND",
        help="Quality gate; repeat for several. Replaces the configured gates.",
    )
    parser.add_argument("--no-gates", action="store_true", help="Run without quality gates")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> LoopConfig:
    """Layer command line flags over file and environment configuration."""
    config = LoopConfig.load(args.project_dir, profile=args.profile)

    if args.tasks:
        config.tasks_path = args.tasks
    if args.knowledge:
        config.knowledge_path = args.knowledge
    if args.model:
        config.model = args.model
    if args.max_iterations is not None:
        config.max_iterations = args.max_iterations or None
    if args.max_hours is not None:
        config.max_hours = args.max_hours or None
    if args.review_every is not None:
        config.review_every = args.review_every
    if args.generation_timeout is not None:
        config.generation_timeout = args.generation_timeout
    if args.gate_timeout is not None:
        config.gate_timeout = args.gate_timeout
    if args.gate:
        config.quality_gates = dict(args.gate)
    if args.no_gates:
        config.quality_gates = {}

    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    set_verbose(args.verbose)
    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    print_banner(version=f"v{__version__}")
    console.print()

    if not os.environ.get("CLAUDE_CODE_OAUTH_TOKEN") and not os.environ.get("ANTHROPIC_API_KEY"):
        print_error("CLAUDE_CODE_OAUTH_TOKEN environment variable not set")
        console.print("\nGet your token by running: [lf.accent]claude setup-token[/]")
        print_muted("  export CLAUDE_CODE_OAUTH_TOKEN='your-token-here'")
        return 1

    if shutil.which("git") is None:
        print_warning("git not found; the commit history layer will be empty")

    project_dir = args.project_dir.resolve()
    if not project_dir.is_dir():
        print_error(f"Project directory not found: {project_dir}")
        return 1

    config = build_config(args)
    print_key_value_table(
        {
            "Project": str(project_dir),
            "Tasks": config.tasks_path,
            "Knowledge": config.knowledge_path,
            "Model": config.model,
            "Max iterations": config.max_iterations or "Unlimited",
            "Quality gates": ", ".join(config.quality_gates) or "none",
        },
        title="Configuration",
    )

    orchestrator = IterationOrchestrator(project_dir, config)
    try:
        asyncio.run(orchestrator.run())
    except PersistenceError:
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
