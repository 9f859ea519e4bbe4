#!/usr/bin/env python
"""
Ledger History CLI
==================

Review past iterations and recoveries from a project's ledger.

Usage:
    python -m loopforge history iterations ./my_app
    python -m loopforge history recoveries ./my_app --limit 5
"""

import argparse
import asyncio
from pathlib import Path
from typing import Optional, Sequence

from rich.markup import escape

from loopforge.config import DATA_DIRNAME
from loopforge.db import close_db, init_db
from loopforge.ledger import Ledger
from loopforge.output import console, create_table, print_error, print_muted

_OUTCOME_STYLES = {
    "succeeded": "lf.ok",
    "recovered": "lf.ok",
    "failed": "lf.err",
    "abandoned": "lf.warn",
}


def _format_time(ms: int) -> str:
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    return f"{seconds / 60:.1f}m"


async def _iterations(project_dir: Path, limit: int) -> int:
    await init_db(project_dir)
    try:
        records = await Ledger().recent_iterations(limit)
    finally:
        await close_db()

    if not records:
        print_muted("No iterations recorded yet")
        return 0

    table = create_table(title="Recent Iterations", columns=["#", "Item", "Outcome", "Tokens", "Time", "Reason"])
    for record in reversed(records):
        style = _OUTCOME_STYLES.get(record.outcome, "lf.muted")
        table.add_row(
            str(record.number),
            escape(f"{record.item_id} {record.item_title}"),
            f"[{style}]{record.outcome}[/]",
            str(record.tokens_used),
            _format_time(record.time_ms),
            escape((record.failure_reason or "")[:60]),
        )
    console.print(table)
    return 0


async def _recoveries(project_dir: Path, limit: int) -> int:
    await init_db(project_dir)
    try:
        records = await Ledger().recent_recoveries(limit)
    finally:
        await close_db()

    if not records:
        print_muted("No recoveries recorded yet")
        return 0

    table = create_table(title="Recoveries", columns=["Item", "Stuck %", "Advice", "Result", "Reason"])
    for record in reversed(records):
        if record.succeeded is None:
            result = "[lf.muted]pending[/]"
        elif record.succeeded:
            result = "[lf.ok]resolved[/]"
        else:
            result = "[lf.err]abandoned[/]"
        table.add_row(
            escape(record.item_id),
            str(record.stuck_confidence),
            escape(record.recommendation),
            result,
            escape(record.reason),
        )
    console.print(table)
    return 0


def cmd_iterations(args: argparse.Namespace) -> int:
    """Show the most recent iterations."""
    return asyncio.run(_iterations(args.project_dir, args.limit))


def cmd_recoveries(args: argparse.Namespace) -> int:
    """Show the most recent recovery decisions."""
    return asyncio.run(_recoveries(args.project_dir, args.limit))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="loopforge history",
        description="Ledger History CLI - review iterations and recoveries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Last 20 iterations
  python -m loopforge history iterations ./my_app

  # Last 5 recovery decisions
  python -m loopforge history recoveries ./my_app --limit 5
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for name, help_text in (("iterations", "Show recent iterations"), ("recoveries", "Show recent recoveries")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("project_dir", type=Path, help="Project directory")
        sub.add_argument("--limit", type=int, default=20, help="Number of rows (default: 20)")

    args = parser.parse_args(argv)

    commands = {
        "iterations": cmd_iterations,
        "recoveries": cmd_recoveries,
    }
    if args.command not in commands:
        parser.print_help()
        return 1

    if not (args.project_dir / DATA_DIRNAME).is_dir():
        print_error(f"No ledger found in {args.project_dir}")
        return 1
    return commands[args.command](args)


if __name__ == "__main__":
    raise SystemExit(main())
