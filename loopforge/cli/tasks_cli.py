#!/usr/bin/env python
"""
Task Manifest CLI
=================

Inspect and edit a task manifest without running the loop.

Usage:
    python -m loopforge tasks list ./my_app
    python -m loopforge tasks next ./my_app
    python -m loopforge tasks complete ./my_app task-3
    python -m loopforge tasks stats ./my_app
"""

import argparse
from pathlib import Path
from typing import Optional, Sequence

from rich.markup import escape

from loopforge.config import LoopConfig
from loopforge.exceptions import NotFoundError, PersistenceError
from loopforge.output import console, print_error, print_key_value_table, print_list, print_muted, print_success
from loopforge.progress import print_progress_summary, print_task_table
from loopforge.task_registry import ItemStatus, TaskRegistry


def _open_registry(args: argparse.Namespace) -> Optional[TaskRegistry]:
    tasks_path = args.tasks or LoopConfig.load(args.project_dir).tasks_path
    registry = TaskRegistry(args.project_dir / tasks_path)
    if not registry.exists():
        print_error(f"No task manifest at {registry.path}")
        return None
    registry.load()
    return registry


def cmd_list(args: argparse.Namespace) -> int:
    """List work items, optionally filtered by status."""
    registry = _open_registry(args)
    if registry is None:
        return 1

    state = registry.state
    if args.status:
        state = state.copy()
        state.items = [item for item in state.items if item.status == ItemStatus(args.status)]
    print_task_table(state)
    print_progress_summary(registry.state)
    return 0


def cmd_next(args: argparse.Namespace) -> int:
    """Show the item the loop would pick next."""
    registry = _open_registry(args)
    if registry is None:
        return 1

    item = registry.next_ready()
    if item is None:
        print_muted("Nothing is ready. Every item is complete or waiting on dependencies.")
        return 0

    console.print(f"[lf.accent]{escape(item.id)}[/] {escape(item.title)}")
    if item.acceptance_criteria:
        print_list(item.acceptance_criteria)
    return 0


def cmd_complete(args: argparse.Namespace) -> int:
    """Mark an item complete and write the manifest back."""
    registry = _open_registry(args)
    if registry is None:
        return 1

    try:
        item = registry.complete(args.item_id)
        registry.save()
    except NotFoundError as e:
        print_error(str(e))
        return 1
    except PersistenceError as e:
        print_error(str(e))
        return 2

    print_success(f"{item.id} marked complete")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    registry = _open_registry(args)
    if registry is None:
        return 1

    stats = registry.stats
    print_key_value_table(
        {
            "Total": stats.total,
            "Completed": stats.completed,
            "Pending": stats.pending,
            "In progress": stats.in_progress,
            "Blocked": stats.blocked,
            "Progress": f"{stats.percentage:.1f}%",
        },
        title=registry.state.title,
    )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="loopforge tasks",
        description="Task Manifest CLI - inspect and edit the work manifest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List everything still blocked
  python -m loopforge tasks list ./my_app --status blocked

  # Show what the loop would pick next
  python -m loopforge tasks next ./my_app

  # Mark an item complete by hand
  python -m loopforge tasks complete ./my_app task-3
        """,
    )
    parser.add_argument("--tasks", type=str, default=None, help="Manifest path relative to the project")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    list_parser = subparsers.add_parser("list", help="List work items")
    list_parser.add_argument("project_dir", type=Path, help="Project directory")
    list_parser.add_argument("--status", choices=[s.value for s in ItemStatus], help="Filter by status")

    next_parser = subparsers.add_parser("next", help="Show the next ready item")
    next_parser.add_argument("project_dir", type=Path, help="Project directory")

    complete_parser = subparsers.add_parser("complete", help="Mark an item complete")
    complete_parser.add_argument("project_dir", type=Path, help="Project directory")
    complete_parser.add_argument("item_id", type=str, help="Item id, e.g. task-3")

    stats_parser = subparsers.add_parser("stats", help="Show manifest statistics")
    stats_parser.add_argument("project_dir", type=Path, help="Project directory")

    args = parser.parse_args(argv)

    commands = {
        "list": cmd_list,
        "next": cmd_next,
        "complete": cmd_complete,
        "stats": cmd_stats,
    }
    if args.command not in commands:
        parser.print_help()
        return 1
    return commands[args.command](args)


if __name__ == "__main__":
    raise SystemExit(main())
