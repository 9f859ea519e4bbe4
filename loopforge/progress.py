"""
Progress Display Utilities
==========================

Functions for displaying registry progress, trajectories, and review cycles.
"""

from typing import Iterable

from rich.markup import escape

from loopforge.output import console, create_table, glyph, print_header, print_progress_bar
from loopforge.stall_detection import analyze
from loopforge.task_registry import ItemStatus, RegistryState
from loopforge.trajectory import Trajectory

_STATUS_STYLES = {
    ItemStatus.COMPLETE: ("lf.status.complete", "check"),
    ItemStatus.PENDING: ("lf.status.pending", "bullet"),
    ItemStatus.IN_PROGRESS: ("lf.status.in_progress", "loop"),
    ItemStatus.BLOCKED: ("lf.status.blocked", "blocked"),
}


def print_progress_summary(state: RegistryState) -> None:
    """Print a one-line progress bar for the registry."""
    print_progress_bar(state.stats.completed, state.stats.total, "Tasks")


def print_task_table(state: RegistryState) -> None:
    """Print every work item with its status."""
    table = create_table(title=escape(state.title), columns=["ID", "Status", "Priority", "Title", "Depends on"])
    for item in state.items:
        style, glyph_name = _STATUS_STYLES[item.status]
        table.add_row(
            escape(item.id),
            f"[{style}]{glyph(glyph_name)} {item.status.value}[/]",
            str(item.priority) if item.priority else "",
            escape(item.title),
            escape(", ".join(item.dependencies)),
        )
    console.print(table)


def print_trajectory_table(trajectories: Iterable[Trajectory]) -> None:
    """Print open trajectories with their stuck confidence."""
    table = create_table(columns=["Item", "Attempts", "Failed", "Tokens", "Stuck %"])
    rows = 0
    for trajectory in trajectories:
        report = analyze(trajectory)
        table.add_row(
            escape(trajectory.item_id or "?"),
            str(len(trajectory.attempts)),
            str(trajectory.failed_count),
            str(trajectory.total_tokens),
            f"{report.stuck_confidence}",
        )
        rows += 1
    if rows:
        console.print(table)
    else:
        console.print("[lf.muted]No open trajectories[/]")


def print_review_cycle(iteration: int, state: RegistryState, trajectories: Iterable[Trajectory]) -> None:
    """Periodic checkpoint: overall progress plus anything still struggling."""
    print_header(f"REVIEW CYCLE (after iteration {iteration})", style="lf.state.persist")
    print_progress_summary(state)
    print_trajectory_table(trajectories)
