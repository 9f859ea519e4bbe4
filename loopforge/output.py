"""
Rich Output Utilities
=====================

Unified terminal output for Loop Forge using the Rich library.
Every user-visible line the loop prints goes through the console here.
Helpers take plain text and escape it; gate output and titles often contain
brackets that Rich would otherwise read as markup.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class LoopColors:
    """Loop Forge palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    ember: str = "#F97316"     # warm accent
    loop: str = "#38BDF8"      # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red


def loop_theme(colors: LoopColors = LoopColors()) -> Theme:
    """
    Rich Theme for the Loop Forge CLI.

    Style names are semantic:
      console.print("...", style="lf.ok")
    """
    return Theme(
        {
            "lf.banner": f"bold {colors.loop}",
            "lf.subtitle": f"{colors.dim}",
            "lf.border": f"{colors.loop}",
            "lf.accent": f"bold {colors.ember}",
            "lf.muted": f"{colors.dim}",
            "lf.text": f"{colors.ink}",

            "lf.ok": f"bold {colors.ok}",
            "lf.warn": f"bold {colors.warn}",
            "lf.err": f"bold {colors.err}",
            "lf.info": f"{colors.loop}",

            "lf.key": f"{colors.steel}",
            "lf.value": f"{colors.ink}",
            "lf.number": f"bold {colors.ember}",
            "lf.path": f"{colors.loop}",

            # Loop states
            "lf.state.select": f"bold {colors.loop}",
            "lf.state.execute": f"bold {colors.ember}",
            "lf.state.recover": f"bold {colors.warn}",
            "lf.state.persist": f"bold {colors.steel}",

            "lf.table.header": f"bold {colors.loop}",

            "lf.status.complete": f"bold {colors.ok}",
            "lf.status.blocked": f"bold {colors.err}",
            "lf.status.pending": f"{colors.warn}",
            "lf.status.in_progress": f"{colors.loop}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle the Unicode status glyphs."""
    if os.name == "nt":
        try:
            encoding = sys.stdout.encoding or "utf-8"
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "blocked": "⛔",
    "warning": "⚠",
    "info": "ℹ",
    "bullet": "•",
    "loop": "↻",
    "bar_filled": "█",
    "bar_empty": "░",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "blocked": "[BLOCKED]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "loop": "(~)",
    "bar_filled": "#",
    "bar_empty": "-",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


def glyph(name: str) -> str:
    """Icon safe to embed in markup (the ASCII ``[i]`` is otherwise a style tag)."""
    return escape(icon(name))


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=loop_theme(), force_terminal=None)

_VERBOSE = False


def set_verbose(verbose: bool) -> None:
    """Set global verbosity level."""
    global _VERBOSE
    _VERBOSE = verbose


def is_verbose() -> bool:
    return _VERBOSE


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[lf.ok]{glyph('check')} {escape(message)}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[lf.err]{glyph('cross')} {escape(message)}[/]")


def print_warning(message: str) -> None:
    console.print(f"[lf.warn]{glyph('warning')} {escape(message)}[/]")


def print_info(message: str) -> None:
    console.print(f"[lf.info]{glyph('info')} {escape(message)}[/]")


def print_muted(message: str) -> None:
    console.print(f"[lf.muted]{escape(message)}[/]")


def print_header(title: str, style: str = "lf.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{escape(title)}[/]", style=style))
    console.print()


# =============================================================================
# Data Display Functions
# =============================================================================

def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "lf.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="lf.key")
    table.add_column("Value", style="lf.value")

    for key, value in data.items():
        table.add_row(escape(key), escape(str(value)))

    if title:
        console.print(Panel(table, title=f"[bold]{escape(title)}[/]", border_style=border_style))
    else:
        console.print(table)


def print_list(
    items: Sequence[str],
    *,
    numbered: bool = False,
    style: str = "lf.text",
    bullet_style: str = "lf.accent",
) -> None:
    """Print a bulleted or numbered list."""
    for i, item in enumerate(items, 1):
        if numbered:
            console.print(f"  [{bullet_style}]{i}.[/] [{style}]{escape(item)}[/]")
        else:
            console.print(f"  [{bullet_style}]{glyph('bullet')}[/] [{style}]{escape(item)}[/]")


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    show_header: bool = True,
) -> Table:
    """Create a styled Rich Table with the Loop Forge theme."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style="lf.table.header",
        border_style="lf.border",
        title_style="lf.accent",
    )
    for col in columns or []:
        table.add_column(col)
    return table


# =============================================================================
# Panels
# =============================================================================


def print_success_panel(message: str, title: str = "Success") -> None:
    console.print(Panel(
        f"[lf.ok]{glyph('check')} {escape(message)}[/]",
        title=f"[lf.ok]{escape(title)}[/]",
        border_style="lf.ok",
        padding=(1, 2),
    ))


def print_error_panel(message: str, title: str = "Error") -> None:
    console.print(Panel(
        f"[lf.err]{glyph('cross')} {escape(message)}[/]",
        title=f"[lf.err]{escape(title)}[/]",
        border_style="lf.err",
        padding=(1, 2),
    ))


def print_warning_panel(message: str, title: str = "Warning") -> None:
    console.print(Panel(
        f"[lf.warn]{glyph('warning')} {escape(message)}[/]",
        title=f"[lf.warn]{escape(title)}[/]",
        border_style="lf.warn",
        padding=(1, 2),
    ))


def print_progress_bar(completed: int, total: int, title: str = "Progress") -> None:
    """Print a simple inline progress bar."""
    if total == 0:
        console.print(f"[lf.muted]{escape(title)}: No items yet[/]")
        return

    percentage = (completed / total) * 100
    if percentage >= 100:
        color = "lf.ok"
    elif percentage >= 50:
        color = "lf.warn"
    else:
        color = "lf.info"

    bar_width = 30
    filled = int(bar_width * completed / total)
    bar = (
        f"[{color}]{glyph('bar_filled') * filled}[/]"
        f"[lf.muted]{glyph('bar_empty') * (bar_width - filled)}[/]"
    )
    console.print(f"{escape(title)}: {bar} [lf.number]{completed}[/][lf.muted]/{total}[/] ({percentage:.1f}%)")


# =============================================================================
# Banner & Loop Status
# =============================================================================

LOOP_FORGE_BANNER = r"""
  _                      _____
 | |    ___   ___  _ __ |  ___|__  _ __ __ _  ___
 | |   / _ \ / _ \| '_ \| |_ / _ \| '__/ _` |/ _ \
 | |__| (_) | (_) | |_) |  _| (_) | | | (_| |  __/
 |_____\___/ \___/| .__/|_|  \___/|_|  \__, |\___|
                  |_|                  |___/
""".rstrip("\n")


def print_banner(
    *,
    version: Optional[str] = None,
    subtitle: str = "Autonomous Iteration Loop",
    quiet: bool = False,
) -> Console:
    """Print the Loop Forge banner. Returns the console for continued use."""
    if quiet:
        return console

    footer = subtitle.strip()
    if version:
        footer = f"{footer}  {icon('bullet')}  {version.strip()}"

    console.print(Panel(
        Text.assemble(
            Text(LOOP_FORGE_BANNER, style="lf.banner"), "\n",
            Text(footer, style="lf.subtitle"),
        ),
        border_style="lf.border",
        padding=(1, 2),
    ))
    return console


def print_state(label: str, message: str, *, style: str = "lf.state.execute") -> None:
    """
    Print a loop-state label with message.

    Usage:
        print_state("SELECT", "task-3: Add login form", style="lf.state.select")
    """
    console.print(f"[{style}]{escape(f'{label:>10}')}[/] [lf.text]{escape(message)}[/]")


def print_iteration_header(iteration: int, item_id: str, title: str) -> None:
    """Print the rule that opens an iteration."""
    console.print()
    console.print(Rule(
        escape(f"{icon('loop')} ITERATION {iteration}: {item_id} {icon('bullet')} {title}"),
        style="lf.state.execute",
    ))
    console.print()


def print_recovery_notice(reason: str, recommendation: str) -> None:
    """Report a recovery transition so the decision is auditable."""
    console.print()
    print_warning_panel(
        "STUCK TRAJECTORY DETECTED, REFRAMING\n\n"
        f"Reason: {reason}\n"
        f"Cost comparison recommends: {recommendation}",
        title="Recovery",
    )


def print_status_complete(completed: int, total: int) -> None:
    console.print()
    print_success_panel(
        f"ALL WORK ITEMS COMPLETE\n\n{completed}/{total} items are done.",
        title="Complete",
    )


def print_status_halted(reason: str) -> None:
    console.print()
    print_error_panel(
        f"LOOP HALTED\n\nReason: {reason}\n\n"
        "Fix the problem and run the loop again. Committed history is intact.",
        title="Halted",
    )


def print_status_circuit_breaker(consecutive_count: int) -> None:
    console.print()
    print_error_panel(
        f"TOO MANY CONSECUTIVE FAILURES\n\n"
        f"The loop has failed {consecutive_count} iterations in a row.\n\n"
        "Review the failure reasons above and the knowledge document.",
        title="Circuit Breaker",
    )


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Route Python logging through Rich.

    Usage:
        setup_rich_logging(logging.DEBUG)
        logger.debug("picked %s", item.id)
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
