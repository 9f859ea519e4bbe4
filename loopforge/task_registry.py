"""
Task Registry
=============

The work manifest: an ordered list of work items with status, dependencies
and priority, stored as a human-editable markdown checklist.

    # Tasks

    - [x] Set up project skeleton (Completed: 2025-01-01)
    - [ ] Add login form (Depends on: task-1) (Priority: 2)
      - Form validates email
      - Errors are shown inline
    - [~] Wire session storage

Items get positional ids (``task-1``, ``task-2``, ...). Indented bullets below
an item are its acceptance criteria. Lines that do not look like items are
skipped on parse; only recognized lines survive a round trip.

The module-level operations are pure: they return a new ``RegistryState`` and
never touch the file. ``TaskRegistry`` wraps a manifest file for callers that
own persistence.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from loopforge.exceptions import NotFoundError, PersistenceError
from loopforge.markdown_lines import LineKind, tokenize, write_text_atomic

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Tasks"

_ANNOTATION_RE = re.compile(
    r"\(\s*(completed|depends on|blocked by|priority)\s*:\s*([^)]*)\)",
    re.IGNORECASE,
)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")

_MARK_TO_STATUS = {" ": "pending", "x": "complete", "X": "complete", "~": "in_progress"}


class ItemStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    BLOCKED = "blocked"


_STATUS_TO_MARK = {
    ItemStatus.PENDING: " ",
    ItemStatus.BLOCKED: " ",
    ItemStatus.IN_PROGRESS: "~",
    ItemStatus.COMPLETE: "x",
}


@dataclass
class WorkItem:
    """A single schedulable unit of work."""
    id: str
    title: str
    status: ItemStatus = ItemStatus.PENDING
    acceptance_criteria: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    priority: int = 0  # higher runs first among ready items
    completed_at: Optional[str] = None  # ISO timestamp

    @property
    def is_complete(self) -> bool:
        return self.status == ItemStatus.COMPLETE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "acceptance_criteria": list(self.acceptance_criteria),
            "dependencies": list(self.dependencies),
            "priority": self.priority,
            "completed_at": self.completed_at,
        }


@dataclass
class RegistryStats:
    total: int = 0
    completed: int = 0
    pending: int = 0
    in_progress: int = 0
    blocked: int = 0
    last_updated: Optional[str] = None

    @property
    def percentage(self) -> float:
        return (self.completed / self.total * 100) if self.total else 0.0


@dataclass
class RegistryState:
    """Parsed manifest plus derived counts."""
    title: str = DEFAULT_TITLE
    items: list[WorkItem] = field(default_factory=list)
    stats: RegistryStats = field(default_factory=RegistryStats)

    def get(self, item_id: str) -> Optional[WorkItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def require(self, item_id: str) -> WorkItem:
        item = self.get(item_id)
        if item is None:
            raise NotFoundError(item_id)
        return item

    def copy(self) -> "RegistryState":
        return copy.deepcopy(self)

    def unresolved_dependencies(self, item: WorkItem) -> list[str]:
        """Dependency ids that are not complete. Unknown ids count as unresolved."""
        unresolved = []
        for dep_id in item.dependencies:
            dep = self.get(dep_id)
            if dep is None or dep.status != ItemStatus.COMPLETE:
                unresolved.append(dep_id)
        return unresolved


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _split_ids(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_item_body(body: str) -> tuple[str, dict]:
    """Strip inline annotations from an item line, returning (title, annotations)."""
    annotations: dict = {}
    for match in _ANNOTATION_RE.finditer(body):
        key = match.group(1).lower()
        value = match.group(2).strip()
        if key == "completed":
            annotations["completed"] = value
        elif key in ("depends on", "blocked by"):
            annotations.setdefault("dependencies", []).extend(_split_ids(value))
        elif key == "priority":
            try:
                annotations["priority"] = int(value)
            except ValueError:
                logger.debug("Ignoring non-numeric priority %r", value)

    title = " ".join(_ANNOTATION_RE.sub("", body).split())
    return title, annotations


def _normalize_completed(value: Optional[str]) -> Optional[str]:
    """Manifest dates are kept at day precision."""
    if not value:
        return None
    match = _DATE_RE.match(value)
    return match.group(0) if match else value


def _refresh_blocked(state: RegistryState) -> None:
    """Block pending items with open dependencies, unblock ones that resolved."""
    for item in state.items:
        if item.status == ItemStatus.PENDING and state.unresolved_dependencies(item):
            item.status = ItemStatus.BLOCKED
        elif item.status == ItemStatus.BLOCKED and not state.unresolved_dependencies(item):
            item.status = ItemStatus.PENDING


def recompute_stats(state: RegistryState) -> RegistryStats:
    """Recount items by status and stamp ``last_updated``."""
    stats = RegistryStats(total=len(state.items), last_updated=_now_iso())
    for item in state.items:
        if item.status == ItemStatus.COMPLETE:
            stats.completed += 1
        elif item.status == ItemStatus.PENDING:
            stats.pending += 1
        elif item.status == ItemStatus.IN_PROGRESS:
            stats.in_progress += 1
        elif item.status == ItemStatus.BLOCKED:
            stats.blocked += 1
    state.stats = stats
    return stats


def parse_manifest(text: str) -> RegistryState:
    """
    Parse manifest text into a registry state.

    Unrecognized or malformed lines are skipped. A checked item with no
    completion date is stamped with today's date so that every complete item
    carries a timestamp.
    """
    state = RegistryState()
    title_seen = False
    current: Optional[WorkItem] = None

    for line in tokenize(text):
        if line.kind == LineKind.HEADING:
            if not title_seen:
                state.title = line.text
                title_seen = True
            current = None
            continue

        if line.kind == LineKind.CHECKBOX and line.indent == 0:
            title, annotations = _parse_item_body(line.text)
            if not title:
                logger.debug("Skipping item without a title on line %d", line.number)
                current = None
                continue

            status = ItemStatus(_MARK_TO_STATUS[line.mark])
            completed_at = None
            if status == ItemStatus.COMPLETE:
                completed_at = _normalize_completed(annotations.get("completed"))
                if completed_at is None:
                    completed_at = datetime.now(timezone.utc).date().isoformat()

            current = WorkItem(
                id=f"task-{len(state.items) + 1}",
                title=title,
                status=status,
                dependencies=annotations.get("dependencies", []),
                priority=annotations.get("priority", 0),
                completed_at=completed_at,
            )
            state.items.append(current)
            continue

        # Acceptance criteria: indented bullets directly under an item
        if current is not None and line.indent > 0 and line.kind in (LineKind.BULLET, LineKind.CHECKBOX):
            current.acceptance_criteria.append(line.text)
            continue

        if not line.is_blank:
            current = None

    _refresh_blocked(state)
    recompute_stats(state)
    return state


def serialize_manifest(state: RegistryState) -> str:
    """Render a registry state as manifest text."""
    lines = [f"# {state.title}", ""]

    for item in state.items:
        parts = [f"- [{_STATUS_TO_MARK[item.status]}] {item.title}"]
        if item.dependencies:
            parts.append(f"(Depends on: {', '.join(item.dependencies)})")
        if item.priority:
            parts.append(f"(Priority: {item.priority})")
        if item.status == ItemStatus.COMPLETE and item.completed_at:
            parts.append(f"(Completed: {_normalize_completed(item.completed_at)})")
        lines.append(" ".join(parts))

        for criterion in item.acceptance_criteria:
            lines.append(f"  - {criterion}")

    return "\n".join(lines) + "\n"


def next_ready(state: RegistryState, exclude: Iterable[str] = ()) -> Optional[WorkItem]:
    """
    Pick the next item to work on.

    Candidates are pending items whose dependencies are all complete. The
    highest priority wins; ties go to manifest order, so a manifest without
    priorities is worked top to bottom. Returns None when nothing is ready.
    """
    skipped = set(exclude)
    ready = [
        item for item in state.items
        if item.status == ItemStatus.PENDING
        and item.id not in skipped
        and not state.unresolved_dependencies(item)
    ]
    if not ready:
        return None
    return max(ready, key=lambda item: item.priority)


def complete_item(state: RegistryState, item_id: str, now: Optional[datetime] = None) -> RegistryState:
    """
    Mark an item complete and unblock its dependents.

    Raises:
        NotFoundError: if ``item_id`` is not in the registry.
    """
    new_state = state.copy()
    item = new_state.require(item_id)
    if item.status != ItemStatus.COMPLETE:
        item.status = ItemStatus.COMPLETE
        item.completed_at = (now or datetime.now(timezone.utc)).isoformat()

    _refresh_blocked(new_state)
    recompute_stats(new_state)
    return new_state


def start_item(state: RegistryState, item_id: str) -> RegistryState:
    """Move a pending item to in_progress."""
    new_state = state.copy()
    item = new_state.require(item_id)
    if item.status != ItemStatus.PENDING:
        raise ValueError(f"Cannot start {item_id}: status is {item.status.value}")
    item.status = ItemStatus.IN_PROGRESS
    recompute_stats(new_state)
    return new_state


def release_item(state: RegistryState, item_id: str) -> RegistryState:
    """Return an in_progress item to pending after a failed attempt."""
    new_state = state.copy()
    item = new_state.require(item_id)
    if item.status == ItemStatus.IN_PROGRESS:
        item.status = ItemStatus.PENDING
    _refresh_blocked(new_state)
    recompute_stats(new_state)
    return new_state


class TaskRegistry:
    """A manifest file plus the registry state loaded from it."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.state = RegistryState()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> RegistryState:
        """Load the manifest. A missing file yields an empty registry."""
        if not self.path.exists():
            self.state = RegistryState()
            recompute_stats(self.state)
        else:
            self.state = parse_manifest(self.path.read_text(encoding="utf-8"))
        return self.state

    def save(self) -> None:
        """Write the manifest back to disk."""
        try:
            write_text_atomic(self.path, serialize_manifest(self.state))
        except OSError as e:
            raise PersistenceError(str(self.path), e) from e

    def next_ready(self, exclude: Iterable[str] = ()) -> Optional[WorkItem]:
        return next_ready(self.state, exclude)

    def get(self, item_id: str) -> Optional[WorkItem]:
        return self.state.get(item_id)

    def complete(self, item_id: str) -> WorkItem:
        self.state = complete_item(self.state, item_id)
        return self.state.require(item_id)

    def start(self, item_id: str) -> WorkItem:
        self.state = start_item(self.state, item_id)
        return self.state.require(item_id)

    def release(self, item_id: str) -> WorkItem:
        self.state = release_item(self.state, item_id)
        return self.state.require(item_id)

    def release_stale(self) -> list[str]:
        """Reset items left in_progress by an interrupted run."""
        stale = [item.id for item in self.state.items if item.status == ItemStatus.IN_PROGRESS]
        for item_id in stale:
            self.state = release_item(self.state, item_id)
        return stale

    @property
    def stats(self) -> RegistryStats:
        return self.state.stats
