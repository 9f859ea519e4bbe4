"""
Tests for the Task Registry
===========================

Manifest parsing, serialization, selection and completion.
"""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from loopforge.exceptions import NotFoundError, PersistenceError
from loopforge.markdown_lines import LineKind, tag_line, tokenize
from loopforge.task_registry import (
    ItemStatus,
    TaskRegistry,
    complete_item,
    next_ready,
    parse_manifest,
    release_item,
    serialize_manifest,
    start_item,
)


SAMPLE_MANIFEST = """# Checkout Flow

Some notes the parser should skip.

- [x] Set up project skeleton (Completed: 2025-01-01)
- [ ] Add login form (Depends on: task-1) (Priority: 2)
  - Form validates email
  - Errors are shown inline
- [ ] Wire session storage (Depends on: task-2)
- [~] Write onboarding docs
- [ ] Add payment page (Priority: 5) (Blocked by: task-9)
"""


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def state():
    return parse_manifest(SAMPLE_MANIFEST)


# =============================================================================
# Tokenizer
# =============================================================================

class TestTokenizer:
    """Tests for tagged line classification."""

    def test_heading(self):
        line = tag_line("## Tech Stack")
        assert line.kind == LineKind.HEADING
        assert line.level == 2
        assert line.text == "Tech Stack"

    def test_checkbox_marks(self):
        assert tag_line("- [ ] todo").mark == " "
        assert tag_line("- [x] done").mark == "x"
        assert tag_line("* [~] doing").mark == "~"

    def test_indented_bullet(self):
        line = tag_line("    - nested")
        assert line.kind == LineKind.BULLET
        assert line.indent == 4
        assert line.text == "nested"

    def test_blank_and_text(self):
        lines = tokenize("plain words\n\n")
        assert [l.kind for l in lines] == [LineKind.TEXT, LineKind.BLANK]
        assert lines[0].number == 1


# =============================================================================
# Parsing
# =============================================================================

class TestParseManifest:
    """Tests for parse_manifest."""

    def test_title_and_items(self, state):
        assert state.title == "Checkout Flow"
        assert [item.id for item in state.items] == ["task-1", "task-2", "task-3", "task-4", "task-5"]

    def test_annotations_are_stripped_from_titles(self, state):
        item = state.require("task-2")
        assert item.title == "Add login form"
        assert item.dependencies == ["task-1"]
        assert item.priority == 2

    def test_acceptance_criteria(self, state):
        assert state.require("task-2").acceptance_criteria == [
            "Form validates email",
            "Errors are shown inline",
        ]

    def test_statuses(self, state):
        assert state.require("task-1").status == ItemStatus.COMPLETE
        assert state.require("task-1").completed_at == "2025-01-01"
        assert state.require("task-2").status == ItemStatus.PENDING
        assert state.require("task-3").status == ItemStatus.BLOCKED
        assert state.require("task-4").status == ItemStatus.IN_PROGRESS

    def test_unknown_dependency_blocks(self, state):
        assert state.require("task-5").status == ItemStatus.BLOCKED
        assert state.unresolved_dependencies(state.require("task-5")) == ["task-9"]

    def test_stats(self, state):
        assert state.stats.total == 5
        assert state.stats.completed == 1
        assert state.stats.pending == 1
        assert state.stats.blocked == 2
        assert state.stats.in_progress == 1
        assert state.stats.percentage == pytest.approx(20.0)

    def test_checked_item_without_date_gets_today(self):
        state = parse_manifest("- [x] Done already\n")
        today = datetime.now(timezone.utc).date().isoformat()
        assert state.items[0].completed_at == today

    def test_malformed_lines_are_skipped(self):
        state = parse_manifest("- [ ]\nrandom text\n- [?] weird\n- [ ] Real item\n")
        assert [item.title for item in state.items] == ["Real item"]

    def test_empty_manifest(self):
        state = parse_manifest("")
        assert state.items == []
        assert state.stats.total == 0


class TestSerializeManifest:
    """Tests for serialize_manifest."""

    def test_round_trip_keeps_recognized_items(self, state):
        reparsed = parse_manifest(serialize_manifest(state))
        assert [i.to_dict() for i in reparsed.items] == [i.to_dict() for i in state.items]
        assert reparsed.title == state.title

    def test_round_trip_is_stable(self, state):
        once = serialize_manifest(state)
        twice = serialize_manifest(parse_manifest(once))
        assert once == twice

    @pytest.mark.parametrize(
        "text",
        [
            "- [ ] Login form\n  - Validates email\n\n  - Shows errors inline\n- [ ] Logout\n",
            "# Tasks\n\n- [X] Shipped without a date\n- [ ] Next (Depends on: task-1)\n",
            "- [ ] Tune cache (Priority: high)\n- [ ] Add metrics (Priority: 3)\n",
            "- [ ] Before the heading\n  - criterion\n# Late Title\n  - orphaned bullet\n- [ ] After the heading\n",
            "- [ ] Waits forever (Depends on: task-9, task-1)\n- [x] Done (Completed: 2025-03-04T10:00:00+00:00)\n",
        ],
        ids=["blank-between-criteria", "checked-without-date", "non-numeric-priority", "heading-after-items", "unknown-dependency"],
    )
    def test_parse_serialize_parse(self, text):
        first = parse_manifest(text)
        second = parse_manifest(serialize_manifest(first))

        assert second.title == first.title
        assert [i.to_dict() for i in second.items] == [i.to_dict() for i in first.items]
        assert (second.stats.completed, second.stats.pending, second.stats.blocked) == (
            first.stats.completed, first.stats.pending, first.stats.blocked
        )

    def test_blocked_items_are_written_unchecked(self, state):
        text = serialize_manifest(state)
        assert "- [ ] Wire session storage (Depends on: task-2)" in text
        assert "- [~] Write onboarding docs" in text
        assert "- [x] Set up project skeleton (Completed: 2025-01-01)" in text


# =============================================================================
# Operations
# =============================================================================

class TestNextReady:
    """Tests for item selection."""

    def test_completed_then_pending(self):
        state = parse_manifest("- [x] A (Completed: 2025-01-01)\n- [ ] B\n")
        assert next_ready(state).title == "B"

    def test_highest_priority_wins(self):
        state = parse_manifest("- [ ] Low\n- [ ] High (Priority: 3)\n- [ ] Also high (Priority: 3)\n")
        assert next_ready(state).title == "High"

    def test_manifest_order_without_priorities(self):
        state = parse_manifest("- [ ] First\n- [ ] Second\n")
        assert next_ready(state).title == "First"

    def test_dependencies_must_be_complete(self, state):
        assert next_ready(state).id == "task-2"

    def test_exclude(self):
        state = parse_manifest("- [ ] First\n- [ ] Second\n")
        assert next_ready(state, exclude={"task-1"}).title == "Second"

    def test_nothing_ready(self):
        state = parse_manifest("- [x] Done (Completed: 2025-01-01)\n- [ ] Waiting (Depends on: task-7)\n")
        assert next_ready(state) is None


class TestCompleteItem:
    """Tests for complete_item."""

    def test_counts_update(self):
        state = parse_manifest("- [x] A (Completed: 2025-01-01)\n- [ ] B\n")
        assert state.stats.pending == 1
        assert state.stats.completed == 1

        item_b = next_ready(state)
        new_state = complete_item(state, item_b.id)

        assert new_state.stats.pending == 0
        assert new_state.stats.completed == 2
        # Original is untouched
        assert state.stats.completed == 1

    def test_sets_timestamp(self):
        state = parse_manifest("- [ ] A\n")
        now = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)
        new_state = complete_item(state, "task-1", now=now)
        assert new_state.require("task-1").completed_at == now.isoformat()

    def test_unblocks_dependents(self):
        state = parse_manifest("- [ ] A\n- [ ] B (Depends on: task-1)\n")
        assert state.require("task-2").status == ItemStatus.BLOCKED

        new_state = complete_item(state, "task-1")
        assert new_state.require("task-2").status == ItemStatus.PENDING
        assert next_ready(new_state).id == "task-2"

    def test_unknown_id_raises(self):
        state = parse_manifest("- [ ] A\n")
        with pytest.raises(NotFoundError) as exc_info:
            complete_item(state, "task-42")
        assert exc_info.value.item_id == "task-42"


class TestStartAndRelease:
    """Tests for in_progress transitions."""

    def test_start_then_release(self):
        state = parse_manifest("- [ ] A\n")
        started = start_item(state, "task-1")
        assert started.require("task-1").status == ItemStatus.IN_PROGRESS
        assert started.stats.in_progress == 1

        released = release_item(started, "task-1")
        assert released.require("task-1").status == ItemStatus.PENDING

    def test_start_requires_pending(self):
        state = parse_manifest("- [x] A (Completed: 2025-01-01)\n")
        with pytest.raises(ValueError):
            start_item(state, "task-1")


# =============================================================================
# File wrapper
# =============================================================================

class TestTaskRegistry:
    """Tests for the TaskRegistry file wrapper."""

    def test_missing_file_is_empty(self, temp_project):
        registry = TaskRegistry(temp_project / "TASKS.md")
        assert not registry.exists()
        assert registry.load().items == []

    def test_load_complete_save(self, temp_project):
        path = temp_project / "TASKS.md"
        path.write_text("# Tasks\n\n- [ ] A\n- [ ] B (Depends on: task-1)\n")

        registry = TaskRegistry(path)
        registry.load()
        registry.complete("task-1")
        registry.save()

        reloaded = TaskRegistry(path)
        reloaded.load()
        assert reloaded.get("task-1").is_complete
        assert reloaded.next_ready().id == "task-2"

    def test_release_stale(self, temp_project):
        path = temp_project / "TASKS.md"
        path.write_text("- [~] Interrupted\n- [ ] Other\n")

        registry = TaskRegistry(path)
        registry.load()
        assert registry.release_stale() == ["task-1"]
        assert registry.get("task-1").status == ItemStatus.PENDING

    def test_save_failure_raises_persistence_error(self, temp_project):
        # A directory where the file should be makes the write fail
        path = temp_project / "TASKS.md"
        path.mkdir()

        registry = TaskRegistry(path)
        with pytest.raises(PersistenceError):
            registry.save()

    def test_interrupted_save_keeps_previous_manifest(self, temp_project, monkeypatch):
        path = temp_project / "TASKS.md"
        path.write_text("# Tasks\n\n- [ ] A\n")
        registry = TaskRegistry(path)
        registry.load()
        registry.complete("task-1")

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)
        with pytest.raises(PersistenceError):
            registry.save()

        assert path.read_text() == "# Tasks\n\n- [ ] A\n"
        assert not (temp_project / "TASKS.md.tmp").exists()
