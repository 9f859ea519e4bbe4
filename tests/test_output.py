"""
Tests for Console Output
========================

Gate output and item titles are printed verbatim, even when they contain
square brackets that look like Rich markup.
"""

import pytest

from loopforge.output import (
    console,
    print_error,
    print_info,
    print_iteration_header,
    print_key_value_table,
    print_list,
    print_muted,
    print_state,
    print_status_halted,
    print_success,
    print_warning,
)
from loopforge.progress import print_task_table
from loopforge.task_registry import parse_manifest

BRACKETED = "FAILED tests/test_api.py::test_route[/users] - assert [bold]404 == 200"


class TestMessageHelpers:
    """The basic print helpers take plain text."""

    @pytest.mark.parametrize("helper", [print_success, print_error, print_warning, print_info, print_muted])
    def test_brackets_are_printed_literally(self, helper):
        with console.capture() as capture:
            helper(BRACKETED)
        assert "test_route[/users]" in capture.get()
        assert "[bold]404" in capture.get()

    def test_state_and_header(self):
        with console.capture() as capture:
            print_state("GATES", "tests [/x]")
            print_iteration_header(1, "task-1", "Users [/users] route")
        output = capture.get()
        assert "tests [/x]" in output
        assert "Users [/users] route" in output

    def test_panels_tables_and_lists(self):
        with console.capture() as capture:
            print_status_halted("could not write [/tmp]/TASKS.md")
            print_key_value_table({"Reason": "[/oops]"}, title="Run [/summary]")
            print_list(["criterion [/a]"], numbered=True)
        output = capture.get()
        assert "[/tmp]" in output
        assert "[/oops]" in output
        assert "criterion [/a]" in output


class TestTaskTable:
    """Tests for print_task_table."""

    def test_bracketed_titles(self):
        state = parse_manifest("# Sprint [/2]\n\n- [ ] Handle [/users] route\n- [x] Ship [b]old (Completed: 2025-01-01)\n")
        with console.capture() as capture:
            print_task_table(state)
        output = capture.get()
        assert "Handle [/users] route" in output
        assert "Ship [b]old" in output
