"""
Tests for prompt building.
"""

from loopforge.config import LoopConfig, SafetyProtocols
from loopforge.prompts import (
    NO_APPROACH,
    RECOVERY_HEADER,
    build_iteration_prompt,
    extract_approach,
    format_safety,
    load_prompt,
)
from loopforge.task_registry import WorkItem


def make_item():
    return WorkItem(
        id="task-2",
        title="Add login form",
        acceptance_criteria=["Form validates email"],
    )


class TestBuildIterationPrompt:
    """Tests for the iteration prompt."""

    def test_template_loads(self):
        template = load_prompt("iteration_prompt")
        assert "{{TASK}}" in template

    def test_placeholders_filled(self):
        config = LoopConfig(quality_gates={"tests": "npm test", "lint": "npm run lint"})
        prompt = build_iteration_prompt(make_item(), "# Knowledge\n- note", "Tasks: 1/2 complete", config)

        assert "{{" not in prompt
        assert "Add login form" in prompt
        assert "task-2" in prompt
        assert "- Form validates email" in prompt
        assert "Tasks: 1/2 complete" in prompt
        assert "tests, lint" in prompt
        assert RECOVERY_HEADER.strip() not in prompt

    def test_recovery_block(self):
        prompt = build_iteration_prompt(
            make_item(), "", "", LoopConfig(), recovery="Task: Add login form\n\nConstraints ..."
        )
        assert RECOVERY_HEADER.strip() in prompt
        assert "Constraints ..." in prompt

    def test_safety(self):
        config = LoopConfig(safety=SafetyProtocols(exclude_paths=[".env"], allow_breaking_changes=True, require_tests=False))
        assert format_safety(config) == "- Never read or modify: .env"

        config = LoopConfig(safety=SafetyProtocols(exclude_paths=[], allow_breaking_changes=True, require_tests=False))
        assert format_safety(config) == "- No additional restrictions"


class TestExtractApproach:
    """Tests for extract_approach."""

    def test_approach_section(self):
        output = "Intro line\n\n## Approach\nMoved validation into a server action.\nAdded zod schema.\n\n## Learnings\n- x\n"
        assert extract_approach(output) == "Moved validation into a server action. Added zod schema."

    def test_first_paragraph_fallback(self):
        output = "I rewrote the session store\nusing cookies.\n\nMore text later."
        assert extract_approach(output) == "I rewrote the session store using cookies."

    def test_nothing(self):
        assert extract_approach("") == NO_APPROACH
        assert extract_approach("- just\n- bullets\n") == NO_APPROACH

    def test_clipped(self):
        approach = extract_approach("## Approach\n" + "word " * 200)
        assert len(approach) <= 300
        assert approach.endswith("...")
