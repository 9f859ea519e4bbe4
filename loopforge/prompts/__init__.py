"""
Prompt Loading Utilities
========================

Builds the worker prompt for one iteration from the packaged template.
"""

import re
from importlib import resources
from typing import Optional

from loopforge.config import LoopConfig
from loopforge.markdown_lines import LineKind, tokenize
from loopforge.task_registry import WorkItem

PROMPTS_PACKAGE = "loopforge.prompts"
NO_APPROACH = "No approach described"
APPROACH_LIMIT = 300
RECOVERY_HEADER = "### RECOVERY FRAME\n\nEarlier attempts at this task got stuck. Start over from this reframing:\n\n"


def load_prompt(name: str) -> str:
    """Load a prompt template (without the .md extension) from this package."""
    return (resources.files(PROMPTS_PACKAGE) / f"{name}.md").read_text(encoding="utf-8")


def format_safety(config: LoopConfig) -> str:
    safety = config.safety
    lines = []
    if safety.exclude_paths:
        lines.append(f"- Never read or modify: {', '.join(safety.exclude_paths)}")
    if not safety.allow_breaking_changes:
        lines.append("- Do not make breaking changes to public interfaces")
    if safety.require_tests:
        lines.append("- New behavior must come with tests")
    return "\n".join(lines) or "- No additional restrictions"


def build_iteration_prompt(
    item: WorkItem,
    knowledge: str,
    memory_context: str,
    config: LoopConfig,
    recovery: Optional[str] = None,
) -> str:
    """
    Fill the iteration template.

    Args:
        item: The work item for this iteration
        knowledge: Rendered knowledge document
        memory_context: Bounded summary from the memory store
        config: Loop configuration (gates, safety protocols)
        recovery: Formatted recovery frame when reframing a stuck item
    """
    criteria = "\n".join(f"- {c}" for c in item.acceptance_criteria) or "- The task is implemented and all quality gates pass"
    gates = ", ".join(config.quality_gates) or "none configured"

    substitutions = {
        "{{ITEM_ID}}": item.id,
        "{{TASK}}": item.title,
        "{{ACCEPTANCE_CRITERIA}}": criteria,
        "{{KNOWLEDGE}}": knowledge.strip() or "(empty)",
        "{{MEMORY_CONTEXT}}": memory_context.strip() or "(empty)",
        "{{RECOVERY}}": f"\n{RECOVERY_HEADER}{recovery.strip()}\n" if recovery else "",
        "{{GATES}}": gates,
        "{{SAFETY}}": format_safety(config),
    }

    prompt = load_prompt("iteration_prompt")
    for placeholder, value in substitutions.items():
        prompt = prompt.replace(placeholder, value)
    return prompt


def _clip(text: str, limit: int = APPROACH_LIMIT) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit - 3].rstrip() + "..."


def extract_approach(output: str) -> str:
    """
    The worker's one-paragraph ``## Approach`` section.

    Falls back to the first paragraph of plain text when the section is
    missing.
    """
    lines = tokenize(output)

    collected: list[str] = []
    in_section = False
    for line in lines:
        if line.kind == LineKind.HEADING:
            if in_section:
                break
            in_section = re.fullmatch(r"approach:?", line.text.strip(), re.IGNORECASE) is not None
            continue
        if in_section and not line.is_blank:
            collected.append(line.text)
    if collected:
        return _clip(" ".join(collected))

    paragraph: list[str] = []
    for line in lines:
        if line.kind == LineKind.TEXT:
            paragraph.append(line.text)
        elif paragraph:
            break
    return _clip(" ".join(paragraph)) if paragraph else NO_APPROACH
