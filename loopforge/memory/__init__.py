"""
Memory Module - Layered Memory
==============================

Stands in for retained conversation history across isolated iterations.

1. **Git log** - read-only window over recent commits and their lessons
2. **Knowledge document** - mutable notes the loop curates (AGENTS.md)
3. **Task registry** - live task state

Usage:
    from loopforge.memory import MemoryStore

    memory = MemoryStore(project_dir, "AGENTS.md")
    knowledge = memory.load_knowledge()

    # Bounded summary of all three layers for the next prompt
    context = memory.build_context(registry.state, knowledge)

    memory.save_knowledge(knowledge)
"""

import logging
from pathlib import Path
from typing import Optional

from loopforge.exceptions import PersistenceError
from loopforge.markdown_lines import write_text_atomic
from loopforge.memory.git_log import Commit, GitLog, Lesson, extract_lessons, parse_git_log
from loopforge.memory.knowledge import (
    Decision,
    KnowledgeDocument,
    Mistake,
    extract_learnings,
    parse_knowledge,
    render_knowledge,
)
from loopforge.task_registry import RegistryState

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 4000
CONTEXT_LEARNINGS = 5
CONTEXT_COMMITS = 5
CONTEXT_MISTAKES = 5
CONTEXT_LESSONS = 3


class MemoryStore:
    """Composes the three memory layers for prompt building."""

    def __init__(
        self,
        project_dir: Path,
        knowledge_path: str = "AGENTS.md",
        git_log: Optional[GitLog] = None,
        commit_window: int = 10,
        max_chars: int = DEFAULT_MAX_CHARS,
    ):
        self.project_dir = Path(project_dir)
        self.knowledge_path = self.project_dir / knowledge_path
        self.git_log = git_log or GitLog(self.project_dir)
        self.commit_window = commit_window
        self.max_chars = max_chars

    # -------------------------------------------------------------------------
    # Layer 2 persistence
    # -------------------------------------------------------------------------

    def load_knowledge(self) -> KnowledgeDocument:
        """Load the knowledge document, or start an empty one."""
        if not self.knowledge_path.exists():
            logger.info("No knowledge document at %s, starting fresh", self.knowledge_path)
            return KnowledgeDocument()
        return parse_knowledge(self.knowledge_path.read_text(encoding="utf-8"))

    def save_knowledge(self, doc: KnowledgeDocument) -> None:
        try:
            write_text_atomic(self.knowledge_path, render_knowledge(doc))
        except OSError as e:
            raise PersistenceError(str(self.knowledge_path), e) from e

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    def build_context(self, registry: RegistryState, knowledge: KnowledgeDocument) -> str:
        """
        Summarize all three layers, most important first, within ``max_chars``.

        Sections that do not fit are dropped; the one straddling the limit is
        cut short.
        """
        commits = self.git_log.recent_commits(self.commit_window)
        stats = registry.stats

        sections: list[str] = [
            f"Tasks: {stats.completed}/{stats.total} complete, {stats.pending} pending, "
            f"{stats.in_progress} in progress, {stats.blocked} blocked",
        ]

        if knowledge.tech_stack:
            stack = ", ".join(f"{k}={v}" if v else k for k, v in knowledge.tech_stack.items())
            sections.append(f"Tech stack: {stack}")

        if knowledge.mistakes:
            ranked = sorted(knowledge.mistakes, key=lambda m: m.occurrences, reverse=True)
            items = [
                f"{m.description} (seen {m.occurrences}x)" if m.occurrences > 1 else m.description
                for m in ranked[:CONTEXT_MISTAKES]
            ]
            sections.append(f"Avoid: {'; '.join(items)}")

        if knowledge.learnings:
            sections.append(f"Recent learnings: {'; '.join(knowledge.learnings[:CONTEXT_LEARNINGS])}")

        lessons = extract_lessons(commits)
        if lessons:
            sections.append(f"Lessons from history: {'; '.join(l.text for l in lessons[:CONTEXT_LESSONS])}")

        if commits:
            lines = [f"- {c.hash} {c.subject}" for c in commits[:CONTEXT_COMMITS]]
            sections.append("Recent commits:\n" + "\n".join(lines))

        return self._bounded(sections)

    def _bounded(self, sections: list[str]) -> str:
        out: list[str] = []
        used = 0
        for section in sections:
            cost = len(section) + (1 if out else 0)
            if used + cost <= self.max_chars:
                out.append(section)
                used += cost
                continue
            room = self.max_chars - used - (1 if out else 0) - 3
            if room > 20:
                out.append(section[:room] + "...")
            break
        return "\n".join(out)


__all__ = [
    "MemoryStore",
    "GitLog",
    "Commit",
    "Lesson",
    "parse_git_log",
    "extract_lessons",
    "KnowledgeDocument",
    "Mistake",
    "Decision",
    "parse_knowledge",
    "render_knowledge",
    "extract_learnings",
]
