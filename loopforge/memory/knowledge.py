"""
Knowledge Document
==================

Layer 2 of the memory store: the mutable, human-editable knowledge file
(AGENTS.md by default) that carries what earlier iterations learned.

Recognized sections:

    ## Tech Stack                  - key: value
    ## Key Patterns                ### Category / - pattern
    ## Common Mistakes to Avoid    - description (seen 3x)
    ## Decision Log                - [2025-01-15] decision
    ## Recent Learnings (date)     - learning

Any other section is kept verbatim and written back after the recognized
ones. Inside a recognized section, prose and sub-headings that are not entries
are kept as that section's notes and written back under its heading, and
unrecognized detail lines under a mistake stay with that mistake.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from loopforge.markdown_lines import Line, LineKind, tokenize

DEFAULT_TITLE = "AGENTS.md - Accumulated Knowledge"
GENERAL_CATEGORY = "General"

_SEEN_RE = re.compile(r"\s*\(seen (\d+)x\)\s*$", re.IGNORECASE)
_DECISION_RE = re.compile(r"^\[(\d{4}-\d{2}-\d{2})\]\s*(.+)$")
_LEARNINGS_HEADING_RE = re.compile(r"\blearnings?\b", re.IGNORECASE)
_LEARNINGS_LABEL_RE = re.compile(r"^[*_]*\s*learnings?\s*:?\s*[*_]*\s*:?$", re.IGNORECASE)
_NUMBERED_RE = re.compile(r"^\d+[.)]\s+(.+)$")


@dataclass
class Mistake:
    description: str
    occurrences: int = 1
    reason: Optional[str] = None
    correction: Optional[str] = None
    details: list[str] = field(default_factory=list)


@dataclass
class Decision:
    text: str
    date: Optional[str] = None  # YYYY-MM-DD


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _section_key(heading: str) -> Optional[str]:
    name = heading.strip().lower()
    if name == "tech stack":
        return "tech_stack"
    if name in ("key patterns", "patterns"):
        return "patterns"
    if name in ("common mistakes to avoid", "common mistakes"):
        return "mistakes"
    if name == "decision log":
        return "decisions"
    if name.startswith("recent learnings"):
        return "learnings"
    return None


@dataclass
class KnowledgeDocument:
    """Structured view of the knowledge file."""
    title: str = DEFAULT_TITLE
    preamble: list[str] = field(default_factory=list)
    tech_stack: dict[str, str] = field(default_factory=dict)
    patterns: dict[str, list[str]] = field(default_factory=dict)
    mistakes: list[Mistake] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    learnings: list[str] = field(default_factory=list)
    learnings_updated: Optional[str] = None
    # section -> (entries before the note, raw line)
    notes: dict[str, list[tuple[int, str]]] = field(default_factory=dict)
    extra_sections: list[str] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_learning(self, learning: str, max_items: Optional[int] = None) -> bool:
        """
        Prepend a learning. Duplicates (case-insensitive) are ignored.

        Returns:
            True if the learning was added.
        """
        text = learning.strip().lstrip("-*").strip()
        if not text:
            return False
        if text.lower() in (existing.lower() for existing in self.learnings):
            return False

        self.learnings.insert(0, text)
        if max_items is not None and max_items > 0:
            del self.learnings[max_items:]
        self.learnings_updated = _today()
        return True

    def record_mistake(
        self,
        description: str,
        reason: Optional[str] = None,
        correction: Optional[str] = None,
    ) -> Mistake:
        """Record a mistake, bumping its count if it was seen before."""
        for mistake in self.mistakes:
            if mistake.description.lower() == description.strip().lower():
                mistake.occurrences += 1
                if reason and not mistake.reason:
                    mistake.reason = reason
                if correction and not mistake.correction:
                    mistake.correction = correction
                return mistake

        mistake = Mistake(description.strip(), 1, reason, correction)
        self.mistakes.append(mistake)
        return mistake

    def add_pattern(self, category: str, pattern: str) -> None:
        bucket = self.patterns.setdefault(category.strip() or GENERAL_CATEGORY, [])
        if pattern.strip() and pattern.strip() not in bucket:
            bucket.append(pattern.strip())

    def add_decision(self, text: str, date: Optional[str] = None) -> Decision:
        """Log a decision. Newest first."""
        decision = Decision(text.strip(), date or _today())
        self.decisions.insert(0, decision)
        return decision


# =============================================================================
# Parsing
# =============================================================================

def _parse_tech(doc: KnowledgeDocument, line: Line) -> None:
    text = line.text.replace("**", "")
    if ":" in text:
        key, value = text.split(":", 1)
        doc.tech_stack[key.strip()] = value.strip()
    else:
        doc.tech_stack[text.strip()] = ""


def _parse_mistake_detail(mistake: Mistake, line: Line) -> None:
    lowered = line.text.lower()
    if lowered.startswith("why:"):
        mistake.reason = line.text[4:].strip()
    elif lowered.startswith("instead:"):
        mistake.correction = line.text[8:].strip()
    else:
        mistake.details.append(line.raw)


def _parse_mistake(doc: KnowledgeDocument, line: Line) -> None:
    occurrences = 1
    text = line.text
    match = _SEEN_RE.search(text)
    if match:
        occurrences = max(1, int(match.group(1)))
        text = text[:match.start()]
    doc.mistakes.append(Mistake(text.strip(), occurrences))


def _parse_decision(doc: KnowledgeDocument, line: Line) -> None:
    match = _DECISION_RE.match(line.text)
    if match:
        doc.decisions.append(Decision(match.group(2).strip(), match.group(1)))
    else:
        doc.decisions.append(Decision(line.text.strip()))


def _entry_count(doc: KnowledgeDocument, section: str) -> int:
    entries = {
        "tech_stack": doc.tech_stack,
        "patterns": doc.patterns,
        "mistakes": doc.mistakes,
        "decisions": doc.decisions,
        "learnings": doc.learnings,
    }
    return len(entries[section])


def _keep_note(doc: KnowledgeDocument, section: str, line: Line) -> None:
    position = _entry_count(doc, section)
    if line.is_blank:
        notes = doc.notes.get(section)
        if notes and notes[-1][1]:
            notes.append((position, ""))
        return
    doc.notes.setdefault(section, []).append((position, line.raw))


def parse_knowledge(text: str) -> KnowledgeDocument:
    """Parse knowledge-file text. Never fails; unknown sections become opaque text."""
    doc = KnowledgeDocument()
    title_seen = False
    section: Optional[str] = "preamble"
    category = GENERAL_CATEGORY
    opaque: Optional[list[str]] = None

    def flush_opaque() -> None:
        if opaque is not None:
            block = "\n".join(opaque).strip("\n")
            if block:
                doc.extra_sections.append(block)

    for line in tokenize(text):
        if line.kind == LineKind.HEADING and line.level == 1 and not title_seen and section == "preamble":
            doc.title = line.text
            title_seen = True
            continue

        if line.kind == LineKind.HEADING and line.level <= 2:
            flush_opaque()
            opaque = None
            section = _section_key(line.text)
            category = GENERAL_CATEGORY
            if section is None:
                opaque = [line.raw]
            elif section == "learnings":
                match = re.search(r"\(([^)]*)\)", line.text)
                if match:
                    doc.learnings_updated = match.group(1).strip() or None
            continue

        if section is None:
            opaque.append(line.raw)
            continue

        if section == "preamble":
            if not line.is_blank or doc.preamble:
                doc.preamble.append(line.raw)
            continue

        if line.kind == LineKind.HEADING and section == "patterns":
            category = line.text
            doc.patterns.setdefault(category, [])
            continue

        if section == "mistakes" and doc.mistakes and line.raw[:1].isspace() and not line.is_blank:
            _parse_mistake_detail(doc.mistakes[-1], line)
            continue

        if line.kind not in (LineKind.BULLET, LineKind.CHECKBOX):
            _keep_note(doc, section, line)
            continue

        if section == "tech_stack":
            _parse_tech(doc, line)
        elif section == "patterns":
            doc.patterns.setdefault(category, []).append(line.text)
        elif section == "mistakes":
            _parse_mistake(doc, line)
        elif section == "decisions":
            _parse_decision(doc, line)
        elif section == "learnings":
            doc.learnings.append(line.text)

    flush_opaque()

    while doc.preamble and not doc.preamble[-1].strip():
        doc.preamble.pop()
    return doc


# =============================================================================
# Rendering
# =============================================================================

def _trim_blank(lines: list[str]) -> list[str]:
    while lines and not lines[0].strip():
        lines = lines[1:]
    while lines and not lines[-1].strip():
        lines = lines[:-1]
    return lines


def _interleave(doc: KnowledgeDocument, section: str, blocks: list[list[str]]) -> list[str]:
    """Entry blocks with the section's notes put back where they were found."""
    groups: dict[int, list[str]] = {}
    for position, raw in doc.notes.get(section, []):
        groups.setdefault(min(position, len(blocks)), []).append(raw)

    out: list[str] = []
    for i in range(len(blocks) + 1):
        group = _trim_blank(groups.get(i, []))
        if group:
            if out and out[-1]:
                out.append("")
            out.extend(group)
            if i < len(blocks) and blocks[i][:1] != [""]:
                out.append("")
        if i < len(blocks):
            out.extend(blocks[i])
    return out


def _has_content(doc: KnowledgeDocument, section: str, entries) -> bool:
    return bool(entries) or any(raw.strip() for _, raw in doc.notes.get(section, []))


def render_knowledge(doc: KnowledgeDocument) -> str:
    """Render a knowledge document back to text."""
    out = [f"# {doc.title}", ""]
    if doc.preamble:
        out.extend(doc.preamble)
        out.append("")

    out.append("## Tech Stack")
    out.extend(_interleave(doc, "tech_stack", [
        [f"- {key}: {value}" if value else f"- {key}"]
        for key, value in doc.tech_stack.items()
    ]))
    out.append("")

    out.append("## Key Patterns")
    out.extend(_interleave(doc, "patterns", [
        ["", f"### {category}"] + [f"- {pattern}" for pattern in patterns]
        for category, patterns in doc.patterns.items()
    ]))
    out.append("")

    if _has_content(doc, "mistakes", doc.mistakes):
        blocks = []
        for mistake in doc.mistakes:
            suffix = f" (seen {mistake.occurrences}x)" if mistake.occurrences > 1 else ""
            block = [f"- {mistake.description}{suffix}"]
            if mistake.reason:
                block.append(f"  - Why: {mistake.reason}")
            if mistake.correction:
                block.append(f"  - Instead: {mistake.correction}")
            blocks.append(block + mistake.details)
        out.append("## Common Mistakes to Avoid")
        out.extend(_interleave(doc, "mistakes", blocks))
        out.append("")

    if _has_content(doc, "decisions", doc.decisions):
        out.append("## Decision Log")
        out.extend(_interleave(doc, "decisions", [
            [f"- [{decision.date}] {decision.text}" if decision.date else f"- {decision.text}"]
            for decision in doc.decisions
        ]))
        out.append("")

    if _has_content(doc, "learnings", doc.learnings):
        out.append(f"## Recent Learnings ({doc.learnings_updated or _today()})")
        out.extend(_interleave(doc, "learnings", [[f"- {learning}"] for learning in doc.learnings]))
        out.append("")

    for block in doc.extra_sections:
        out.append(block)
        out.append("")

    return "\n".join(out).rstrip("\n") + "\n"


# =============================================================================
# Mining
# =============================================================================

def extract_learnings(output: str) -> list[str]:
    """
    Pull learnings out of worker output.

    Looks for a heading (or a bare ``Learnings:`` label) mentioning learnings
    and collects the list items that follow it.
    """
    learnings: list[str] = []
    collecting = False
    started = False

    for line in tokenize(output):
        is_label = line.kind == LineKind.TEXT and _LEARNINGS_LABEL_RE.match(line.text)
        if (line.kind == LineKind.HEADING and _LEARNINGS_HEADING_RE.search(line.text)) or is_label:
            collecting, started = True, False
            continue

        if not collecting:
            continue

        if line.kind == LineKind.HEADING:
            collecting = False
            continue

        if line.kind in (LineKind.BULLET, LineKind.CHECKBOX):
            text = line.text.strip()
        elif line.kind == LineKind.TEXT and _NUMBERED_RE.match(line.text):
            text = _NUMBERED_RE.match(line.text).group(1).strip()
        elif line.is_blank:
            continue
        else:
            if started:
                collecting = False
            continue

        started = True
        if text and text not in learnings:
            learnings.append(text)

    return learnings
