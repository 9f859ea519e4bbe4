"""
Tagged Line Tokenizer
=====================

Splits the human-editable markdown files (task manifest, knowledge document)
into tagged lines. Parsers walk the tagged lines instead of matching regexes
against the whole document, and every line keeps its raw text so unrecognized
content can be written back untouched. Writes replace the file atomically.
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional


class LineKind(Enum):
    HEADING = "heading"
    CHECKBOX = "checkbox"
    BULLET = "bullet"
    BLANK = "blank"
    TEXT = "text"


_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_CHECKBOX_RE = re.compile(r"^(\s*)[-*]\s+\[([ xX~])\]\s+(.+?)\s*$")
_BULLET_RE = re.compile(r"^(\s*)[-*]\s+(.+?)\s*$")


@dataclass
class Line:
    """One tagged source line."""
    kind: LineKind
    raw: str
    number: int
    text: str = ""
    level: int = 0
    indent: int = 0
    mark: Optional[str] = None

    @property
    def is_blank(self) -> bool:
        return self.kind == LineKind.BLANK


def _indent_width(whitespace: str) -> int:
    return len(whitespace.replace("\t", "    "))


def tag_line(raw: str, number: int = 0) -> Line:
    """Classify a single line."""
    if not raw.strip():
        return Line(LineKind.BLANK, raw, number)

    match = _HEADING_RE.match(raw)
    if match:
        return Line(LineKind.HEADING, raw, number, text=match.group(2), level=len(match.group(1)))

    match = _CHECKBOX_RE.match(raw)
    if match:
        return Line(
            LineKind.CHECKBOX, raw, number,
            text=match.group(3),
            indent=_indent_width(match.group(1)),
            mark=match.group(2),
        )

    match = _BULLET_RE.match(raw)
    if match:
        return Line(LineKind.BULLET, raw, number, text=match.group(2), indent=_indent_width(match.group(1)))

    return Line(LineKind.TEXT, raw, number, text=raw.strip())


def iter_lines(text: str) -> Iterator[Line]:
    for number, raw in enumerate(text.splitlines(), 1):
        yield tag_line(raw, number)


def tokenize(text: str) -> List[Line]:
    """Tag every line of ``text``."""
    return list(iter_lines(text))


def write_text_atomic(path: Path, text: str) -> None:
    """
    Replace ``path`` with ``text`` in one step.

    The text goes to a sibling ``.tmp`` file first, so a crash mid-write
    leaves the previous version in place.

    Raises:
        OSError: the write or the rename failed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
