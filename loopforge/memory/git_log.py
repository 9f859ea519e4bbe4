"""
Git Log Window
==============

Layer 1 of the memory store: a read-only view over recent commits.

Commit bodies can carry explicit lessons for later iterations:

    Fix token refresh race

    Learning: refresh must be serialized behind a single in-flight request
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

RECORD_SEP = "\x1e"
FIELD_SEP = "\x1f"
GIT_LOG_FORMAT = f"{RECORD_SEP}%h{FIELD_SEP}%cI{FIELD_SEP}%s{FIELD_SEP}%b"

_LESSON_RE = re.compile(r"^\s*[-*]?\s*(?:learning|lesson)s?\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)


@dataclass
class Commit:
    hash: str
    subject: str
    body: str = ""
    date: str = ""

    @property
    def message(self) -> str:
        return f"{self.subject}\n{self.body}".strip()


@dataclass
class Lesson:
    commit_hash: str
    text: str


def parse_git_log(output: str) -> list[Commit]:
    """Parse output produced with ``GIT_LOG_FORMAT``."""
    commits = []
    for record in output.split(RECORD_SEP):
        if not record.strip():
            continue
        parts = record.split(FIELD_SEP, 3)
        if len(parts) < 3:
            logger.debug("Skipping malformed git log record: %r", record[:80])
            continue
        commit_hash, date, subject = parts[0].strip(), parts[1].strip(), parts[2].strip()
        body = parts[3].strip() if len(parts) > 3 else ""
        commits.append(Commit(hash=commit_hash, subject=subject, body=body, date=date))
    return commits


def extract_lessons(commits: list[Commit]) -> list[Lesson]:
    """Mine ``Learning:`` / ``Lesson:`` lines from commit messages."""
    lessons = []
    seen: set[str] = set()
    for commit in commits:
        for match in _LESSON_RE.finditer(commit.message):
            text = match.group(1)
            if text.lower() in seen:
                continue
            seen.add(text.lower())
            lessons.append(Lesson(commit.hash, text))
    return lessons


class GitLog:
    """Read-only access to a repository's history."""

    def __init__(self, repo_dir: Path, timeout: float = 10):
        self.repo_dir = Path(repo_dir)
        self.timeout = timeout

    def _run(self, args: list[str]) -> Optional[str]:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("git %s timed out after %ss", args[0], self.timeout)
            return None
        except OSError as e:
            logger.debug("git unavailable: %s", e)
            return None

        if result.returncode != 0:
            logger.debug("git %s failed: %s", args[0], result.stderr.strip())
            return None
        return result.stdout

    def recent_commits(self, n: int = 10) -> list[Commit]:
        """Most recent ``n`` commits, newest first. Empty outside a repository."""
        if n <= 0:
            return []
        output = self._run(["log", f"-n{n}", f"--format={GIT_LOG_FORMAT}"])
        return parse_git_log(output) if output else []

    def search(self, query: str, n: int = 100) -> list[Commit]:
        """Commits among the last ``n`` whose message mentions ``query``."""
        needle = query.lower()
        return [c for c in self.recent_commits(n) if needle in c.message.lower()]

    def lessons(self, n: int = 50) -> list[Lesson]:
        return extract_lessons(self.recent_commits(n))
