"""
Quality Gates
=============

External pass/fail checks (type check, tests, lint, build) that must all pass
before a work item counts as done. Each gate is a shell command with a
timeout. A gate that times out or cannot be launched fails; it never raises.
"""

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from loopforge.exceptions import GateFailure

logger = logging.getLogger(__name__)

OUTPUT_LIMIT = 4000


@dataclass
class GateResult:
    name: str
    passed: bool
    output: str = ""
    duration_ms: int = 0
    timed_out: bool = False


@dataclass
class GateReport:
    """Outcome of running every configured gate once."""
    results: list[GateResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failed_gates(self) -> list[str]:
        return [r.name for r in self.results if not r.passed]

    def failure_summary(self, snippet_chars: int = 200) -> str:
        """One line per failing gate with the tail of its output."""
        lines = []
        for result in self.results:
            if result.passed:
                continue
            tail = " ".join(result.output.strip().split())[-snippet_chars:]
            lines.append(f"{result.name}: {tail}" if tail else result.name)
        return "; ".join(lines)

    def raise_for_failure(self) -> None:
        """
        Raises:
            GateFailure: naming every gate that failed.
        """
        if not self.passed:
            raise GateFailure(self.failed_gates, self.failure_summary())


def _truncate(text: str, limit: int = OUTPUT_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return "... (truncated)\n" + text[-limit:]


def _run_gate_sync(name: str, command: str, timeout: float, cwd: Optional[Path]) -> GateResult:
    start = time.monotonic()
    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.warning("Gate %s timed out after %ss", name, timeout)
        return GateResult(name, False, f"timed out after {timeout}s", elapsed, timed_out=True)
    except OSError as e:
        elapsed = int((time.monotonic() - start) * 1000)
        return GateResult(name, False, f"could not run: {e}", elapsed)

    elapsed = int((time.monotonic() - start) * 1000)
    output = _truncate((result.stdout or "") + (result.stderr or ""))
    return GateResult(name, result.returncode == 0, output, elapsed)


async def run_gate(name: str, command: str, timeout: float, cwd: Optional[Path] = None) -> GateResult:
    """Run one gate in a worker thread so the event loop stays free."""
    return await asyncio.to_thread(_run_gate_sync, name, command, timeout, cwd)


class QualityGateRunner:
    """Runs the configured gates in order."""

    def __init__(self, gates: Mapping[str, str], cwd: Optional[Path] = None, timeout: float = 300.0):
        self.gates = dict(gates)
        self.cwd = cwd
        self.timeout = timeout

    async def run_all(self) -> GateReport:
        """Run every gate, even after one fails, so the report is complete."""
        report = GateReport()
        for name, command in self.gates.items():
            result = await run_gate(name, command, self.timeout, self.cwd)
            logger.debug("Gate %s: %s (%dms)", name, "pass" if result.passed else "fail", result.duration_ms)
            report.results.append(result)
        return report
