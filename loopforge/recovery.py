"""
Clean Slate Recovery
====================

Turns a stuck trajectory into a reframed task: what was tried, why it failed,
which approaches are now off the table, and where to look next. Also weighs
the projected cost of pushing on against starting over with the new frame.

Everything here is a pure function of a trajectory snapshot. The framed
prompt is handed back to the caller; nothing in this module talks to the
text-generation service.

Usage:
    frame = build_frame(trajectory)
    prompt = format_prompt(frame)
    if cost_comparison(trajectory).recommendation == "clean_slate":
        ...
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from loopforge.trajectory import Trajectory

NO_FAILURES = "No failures to analyze"
DEFAULT_DIRECTION = "Consider a fundamentally different approach based on the constraints"
CLOSING_REQUEST = "Please propose a new approach that respects all constraints above."

# Keyword families for root-cause classification. A family matches when every
# failure reason mentions at least one of its keywords.
ROOT_CAUSE_FAMILIES: list[tuple[tuple[str, ...], str]] = [
    (("api", "endpoint", "interface"), "Root cause: API limitation or design constraint"),
    (("type", "undefined", "schema", "mismatch"), "Root cause: Type system or data structure mismatch"),
    (("permission", "auth", "forbidden", "unauthorized"), "Root cause: Authentication or authorization issue"),
    (("timeout", "timed out"), "Root cause: Work does not fit in one iteration's time limit"),
]

# Cost model
MIN_REMAINING_ATTEMPTS = 3
BASE_SUCCESS_RATE = 50
FAILURE_PENALTY = 15
MIN_SUCCESS_RATE = 10
CLEAN_SLATE_ATTEMPTS = 2
CLEAN_SLATE_EFFICIENCY = 0.8
CLEAN_SLATE_SUCCESS_RATE = 80
TOKEN_SAVINGS_THRESHOLD = 5000
SUCCESS_IMPROVEMENT_THRESHOLD = 30

_STOPWORDS = {
    "with", "from", "into", "that", "this", "then", "than", "using", "again",
    "instead", "more", "less", "trying", "implement", "implementing", "adding",
    "update", "updating", "fixing", "change", "changing", "make", "making",
    "approach", "attempt", "work", "just", "only", "also", "some", "when",
}


@dataclass
class Constraint:
    """A negative rule learned from a failed attempt."""
    description: str
    reason: str
    discovered_from: int  # attempt number

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "reason": self.reason,
            "discovered_from": self.discovered_from,
        }


@dataclass
class RecoveryFrame:
    problem: str
    context: str
    root_cause: str
    constraints: list[Constraint] = field(default_factory=list)
    suggested_approach: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "problem": self.problem,
            "context": self.context,
            "root_cause": self.root_cause,
            "constraints": [c.to_dict() for c in self.constraints],
            "suggested_approach": self.suggested_approach,
        }


@dataclass
class ProjectedCost:
    attempts: float = 0
    tokens: float = 0
    time_ms: float = 0
    success_rate: float = 0


@dataclass
class Savings:
    tokens: float = 0
    time_ms: float = 0
    success_rate_improvement: float = 0


@dataclass
class CostComparison:
    continuing: ProjectedCost
    clean_slate: ProjectedCost
    savings: Savings
    recommendation: str  # "continue" or "clean_slate"

    def to_dict(self) -> dict:
        return {
            "continuing": vars(self.continuing).copy(),
            "clean_slate": vars(self.clean_slate).copy(),
            "savings": vars(self.savings).copy(),
            "recommendation": self.recommendation,
        }


# =============================================================================
# Constraints & Root Cause
# =============================================================================

def extract_constraints(trajectory: Trajectory) -> list[Constraint]:
    """
    One constraint per failed attempt that stated a reason.

    Constraints whose descriptions match case-insensitively are collapsed,
    keeping the first.
    """
    unique: list[Constraint] = []
    seen: set[str] = set()

    for attempt in trajectory.attempts:
        if attempt.success or not attempt.failure_reason:
            continue
        lead = " ".join(attempt.approach.split()[:3])
        constraint = Constraint(
            description=f"Cannot use {lead}".rstrip(),
            reason=attempt.failure_reason,
            discovered_from=attempt.number,
        )
        key = constraint.description.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(constraint)

    return unique


def root_cause(trajectory: Trajectory) -> str:
    """Classify why the failed attempts failed, by keyword family."""
    failures = trajectory.failed_attempts
    if not failures:
        return NO_FAILURES

    reasons = [a.failure_reason for a in failures if a.failure_reason]
    if not reasons:
        return "Root cause: Unknown, failed attempts recorded no reason"

    lowered = [r.lower() for r in reasons]
    for keywords, classification in ROOT_CAUSE_FAMILIES:
        if all(any(k in reason for k in keywords) for reason in lowered):
            return classification

    distinct: list[str] = []
    for reason in reasons:
        if reason not in distinct:
            distinct.append(reason)
    return f"Root cause: Multiple issues - {'; '.join(distinct[:2])}"


# =============================================================================
# Direction Heuristics
# =============================================================================

def _shared_mechanism(approaches: list[str]) -> Optional[str]:
    """A keyword every approach leans on, in first-approach order."""
    if len(approaches) < 2:
        return None
    word_sets = [
        {w for w in re.findall(r"[a-z][a-z0-9_-]{3,}", a)} - _STOPWORDS
        for a in approaches
    ]
    common = set.intersection(*word_sets)
    if not common:
        return None
    for word in re.findall(r"[a-z][a-z0-9_-]{3,}", approaches[0]):
        if word in common:
            return word
    return None


DirectionRule = Callable[[list[str], Trajectory], Optional[str]]


def _jwt_rule(approaches: list[str], _: Trajectory) -> Optional[str]:
    if any("jwt" in a for a in approaches) and all("token" in a for a in approaches):
        return "Consider session-based authentication instead of tokens"
    return None


def _client_rule(approaches: list[str], _: Trajectory) -> Optional[str]:
    if all("client" in a for a in approaches):
        return "Consider moving logic to the server side"
    return None


def _polling_rule(approaches: list[str], _: Trajectory) -> Optional[str]:
    if all("poll" in a for a in approaches):
        return "Consider a push-based mechanism (webhooks or a subscription) instead of polling"
    return None


def _regex_rule(approaches: list[str], _: Trajectory) -> Optional[str]:
    if all("regex" in a or "regular expression" in a for a in approaches):
        return "Consider a structured parser instead of pattern matching"
    return None


def _sync_rule(approaches: list[str], _: Trajectory) -> Optional[str]:
    if any(re.search(r"\bsync", a) for a in approaches):
        return "Consider asynchronous or event-driven approach"
    return None


def _timeout_rule(_: list[str], trajectory: Trajectory) -> Optional[str]:
    reasons = [a.failure_reason for a in trajectory.failed_attempts]
    if reasons and all(r == "timeout" for r in reasons):
        return "Split the work into smaller steps that each finish within one iteration"
    return None


def _mechanism_rule(approaches: list[str], _: Trajectory) -> Optional[str]:
    mechanism = _shared_mechanism(approaches)
    if mechanism:
        return f"Every attempt relied on '{mechanism}'; consider an approach that avoids it entirely"
    return None


DIRECTION_RULES: list[DirectionRule] = [
    _jwt_rule,
    _client_rule,
    _polling_rule,
    _regex_rule,
    _sync_rule,
    _timeout_rule,
    _mechanism_rule,
]


def suggest_direction(trajectory: Trajectory) -> str:
    """Pick a new direction from the first rule that fires."""
    approaches = [a.approach.lower() for a in trajectory.attempts]
    if not approaches:
        return DEFAULT_DIRECTION

    for rule in DIRECTION_RULES:
        suggestion = rule(approaches, trajectory)
        if suggestion:
            return suggestion
    return DEFAULT_DIRECTION


# =============================================================================
# Framing
# =============================================================================

def build_frame(trajectory: Trajectory) -> RecoveryFrame:
    """Compose a recovery frame from a trajectory snapshot."""
    tried = "; ".join(a.approach for a in trajectory.attempts) or "nothing yet"
    return RecoveryFrame(
        problem=trajectory.problem,
        context=f"Previous attempts tried: {tried}",
        root_cause=root_cause(trajectory),
        constraints=extract_constraints(trajectory),
        suggested_approach=suggest_direction(trajectory),
    )


def format_prompt(frame: RecoveryFrame) -> str:
    """Render a frame as the instruction block for a fresh worker."""
    if frame.constraints:
        constraint_lines = "\n".join(
            f"{i}. {c.description} (because: {c.reason})"
            for i, c in enumerate(frame.constraints, 1)
        )
    else:
        constraint_lines = "(none recorded)"

    sections = [
        f"Task: {frame.problem}",
        f"Context: {frame.context}",
        f"Why previous approaches failed: {frame.root_cause}",
        f"Constraints (do not violate these):\n{constraint_lines}",
    ]
    if frame.suggested_approach:
        sections.append(f"Suggested direction: {frame.suggested_approach}")
    sections.append(CLOSING_REQUEST)

    return "\n\n".join(sections)


# =============================================================================
# Cost Analysis
# =============================================================================

def cost_comparison(trajectory: Trajectory) -> CostComparison:
    """
    Compare pushing on with the current trajectory against a clean slate.

    Continuing assumes at least three more attempts at the observed average
    cost, with the success rate dropping 15 points per failure (floor 10%).
    A clean slate assumes two attempts at 80% of the average cost and an 80%
    success rate. Recommends ``clean_slate`` when that saves more than 5000
    tokens or improves the success rate by more than 30 points. A trajectory
    with no failed attempts always gets ``continue``.
    """
    attempts = len(trajectory.attempts)
    failed = trajectory.failed_count

    if attempts == 0 or failed == 0:
        return CostComparison(
            continuing=ProjectedCost(
                attempts=attempts,
                tokens=trajectory.total_tokens,
                time_ms=trajectory.total_time_ms,
                success_rate=BASE_SUCCESS_RATE,
            ),
            clean_slate=ProjectedCost(),
            savings=Savings(),
            recommendation="continue",
        )

    avg_tokens = trajectory.total_tokens / attempts
    avg_time = trajectory.total_time_ms / attempts

    remaining = max(MIN_REMAINING_ATTEMPTS, failed)
    continuing = ProjectedCost(
        attempts=attempts + remaining,
        tokens=trajectory.total_tokens + avg_tokens * remaining,
        time_ms=trajectory.total_time_ms + avg_time * remaining,
        success_rate=max(MIN_SUCCESS_RATE, BASE_SUCCESS_RATE - failed * FAILURE_PENALTY),
    )
    clean_slate = ProjectedCost(
        attempts=CLEAN_SLATE_ATTEMPTS,
        tokens=avg_tokens * CLEAN_SLATE_ATTEMPTS * CLEAN_SLATE_EFFICIENCY,
        time_ms=avg_time * CLEAN_SLATE_ATTEMPTS,
        success_rate=CLEAN_SLATE_SUCCESS_RATE,
    )
    savings = Savings(
        tokens=continuing.tokens - clean_slate.tokens,
        time_ms=continuing.time_ms - clean_slate.time_ms,
        success_rate_improvement=clean_slate.success_rate - continuing.success_rate,
    )

    if savings.tokens > TOKEN_SAVINGS_THRESHOLD or savings.success_rate_improvement > SUCCESS_IMPROVEMENT_THRESHOLD:
        recommendation = "clean_slate"
    else:
        recommendation = "continue"

    return CostComparison(continuing, clean_slate, savings, recommendation)
