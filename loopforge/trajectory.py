"""
Trajectories
============

The ordered history of attempts made against one problem.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Attempt:
    """One try at a problem."""
    number: int  # 1-based, strictly increasing within a trajectory
    approach: str
    outcome: str
    success: bool
    tokens_used: int = 0
    time_ms: int = 0
    failure_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "approach": self.approach,
            "outcome": self.outcome,
            "success": self.success,
            "tokens_used": self.tokens_used,
            "time_ms": self.time_ms,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Attempt":
        return cls(
            number=data["number"],
            approach=data.get("approach", ""),
            outcome=data.get("outcome", ""),
            success=data.get("success", False),
            tokens_used=data.get("tokens_used", 0),
            time_ms=data.get("time_ms", 0),
            failure_reason=data.get("failure_reason"),
        )


@dataclass
class Trajectory:
    """
    A problem statement plus an append-only list of attempts.

    ``resolved`` is only ever set by ``add_attempt`` on a successful attempt,
    so a resolved trajectory always ends in a success.
    """
    problem: str
    attempts: list[Attempt] = field(default_factory=list)
    resolved: bool = False
    item_id: Optional[str] = None
    session_id: Optional[int] = None  # ledger row id once persisted

    def add_attempt(
        self,
        approach: str,
        outcome: str,
        success: bool,
        tokens_used: int = 0,
        time_ms: int = 0,
        failure_reason: Optional[str] = None,
    ) -> Attempt:
        """Append the next attempt, numbering it automatically."""
        if self.resolved:
            raise ValueError("Cannot add attempts to a resolved trajectory")

        attempt = Attempt(
            number=len(self.attempts) + 1,
            approach=approach,
            outcome=outcome,
            success=success,
            tokens_used=tokens_used,
            time_ms=time_ms,
            failure_reason=None if success else failure_reason,
        )
        self.attempts.append(attempt)
        if success:
            self.resolved = True
        return attempt

    @property
    def total_tokens(self) -> int:
        return sum(a.tokens_used for a in self.attempts)

    @property
    def total_time_ms(self) -> int:
        return sum(a.time_ms for a in self.attempts)

    @property
    def failed_attempts(self) -> list[Attempt]:
        return [a for a in self.attempts if not a.success]

    @property
    def failed_count(self) -> int:
        return len(self.failed_attempts)

    def snapshot(self) -> "Trajectory":
        """Independent copy for analysis."""
        return Trajectory(
            problem=self.problem,
            attempts=[Attempt(**a.to_dict()) for a in self.attempts],
            resolved=self.resolved,
            item_id=self.item_id,
            session_id=self.session_id,
        )

    def to_dict(self) -> dict:
        return {
            "problem": self.problem,
            "attempts": [a.to_dict() for a in self.attempts],
            "resolved": self.resolved,
            "item_id": self.item_id,
            "total_tokens": self.total_tokens,
            "total_time_ms": self.total_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Trajectory":
        attempts = [Attempt.from_dict(a) for a in data.get("attempts", [])]
        resolved = bool(data.get("resolved")) and bool(attempts) and attempts[-1].success
        return cls(
            problem=data.get("problem", ""),
            attempts=attempts,
            resolved=resolved,
            item_id=data.get("item_id"),
        )
