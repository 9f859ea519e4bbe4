"""
Stall Detection
===============

Classifies whether a trajectory is still making progress or has gone stuck.

Symptoms checked:
- repeated: the same approach keeps coming back despite failing
- circular: a later approach leans on an earlier attempt's failure reason
- declining: approach descriptions shrink relative to the first one
- threshold: three or more failed attempts

These are crude string heuristics, not semantic checks. The declining-quality
check in particular compares raw text length and will flag a terse but
correct restatement; treat it as a weak signal.
"""

from dataclasses import dataclass

from loopforge.trajectory import Trajectory

# Stuck-confidence weights
REPEATED_WEIGHT = 25
CIRCULAR_WEIGHT = 30
DECLINING_WEIGHT = 20
THRESHOLD_WEIGHT = 25

STUCK_CONFIDENCE = 50
HIGH_CONFIDENCE = 75
FAILED_ATTEMPT_THRESHOLD = 3
MIN_ATTEMPTS = 3
CIRCULAR_PREFIX_LENGTH = 20
DECLINING_RATIO = 0.7


@dataclass
class SymptomReport:
    """Derived view of a trajectory's health."""
    repeated_approaches: bool = False
    circular_reasoning: bool = False
    declining_quality: bool = False
    threshold_exceeded: bool = False
    stuck_confidence: int = 0

    @property
    def is_stuck(self) -> bool:
        return self.stuck_confidence >= STUCK_CONFIDENCE

    @property
    def qualitative_count(self) -> int:
        """How many of the three non-threshold symptoms are present."""
        return sum([self.repeated_approaches, self.circular_reasoning, self.declining_quality])

    def to_dict(self) -> dict:
        return {
            "repeated_approaches": self.repeated_approaches,
            "circular_reasoning": self.circular_reasoning,
            "declining_quality": self.declining_quality,
            "threshold_exceeded": self.threshold_exceeded,
            "stuck_confidence": self.stuck_confidence,
            "is_stuck": self.is_stuck,
        }


@dataclass
class RecoveryDecision:
    trigger: bool
    reason: str


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def _has_repeated_approaches(trajectory: Trajectory) -> bool:
    approaches = [_normalize(a.approach) for a in trajectory.attempts]
    return len(approaches) >= MIN_ATTEMPTS and len(set(approaches)) < len(approaches)


def _has_circular_reasoning(trajectory: Trajectory) -> bool:
    attempts = trajectory.attempts
    for index in range(2, len(attempts)):
        approach = attempts[index].approach.lower()
        for earlier in attempts[:index]:
            if not earlier.failure_reason:
                continue
            prefix = earlier.failure_reason.lower()[:CIRCULAR_PREFIX_LENGTH]
            if prefix.strip() and prefix in approach:
                return True
    return False


def _has_declining_quality(trajectory: Trajectory) -> bool:
    attempts = trajectory.attempts
    if len(attempts) < MIN_ATTEMPTS:
        return False
    return len(attempts[-1].approach) < len(attempts[0].approach) * DECLINING_RATIO


def analyze(trajectory: Trajectory) -> SymptomReport:
    """
    Inspect a trajectory and score how stuck it looks.

    Pure: the trajectory is never modified.

    Returns:
        SymptomReport with the four symptoms and a 0-100 confidence.
    """
    report = SymptomReport(
        repeated_approaches=_has_repeated_approaches(trajectory),
        circular_reasoning=_has_circular_reasoning(trajectory),
        declining_quality=_has_declining_quality(trajectory),
        threshold_exceeded=trajectory.failed_count >= FAILED_ATTEMPT_THRESHOLD,
    )

    confidence = 0
    if report.repeated_approaches:
        confidence += REPEATED_WEIGHT
    if report.circular_reasoning:
        confidence += CIRCULAR_WEIGHT
    if report.declining_quality:
        confidence += DECLINING_WEIGHT
    if report.threshold_exceeded:
        confidence += THRESHOLD_WEIGHT
    report.stuck_confidence = confidence

    return report


def should_trigger_recovery(failed_count: int, report: SymptomReport) -> RecoveryDecision:
    """
    Decide whether to abandon the current line of attempts and reframe.

    Checks run in priority order and the first match wins.
    """
    if failed_count >= FAILED_ATTEMPT_THRESHOLD:
        return RecoveryDecision(True, f"Exceeded {FAILED_ATTEMPT_THRESHOLD}-attempt threshold")

    if report.stuck_confidence >= HIGH_CONFIDENCE:
        return RecoveryDecision(True, f"High stuck confidence ({report.stuck_confidence}%)")

    symptom_count = report.qualitative_count
    if symptom_count >= 2:
        return RecoveryDecision(True, f"Multiple stuck symptoms ({symptom_count})")

    return RecoveryDecision(False, "Trajectory appears healthy")
