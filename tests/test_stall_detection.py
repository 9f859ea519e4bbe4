"""
Tests for Stall Detection
=========================

Trajectory bookkeeping, symptom analysis and the recovery trigger.
"""

import pytest

from loopforge.stall_detection import (
    HIGH_CONFIDENCE,
    SymptomReport,
    analyze,
    should_trigger_recovery,
)
from loopforge.trajectory import Trajectory


def refresh_endpoint_trajectory() -> Trajectory:
    """Four failures, each blocked by the same missing refresh endpoint."""
    trajectory = Trajectory(problem="Keep users signed in", item_id="task-1")
    trajectory.add_attempt(
        "Call the refresh endpoint from the client",
        "401 from API",
        False,
        tokens_used=4000,
        failure_reason="Refresh endpoint not available on the API",
    )
    trajectory.add_attempt(
        "Retry refresh with exponential backoff",
        "401 from API",
        False,
        tokens_used=4000,
        failure_reason="Refresh endpoint not available on the API",
    )
    trajectory.add_attempt(
        "Poll until refresh endpoint not available error clears",
        "Timed out waiting",
        False,
        tokens_used=4000,
        failure_reason="Refresh endpoint not available on the API",
    )
    trajectory.add_attempt(
        "Call the refresh endpoint from the client",
        "401 from API",
        False,
        tokens_used=4000,
        failure_reason="Refresh endpoint not available on the API",
    )
    return trajectory


class TestTrajectory:
    """Tests for Trajectory bookkeeping."""

    def test_attempts_are_numbered(self):
        trajectory = Trajectory(problem="x")
        first = trajectory.add_attempt("a", "failed", False, failure_reason="nope")
        second = trajectory.add_attempt("b", "failed", False, failure_reason="nope")
        assert (first.number, second.number) == (1, 2)

    def test_success_resolves(self):
        trajectory = Trajectory(problem="x")
        trajectory.add_attempt("a", "ok", True, failure_reason="ignored")
        assert trajectory.resolved
        assert trajectory.attempts[0].failure_reason is None

    def test_resolved_trajectory_rejects_attempts(self):
        trajectory = Trajectory(problem="x")
        trajectory.add_attempt("a", "ok", True)
        with pytest.raises(ValueError):
            trajectory.add_attempt("b", "ok", True)

    def test_totals(self):
        trajectory = Trajectory(problem="x")
        trajectory.add_attempt("a", "failed", False, tokens_used=10, time_ms=5, failure_reason="r")
        trajectory.add_attempt("b", "ok", True, tokens_used=20, time_ms=7)
        assert trajectory.total_tokens == 30
        assert trajectory.total_time_ms == 12
        assert trajectory.failed_count == 1

    def test_snapshot_is_independent(self):
        trajectory = Trajectory(problem="x")
        trajectory.add_attempt("a", "failed", False, failure_reason="r")
        snapshot = trajectory.snapshot()
        trajectory.add_attempt("b", "failed", False, failure_reason="r")
        assert len(snapshot.attempts) == 1

    def test_dict_round_trip(self):
        trajectory = refresh_endpoint_trajectory()
        restored = Trajectory.from_dict(trajectory.to_dict())
        assert [a.to_dict() for a in restored.attempts] == [a.to_dict() for a in trajectory.attempts]
        assert restored.resolved is False


class TestAnalyze:
    """Tests for symptom analysis."""

    def test_stuck_on_refresh_endpoint(self):
        report = analyze(refresh_endpoint_trajectory())

        assert report.repeated_approaches
        assert report.circular_reasoning
        assert report.threshold_exceeded
        assert report.is_stuck
        assert report.stuck_confidence >= HIGH_CONFIDENCE

        decision = should_trigger_recovery(4, report)
        assert decision.trigger

    def test_single_success_is_healthy(self):
        trajectory = Trajectory(problem="Add footer")
        trajectory.add_attempt("Render footer component", "done", True)

        report = analyze(trajectory)
        assert report.stuck_confidence == 0
        assert not report.is_stuck

    def test_does_not_modify_trajectory(self):
        trajectory = refresh_endpoint_trajectory()
        before = trajectory.to_dict()
        analyze(trajectory)
        assert trajectory.to_dict() == before

    def test_repeats_need_three_attempts(self):
        trajectory = Trajectory(problem="x")
        trajectory.add_attempt("same idea", "failed", False, failure_reason="a")
        trajectory.add_attempt("Same  Idea", "failed", False, failure_reason="b")
        assert not analyze(trajectory).repeated_approaches

        trajectory.add_attempt("another idea entirely", "failed", False, failure_reason="c")
        assert analyze(trajectory).repeated_approaches

    def test_declining_quality(self):
        trajectory = Trajectory(problem="x")
        trajectory.add_attempt("A careful multi-step plan with a migration and tests", "failed", False, failure_reason="a")
        trajectory.add_attempt("A shorter second plan", "failed", False, failure_reason="b")
        trajectory.add_attempt("Patch", "failed", False, failure_reason="c")
        assert analyze(trajectory).declining_quality

    def test_two_distinct_failures_are_not_stuck(self):
        trajectory = Trajectory(problem="x")
        trajectory.add_attempt("Add index to orders table", "failed", False, failure_reason="migration lock")
        trajectory.add_attempt("Add index concurrently", "failed", False, failure_reason="syntax error")

        report = analyze(trajectory)
        assert not report.is_stuck
        assert not should_trigger_recovery(trajectory.failed_count, report).trigger


class TestShouldTriggerRecovery:
    """Tests for the recovery decision."""

    @pytest.mark.parametrize("failed", [3, 4, 10])
    def test_threshold_always_triggers(self, failed):
        decision = should_trigger_recovery(failed, SymptomReport())
        assert decision.trigger
        assert decision.reason == "Exceeded 3-attempt threshold"

    def test_high_confidence(self):
        report = SymptomReport(stuck_confidence=80)
        decision = should_trigger_recovery(1, report)
        assert decision.trigger
        assert decision.reason == "High stuck confidence (80%)"

    def test_multiple_symptoms(self):
        report = SymptomReport(repeated_approaches=True, declining_quality=True, stuck_confidence=45)
        decision = should_trigger_recovery(2, report)
        assert decision.trigger
        assert decision.reason == "Multiple stuck symptoms (2)"

    def test_healthy(self):
        decision = should_trigger_recovery(1, SymptomReport(repeated_approaches=True, stuck_confidence=25))
        assert not decision.trigger
        assert decision.reason == "Trajectory appears healthy"
