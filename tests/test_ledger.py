"""
Tests for the Attempt Ledger.
"""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy import select

from loopforge.db import close_db, get_session_maker, init_db
from loopforge.db.models import AttemptRecord
from loopforge.ledger import TRAJECTORY_ABANDONED, TRAJECTORY_RESOLVED, Ledger
from loopforge.trajectory import Trajectory


@pytest.mark.asyncio
async def test_init_db_creates_ledger_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        project_dir = Path(tmpdir)
        await init_db(project_dir)
        try:
            assert (project_dir / ".loopforge" / "ledger.db").exists()
        finally:
            await close_db()

        with pytest.raises(RuntimeError):
            get_session_maker()


@pytest.mark.asyncio
async def test_save_trajectory_appends_only_new_attempts():
    with tempfile.TemporaryDirectory() as tmpdir:
        await init_db(Path(tmpdir))
        try:
            ledger = Ledger()
            trajectory = Trajectory(problem="Add login form", item_id="task-1")
            trajectory.add_attempt("Server action", "gates failed", False, failure_reason="tests failed")

            row_id = await ledger.save_trajectory(trajectory)
            assert trajectory.session_id == row_id

            trajectory.add_attempt("Route handler", "done", True)
            assert await ledger.save_trajectory(trajectory, TRAJECTORY_RESOLVED) == row_id

            async with get_session_maker()() as session:
                result = await session.execute(
                    select(AttemptRecord).where(AttemptRecord.trajectory_id == row_id).order_by(AttemptRecord.number)
                )
                attempts = result.scalars().all()
            assert [(a.number, a.success) for a in attempts] == [(1, False), (2, True)]

            # Resolved trajectories are no longer open
            assert await ledger.load_open_trajectories() == {}
        finally:
            await close_db()


@pytest.mark.asyncio
async def test_load_open_trajectories():
    with tempfile.TemporaryDirectory() as tmpdir:
        await init_db(Path(tmpdir))
        try:
            ledger = Ledger()
            open_one = Trajectory(problem="Wire sessions", item_id="task-2")
            open_one.add_attempt("Cookie store", "failed", False, tokens_used=900, failure_reason="timeout")
            await ledger.save_trajectory(open_one)

            gone = Trajectory(problem="Old item", item_id="task-3")
            gone.add_attempt("x", "failed", False, failure_reason="r")
            await ledger.save_trajectory(gone, TRAJECTORY_ABANDONED)

            restored = await Ledger().load_open_trajectories()
            assert list(restored) == ["task-2"]
            trajectory = restored["task-2"]
            assert trajectory.problem == "Wire sessions"
            assert trajectory.attempts[0].failure_reason == "timeout"
            assert trajectory.total_tokens == 900
            assert not trajectory.resolved
        finally:
            await close_db()


@pytest.mark.asyncio
async def test_iterations_and_recoveries():
    with tempfile.TemporaryDirectory() as tmpdir:
        await init_db(Path(tmpdir))
        try:
            ledger = Ledger(run_id="run-1")
            await ledger.record_iteration(1, "task-1", "A", "succeeded", tokens_used=10)
            await ledger.record_iteration(
                2, "task-2", "B", "failed",
                failure_reason="Quality gates failed: tests", failed_gates=["tests"],
            )
            await ledger.record_recovery(
                item_id="task-2",
                reason="Exceeded 3-attempt threshold",
                stuck_confidence=50,
                recommendation="clean_slate",
                frame={"problem": "B"},
                cost={"recommendation": "clean_slate"},
                succeeded=False,
            )

            iterations = await ledger.recent_iterations()
            assert [i.number for i in iterations] == [2, 1]
            assert iterations[0].failed_gates == ["tests"]
            assert iterations[0].run_id == "run-1"

            recoveries = await ledger.recent_recoveries()
            assert len(recoveries) == 1
            assert recoveries[0].frame == {"problem": "B"}
            assert recoveries[0].succeeded is False
        finally:
            await close_db()
