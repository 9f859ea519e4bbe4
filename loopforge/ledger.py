"""
Attempt Ledger
==============

Durable audit trail for the loop, stored in .loopforge/ledger.db.

Records every iteration outcome, every attempt on every trajectory, and every
recovery decision, so a run can be reviewed after the fact and open
trajectories survive a restart.

Usage:
    await init_db(project_dir)
    ledger = Ledger()

    await ledger.save_trajectory(trajectory)
    await ledger.record_iteration(1, item.id, item.title, "failed", failure_reason="timeout")
    open_trajectories = await ledger.load_open_trajectories()
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from loopforge.db.connection import get_session_maker
from loopforge.db.models import AttemptRecord, IterationRecord, RecoveryRecord, TrajectoryRecord
from loopforge.exceptions import PersistenceError
from loopforge.trajectory import Attempt, Trajectory

TRAJECTORY_OPEN = "open"
TRAJECTORY_RESOLVED = "resolved"
TRAJECTORY_ABANDONED = "abandoned"


class Ledger:
    """Async writer/reader for the ledger tables."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id or str(uuid.uuid4())

    async def save_trajectory(self, trajectory: Trajectory, status: str = TRAJECTORY_OPEN) -> int:
        """
        Insert or update a trajectory and append attempts not yet stored.

        Sets ``trajectory.session_id`` to the row id on first save.

        Raises:
            PersistenceError: if the write fails.
        """
        try:
            async with get_session_maker()() as session:
                record = None
                if trajectory.session_id is not None:
                    record = await session.get(TrajectoryRecord, trajectory.session_id)

                if record is None:
                    record = TrajectoryRecord(
                        item_id=trajectory.item_id or "",
                        problem=trajectory.problem,
                        status=status,
                    )
                    session.add(record)
                    await session.flush()
                    stored = 0
                else:
                    result = await session.execute(
                        select(func.max(AttemptRecord.number)).where(AttemptRecord.trajectory_id == record.id)
                    )
                    stored = result.scalar() or 0

                record.status = status
                if status != TRAJECTORY_OPEN:
                    record.closed_at = datetime.now(timezone.utc)

                for attempt in trajectory.attempts:
                    if attempt.number <= stored:
                        continue
                    session.add(AttemptRecord(
                        trajectory_id=record.id,
                        number=attempt.number,
                        approach=attempt.approach,
                        outcome=attempt.outcome,
                        success=attempt.success,
                        tokens_used=attempt.tokens_used,
                        time_ms=attempt.time_ms,
                        failure_reason=attempt.failure_reason,
                    ))

                await session.commit()
                trajectory.session_id = record.id
                return record.id
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("ledger trajectory", e) from e

    async def load_open_trajectories(self) -> dict[str, Trajectory]:
        """Open trajectories keyed by work item id (newest wins)."""
        try:
            async with get_session_maker()() as session:
                result = await session.execute(
                    select(TrajectoryRecord)
                    .where(TrajectoryRecord.status == TRAJECTORY_OPEN)
                    .options(selectinload(TrajectoryRecord.attempts))
                    .order_by(TrajectoryRecord.id)
                )
                records = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("ledger read", e) from e

        trajectories: dict[str, Trajectory] = {}
        for record in records:
            attempts = [
                Attempt(
                    number=a.number,
                    approach=a.approach,
                    outcome=a.outcome,
                    success=a.success,
                    tokens_used=a.tokens_used,
                    time_ms=a.time_ms,
                    failure_reason=a.failure_reason,
                )
                for a in record.attempts
            ]
            trajectories[record.item_id] = Trajectory(
                problem=record.problem,
                attempts=attempts,
                resolved=False,
                item_id=record.item_id,
                session_id=record.id,
            )
        return trajectories

    async def record_iteration(
        self,
        number: int,
        item_id: str,
        item_title: str,
        outcome: str,
        failure_reason: Optional[str] = None,
        failed_gates: Optional[list[str]] = None,
        tokens_used: int = 0,
        time_ms: int = 0,
    ) -> int:
        try:
            async with get_session_maker()() as session:
                record = IterationRecord(
                    run_id=self.run_id,
                    number=number,
                    item_id=item_id,
                    item_title=item_title,
                    outcome=outcome,
                    failure_reason=failure_reason,
                    failed_gates=list(failed_gates or []),
                    tokens_used=tokens_used,
                    time_ms=time_ms,
                )
                session.add(record)
                await session.commit()
                return record.id
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("ledger iteration", e) from e

    async def record_recovery(
        self,
        item_id: str,
        reason: str,
        stuck_confidence: int,
        recommendation: str,
        frame: dict,
        cost: dict,
        succeeded: Optional[bool] = None,
    ) -> int:
        try:
            async with get_session_maker()() as session:
                record = RecoveryRecord(
                    run_id=self.run_id,
                    item_id=item_id,
                    reason=reason,
                    stuck_confidence=stuck_confidence,
                    recommendation=recommendation,
                    frame=frame,
                    cost=cost,
                    succeeded=succeeded,
                )
                session.add(record)
                await session.commit()
                return record.id
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError("ledger recovery", e) from e

    async def recent_iterations(self, limit: int = 20) -> list[IterationRecord]:
        async with get_session_maker()() as session:
            result = await session.execute(
                select(IterationRecord).order_by(desc(IterationRecord.id)).limit(limit)
            )
            return list(result.scalars().all())

    async def recent_recoveries(self, limit: int = 20) -> list[RecoveryRecord]:
        async with get_session_maker()() as session:
            result = await session.execute(
                select(RecoveryRecord).order_by(desc(RecoveryRecord.id)).limit(limit)
            )
            return list(result.scalars().all())
