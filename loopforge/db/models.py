"""
Database Models for Loop Forge
==============================

SQLAlchemy models for the attempt ledger: every iteration, every attempt,
and every recovery the loop performs.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import String, Integer, DateTime, ForeignKey, JSON, Text, Boolean
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class TrajectoryRecord(Base):
    """The attempt history for one work item."""
    __tablename__ = "trajectories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(String(50), index=True)
    problem: Mapped[str] = mapped_column(Text)
    # open, resolved, abandoned
    status: Mapped[str] = mapped_column(String(20), default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    attempts: Mapped[List["AttemptRecord"]] = relationship(
        back_populates="trajectory",
        cascade="all, delete-orphan",
        order_by="AttemptRecord.number",
    )


class AttemptRecord(Base):
    __tablename__ = "attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trajectory_id: Mapped[int] = mapped_column(ForeignKey("trajectories.id"))
    number: Mapped[int] = mapped_column(Integer)
    approach: Mapped[str] = mapped_column(Text, default="")
    outcome: Mapped[str] = mapped_column(Text, default="")
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    time_ms: Mapped[int] = mapped_column(Integer, default=0)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    trajectory: Mapped["TrajectoryRecord"] = relationship(back_populates="attempts")


class IterationRecord(Base):
    """One pass through the loop."""
    __tablename__ = "iterations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(36), index=True)
    number: Mapped[int] = mapped_column(Integer)
    item_id: Mapped[str] = mapped_column(String(50))
    item_title: Mapped[str] = mapped_column(Text, default="")
    # succeeded, failed, recovered, abandoned
    outcome: Mapped[str] = mapped_column(String(20))
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failed_gates: Mapped[List[str]] = mapped_column(JSON, default=list)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    time_ms: Mapped[int] = mapped_column(Integer, default=0)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class RecoveryRecord(Base):
    """A reframing decision and what came of it."""
    __tablename__ = "recoveries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(36), index=True)
    item_id: Mapped[str] = mapped_column(String(50))
    reason: Mapped[str] = mapped_column(Text)
    stuck_confidence: Mapped[int] = mapped_column(Integer, default=0)
    recommendation: Mapped[str] = mapped_column(String(20))
    frame: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    cost: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    succeeded: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
