"""
Database Package
================

Exports key database components.
"""

from loopforge.db.models import (
    Base,
    TrajectoryRecord, AttemptRecord,
    IterationRecord, RecoveryRecord,
)
from loopforge.db.connection import init_db, get_session_maker, close_db
