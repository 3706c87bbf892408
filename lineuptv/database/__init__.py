"""
LineupTV Database Module

Provides SQLAlchemy models, the schedule repository and session helpers.
"""

from lineuptv.database.connection import (
    close_db,
    get_db,
    get_sync_session,
    init_sync_db,
)
from lineuptv.database.infinite_schedule_db import InfiniteScheduleDB
from lineuptv.database.models import (
    Base,
    GeneratedItem,
    InfiniteSchedule,
    InfiniteScheduleSlot,
    InfiniteScheduleSlotState,
    InfiniteScheduleState,
)

__all__ = [
    # Connection
    "close_db",
    "get_db",
    "get_sync_session",
    "init_sync_db",
    # Repository
    "InfiniteScheduleDB",
    # Models
    "Base",
    "InfiniteSchedule",
    "InfiniteScheduleSlot",
    "InfiniteScheduleSlotState",
    "InfiniteScheduleState",
    "GeneratedItem",
]
