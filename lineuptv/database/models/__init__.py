"""
LineupTV Database Models
"""

from lineuptv.database.models.base import Base, TimestampMixin
from lineuptv.database.models.infinite_schedule import (
    GeneratedItem,
    InfiniteSchedule,
    InfiniteScheduleSlot,
    InfiniteScheduleSlotState,
    InfiniteScheduleState,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "InfiniteSchedule",
    "InfiniteScheduleSlot",
    "InfiniteScheduleSlotState",
    "InfiniteScheduleState",
    "GeneratedItem",
]
