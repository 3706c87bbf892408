"""
LineupTV Services
"""

from lineuptv.services.infinite_schedule_service import (
    InfiniteScheduleService,
    get_pool_provider,
    set_pool_provider,
    validate_schedule_def,
)

__all__ = [
    "InfiniteScheduleService",
    "get_pool_provider",
    "set_pool_provider",
    "validate_schedule_def",
]
