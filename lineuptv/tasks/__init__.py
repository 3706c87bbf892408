"""
LineupTV Background Task System

Provides:
- Interval task scheduling
- Infinite schedule buffer maintenance
"""

from lineuptv.tasks.buffer_tasks import maintain_buffers_task
from lineuptv.tasks.scheduler import ScheduledTask, TaskScheduler, scheduler

__all__ = [
    "TaskScheduler",
    "ScheduledTask",
    "scheduler",
    "maintain_buffers_task",
]
