"""
Test Fixtures

Shared scheduling test data factories.
"""

from .factories import InfiniteScheduleFactory, ProgramFactory

__all__ = [
    "InfiniteScheduleFactory",
    "ProgramFactory",
]
