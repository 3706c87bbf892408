"""
LineupTV - Linear television scheduling engine

Turns a media catalog plus slot rules into a continuous channel lineup:
- Time-of-day slot grids and weighted random floating slots
- Head/pre/post/tail/fallback filler injection with flex padding
- Infinite schedules with resumable, reproducible randomness
- Legacy-compatible ad-hoc filler picking
"""

__version__ = "1.0.0"
__author__ = "LineupTV Contributors"
__license__ = "MIT"

from lineuptv.config import get_config, load_config

__all__ = [
    "__version__",
    "get_config",
    "load_config",
]
