"""
LineupTV Scheduling Module

Lineup construction from slot rules.

Components:
- TimeSlotScheduler: time-of-day grid over a day or week
- RandomSlotScheduler: weighted floating slots with cooldowns
- FillerPicker: ad-hoc filler selection from play history
- InfiniteScheduleGenerator: resumable rolling buffer for a channel
"""

from .filler_picker import (
    ChannelFillerList,
    FillerChannel,
    FillerPicker,
    FillerPickResult,
    normalize_duration,
    normalize_since,
)
from .infinite import (
    GeneratedScheduleItem,
    GenerationResult,
    InfiniteScheduleDef,
    InfiniteScheduleGenerator,
    InfiniteSlotDef,
    ScheduleState,
    SlotState,
    SlotStateUpdate,
)
from .iterators import IterationState, create_program_iterators
from .lineup import SlotScheduleResult, SlotSelection
from .pools import InMemoryPoolProvider
from .ports import ContentPoolProvider, PlayHistoryEntry, PlayHistoryProvider, SchedulePersistence
from .programs import (
    ContentProgram,
    CustomProgram,
    CustomShowContext,
    FillerProgram,
    FlexProgram,
    ProgramKind,
    RedirectProgram,
    SchedulerProgram,
)
from .random_slots import RandomSlotSchedule, RandomSlotScheduler
from .random_source import RandomSource, create_entropy
from .slots import (
    DynamicDuration,
    FillerOrder,
    FillerType,
    FixedDuration,
    RandomSlot,
    SlotFiller,
    SlotType,
    TimeSlot,
)
from .time_slots import TimeSlotSchedule, TimeSlotScheduler, start_of_period

__all__ = [
    # Programs
    "SchedulerProgram",
    "ProgramKind",
    "CustomShowContext",
    "ContentProgram",
    "CustomProgram",
    "FillerProgram",
    "RedirectProgram",
    "FlexProgram",
    # Slots
    "SlotType",
    "SlotFiller",
    "FillerType",
    "FillerOrder",
    "FixedDuration",
    "DynamicDuration",
    "TimeSlot",
    "RandomSlot",
    # Iteration
    "IterationState",
    "RandomSource",
    "create_entropy",
    "create_program_iterators",
    # Slot schedulers
    "SlotScheduleResult",
    "SlotSelection",
    "TimeSlotSchedule",
    "TimeSlotScheduler",
    "start_of_period",
    "RandomSlotSchedule",
    "RandomSlotScheduler",
    # Filler picker
    "FillerPicker",
    "FillerPickResult",
    "FillerChannel",
    "ChannelFillerList",
    "normalize_duration",
    "normalize_since",
    # Infinite schedules
    "InfiniteScheduleGenerator",
    "InfiniteScheduleDef",
    "InfiniteSlotDef",
    "SlotState",
    "ScheduleState",
    "SlotStateUpdate",
    "GeneratedScheduleItem",
    "GenerationResult",
    # Collaborators
    "ContentPoolProvider",
    "InMemoryPoolProvider",
    "SchedulePersistence",
    "PlayHistoryProvider",
    "PlayHistoryEntry",
]
