"""
Collaborator interfaces consumed by the scheduling core.

The core never queries storage directly. Callers hand it a pool provider,
a persistence port and, for the filler picker, a play-history provider.
`lineuptv.database.infinite_schedule_db` implements the persistence port;
`lineuptv.scheduling.pools` ships an in-memory pool provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from lineuptv.scheduling.programs import SchedulerProgram

if TYPE_CHECKING:
    from lineuptv.scheduling.infinite import (
        GeneratedScheduleItem,
        InfiniteScheduleDef,
        ScheduleState,
        SlotState,
        SlotStateUpdate,
    )


@dataclass
class PlayHistoryEntry:
    """One past filler play on a channel."""

    program_id: str
    list_id: Optional[str]
    played_at_ms: int


class ContentPoolProvider(ABC):
    """Resolves a slot's source reference into playable programs."""

    @abstractmethod
    def get_show_programs(
        self, show_id: str, season_filter: Optional[List[int]] = None
    ) -> List[SchedulerProgram]:
        """Episodes of a show, optionally restricted to some seasons."""

    @abstractmethod
    def get_custom_show_programs(self, custom_show_id: str) -> List[SchedulerProgram]:
        """Programs of a custom show in their custom-show order."""

    @abstractmethod
    def get_filler_list_programs(self, filler_list_id: str) -> List[SchedulerProgram]:
        """Programs of a filler list."""

    @abstractmethod
    def get_smart_collection_programs(self, smart_collection_id: str) -> List[SchedulerProgram]:
        """
        Programs matched by a smart collection's filter.

        Raises:
            UnparseableFilterError: If the collection's filter cannot be parsed
        """

    @abstractmethod
    def get_movie_programs(self) -> List[SchedulerProgram]:
        """Every movie in the library."""


class SchedulePersistence(ABC):
    """Storage operations the infinite generator and its service rely on."""

    @abstractmethod
    def load_schedule_with_state(self, schedule_id: str) -> Optional["InfiniteScheduleDef"]:
        """Schedule definition with its slots, slot states and schedule state."""

    @abstractmethod
    def load_slot_state(self, slot_id: str) -> Optional["SlotState"]:
        ...

    @abstractmethod
    def save_slot_state(self, slot_id: str, update: "SlotStateUpdate") -> None:
        ...

    @abstractmethod
    def save_schedule_state(self, schedule_id: str, state: "ScheduleState") -> None:
        ...

    @abstractmethod
    def append_generated_items(self, items: List["GeneratedScheduleItem"]) -> int:
        """Append items; returns how many were written."""

    @abstractmethod
    def delete_generated_items_from(self, schedule_id: str, from_ms: int) -> int:
        """Delete items starting at or after `from_ms`."""

    @abstractmethod
    def delete_generated_items_before(self, schedule_id: str, before_ms: int) -> int:
        """Delete items ending at or before `before_ms`."""

    @abstractmethod
    def get_buffer_end_time(self, schedule_id: str) -> Optional[int]:
        """End of the last generated item, or None for an empty buffer."""

    @abstractmethod
    def get_next_sequence_index(self, schedule_id: str) -> int:
        ...


class PlayHistoryProvider(ABC):
    """Filler play history for a channel."""

    @abstractmethod
    def get_history_for_channel(self, channel_id: str) -> List[PlayHistoryEntry]:
        ...
