"""
Slot wrapper binding a slot definition to its iterators.
"""

import logging
from typing import Dict, Generic, Optional, TypeVar

from lineuptv.scheduling.iterators import IterationState, ProgramIterator, copy_redirect
from lineuptv.scheduling.programs import (
    ContentProgram,
    CustomProgram,
    FillerProgram,
    FlexProgram,
    LineupProgram,
    RedirectProgram,
    SchedulerProgram,
)
from lineuptv.scheduling.random_source import RandomSource
from lineuptv.scheduling.slots import FillerType, RandomSlot, Slot, SlotType, TimeSlot

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Slot)


class SlotImpl(Generic[S]):
    """
    A slot plus the iterators it draws from.

    `get_next_program()` peeks; `advance_iterator()` consumes. Attached
    filler is looked up by position through `get_filler_of_type()`.
    """

    def __init__(
        self,
        slot: S,
        iterator: Optional[ProgramIterator],
        random: RandomSource,
        filler_iterators: Optional[Dict[str, ProgramIterator]] = None,
    ):
        self.slot = slot
        self.iterator = iterator
        self.random = random
        self.filler_iterators = filler_iterators or {}

    @property
    def id(self) -> str:
        return self.slot.id

    @property
    def type(self) -> SlotType:
        return self.slot.type

    def get_next_program(self, state: IterationState) -> Optional[LineupProgram]:
        if self.iterator is None:
            return None
        program = self.iterator.current(state)
        if program is None:
            return None

        if isinstance(program, RedirectProgram):
            return copy_redirect(program, program.duration_ms)
        if isinstance(program, FlexProgram):
            return program
        if not isinstance(program, SchedulerProgram):
            raise TypeError(f"Unexpected iterator output {type(program).__name__}")

        if self.slot.type == SlotType.CUSTOM_SHOW:
            index = program.custom_show_index(self.slot.custom_show_id)
            return CustomProgram(
                program=program,
                duration_ms=program.duration_ms,
                custom_show_id=self.slot.custom_show_id,
                index=index if index is not None else 0,
            )
        if self.slot.type == SlotType.FILLER:
            return FillerProgram(
                program=program,
                duration_ms=program.duration_ms,
                filler_list_id=self.slot.filler_list_id,
            )
        return ContentProgram(program=program, duration_ms=program.duration_ms)

    def advance_iterator(self) -> None:
        if self.iterator is not None:
            self.iterator.next()

    def has_any_filler_settings(self) -> bool:
        return bool(self.filler_iterators) and any(
            f.filler_list_id in self.filler_iterators for f in self.slot.filler
        )

    def has_filler_of_type(self, filler_type: FillerType) -> bool:
        return any(
            filler_type in f.types and f.filler_list_id in self.filler_iterators
            for f in self.slot.filler
        )

    def get_filler_of_type(
        self, filler_type: FillerType, state: IterationState
    ) -> Optional[FillerProgram]:
        """
        Pick filler for the given position that fits `state.slot_duration_ms`.

        Returns None when no attached list offers a fitting program.
        """
        candidates = [
            f for f in self.slot.filler
            if filler_type in f.types and f.filler_list_id in self.filler_iterators
        ]
        chosen = self.random.pick(candidates)
        if chosen is None:
            return None

        iterator = self.filler_iterators[chosen.filler_list_id]
        program = iterator.current(state)
        if program is None:
            return None
        if 0 <= state.slot_duration_ms < program.duration_ms:
            return None

        iterator.next()
        return FillerProgram(
            program=program,
            duration_ms=program.duration_ms,
            filler_list_id=chosen.filler_list_id,
            filler_type=FillerType(filler_type).value,
        )


class TimeSlotImpl(SlotImpl[TimeSlot]):
    @property
    def start_time_ms(self) -> int:
        return self.slot.start_time_ms


class RandomSlotImpl(SlotImpl[RandomSlot]):
    @property
    def weight(self) -> float:
        return self.slot.weight

    @property
    def cooldown_ms(self) -> int:
        return self.slot.cooldown_ms

    @property
    def duration_spec(self):
        return self.slot.duration_spec
