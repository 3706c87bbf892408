"""
Time Slot Scheduler for time-of-day programming.

Slots are anchored at offsets into a recurring period (a day or a week).
A cursor walks forward from the first slot's start; whatever slot
contains the cursor supplies programs until its time runs out. Programs
are padded to `pad_ms` boundaries, wrapped in the slot's filler, and any
leftover slot time becomes trailing flex or is distributed between the
slot's programs.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from lineuptv.config import SchedulingConfig, get_config
from lineuptv.errors import InvalidConfigurationError
from lineuptv.scheduling.constants import DEFAULT_PAD_MS, ONE_DAY_MS, ONE_WEEK_MS, SLACK_MS
from lineuptv.scheduling.iterators import (
    IterationState,
    create_program_iterators,
    slot_filler_iterators,
)
from lineuptv.scheduling.lineup import (
    PaddedProgram,
    SlotScheduleResult,
    SlotSelection,
    add_head_and_tail_filler_to_slot,
    create_padded_program,
    distribute_flex,
    maybe_add_pre_post_filler,
    push_or_extend_flex,
)
from lineuptv.scheduling.programs import (
    FillerProgram,
    FlexProgram,
    LineupProgram,
    RedirectProgram,
    SchedulerProgram,
    create_program_map,
    deduplicate_programs,
)
from lineuptv.scheduling.random_source import RandomSource
from lineuptv.scheduling.slot_impl import TimeSlotImpl
from lineuptv.scheduling.slots import FillerType, SlotType, TimeSlot, slot_iterator_key

logger = logging.getLogger(__name__)

PERIOD_MS = {"day": ONE_DAY_MS, "week": ONE_WEEK_MS}


@dataclass
class TimeSlotSchedule:
    """A recurring grid of time slots."""

    slots: List[TimeSlot]
    period: str = "day"  # day | week
    pad_ms: int = DEFAULT_PAD_MS
    lateness_ms: int = 0
    flex_preference: str = "end"  # distribute | end
    max_days: int = 7
    start_tomorrow: bool = False
    time_zone_offset_minutes: int = 0
    filler_retry_attempts: int = 3

    @classmethod
    def from_config(
        cls, slots: List[TimeSlot], config: Optional[SchedulingConfig] = None, **kwargs
    ) -> "TimeSlotSchedule":
        """Build a schedule whose pad, horizon and retry count default to the scheduling config."""
        config = config or get_config().scheduling
        kwargs.setdefault("pad_ms", config.default_pad_ms)
        kwargs.setdefault("max_days", config.max_days)
        kwargs.setdefault("filler_retry_attempts", config.filler_retry_attempts)
        return cls(slots=slots, **kwargs)

    @property
    def period_ms(self) -> int:
        return PERIOD_MS[self.period]


def start_of_period(now_ms: int, period: str, time_zone_offset_minutes: int = 0) -> int:
    """
    Local midnight starting the day (or Sunday-started week) containing `now_ms`.
    """
    offset_ms = time_zone_offset_minutes * 60 * 1000
    day = (now_ms + offset_ms) // ONE_DAY_MS
    if period == "week":
        # 1970-01-01 was a Thursday
        day -= (day + 4) % 7
    return day * ONE_DAY_MS - offset_ms


class TimeSlotScheduler:
    """
    Builds a lineup from a time slot grid.

    Usage:
        scheduler = TimeSlotScheduler(schedule)
        result = scheduler.generate_schedule(programs, seed=[1, 2, 3])
    """

    def __init__(self, schedule: TimeSlotSchedule):
        self.schedule = schedule

    def validate(self) -> None:
        schedule = self.schedule
        if schedule.period not in PERIOD_MS:
            raise InvalidConfigurationError(f"Unknown schedule period: {schedule.period}")
        if not schedule.slots:
            raise InvalidConfigurationError("Time slot schedule has no slots")
        if schedule.pad_ms <= 0:
            raise InvalidConfigurationError("pad_ms must be positive")
        for slot in schedule.slots:
            if not 0 <= slot.start_time_ms < schedule.period_ms:
                raise InvalidConfigurationError(
                    f"Slot start {slot.start_time_ms} is outside the {schedule.period}",
                    slot_id=slot.id,
                )

    def _find_slot(
        self, slots: Sequence[TimeSlotImpl], offset_ms: int
    ) -> Tuple[TimeSlotImpl, int, int]:
        """
        Locate the slot containing `offset_ms`.

        Returns:
            (slot, remaining slot duration, lateness)
        """
        period_ms = self.schedule.period_ms
        for i, slot in enumerate(slots):
            if i == len(slots) - 1:
                end_ms = slots[0].start_time_ms + period_ms
            else:
                end_ms = slots[i + 1].start_time_ms

            if slot.start_time_ms <= offset_ms < end_ms:
                return slot, end_ms - offset_ms, offset_ms - slot.start_time_ms

            # The last slot wraps past the period boundary
            wrapped = offset_ms + period_ms
            if slot.start_time_ms <= wrapped < end_ms:
                return slot, end_ms - wrapped, wrapped - slot.start_time_ms

        raise InvalidConfigurationError(f"No slot covers offset {offset_ms}")

    def generate_schedule(
        self,
        programs: List[SchedulerProgram],
        seed: Optional[List[int]] = None,
        discard_count: int = 0,
        now_ms: Optional[int] = None,
    ) -> SlotScheduleResult:
        """
        Build the lineup for `max_days + 1` days from the current period.

        Args:
            programs: Pool of schedulable programs
            seed: Random seed words; fresh entropy when omitted
            discard_count: Draws to skip before scheduling
            now_ms: Reference "now", defaults to the wall clock

        Returns:
            SlotScheduleResult with the lineup and the stream position
        """
        self.validate()
        schedule = self.schedule
        random = RandomSource(seed, discard_count)

        iterators = create_program_iterators(
            schedule.slots,
            create_program_map(deduplicate_programs(list(programs))),
            random,
        )
        sorted_slots = [
            TimeSlotImpl(
                slot,
                iterators.get(slot_iterator_key(slot)),
                random,
                slot_filler_iterators(slot, iterators),
            )
            for slot in sorted(schedule.slots, key=lambda s: s.start_time_ms)
        ]
        slot_positions = {slot.id: i for i, slot in enumerate(sorted_slots)}

        now = now_ms if now_ms is not None else int(time.time() * 1000)
        period_start = start_of_period(now, schedule.period, schedule.time_zone_offset_minutes)
        t0 = period_start + sorted_slots[0].start_time_ms
        if schedule.start_tomorrow:
            t0 += ONE_DAY_MS
        upper_limit = t0 + (schedule.max_days + 1) * ONE_DAY_MS

        lineup: List[LineupProgram] = []
        selections: List[SlotSelection] = []
        cursor = t0
        pad_ms = schedule.pad_ms

        def push_flex(duration_ms: int) -> None:
            nonlocal cursor
            cursor += push_or_extend_flex(lineup, duration_ms)

        def push_program(program: Optional[LineupProgram]) -> None:
            nonlocal cursor
            if program is None:
                return
            lineup.append(program)
            cursor += program.duration_ms

        logger.debug(
            f"Building time slot lineup from {t0} to {upper_limit} "
            f"({len(sorted_slots)} slots, pad {pad_ms}ms)"
        )

        while cursor < upper_limit:
            m = cursor % pad_ms
            if m > SLACK_MS and pad_ms - m > SLACK_MS:
                push_flex(pad_ms - m)
                continue

            offset = (cursor - period_start) % schedule.period_ms
            slot, slot_duration, late_ms = self._find_slot(sorted_slots, offset)
            state = IterationState(slot_duration_ms=slot_duration, time_cursor_ms=cursor)
            program = slot.get_next_program(state)

            if late_ms >= schedule.lateness_ms + SLACK_MS:
                push_flex(slot_duration)
                continue

            if program is None or isinstance(program, FlexProgram):
                push_flex(slot_duration)
                continue

            selections.append(SlotSelection(slot.id, slot_positions[slot.id], cursor))

            if isinstance(program, RedirectProgram):
                program.duration_ms = slot_duration

            if program.duration_ms > slot_duration:
                push_program(program)
                slot.advance_iterator()
                continue

            padded = self._pack_slot(slot, program, slot_duration, cursor)
            for entry in padded:
                for item in entry.emission_order():
                    push_program(item)
                if entry.pad_ms > 0:
                    fallback = slot.get_filler_of_type(
                        FillerType.FALLBACK,
                        IterationState(slot_duration_ms=-1, time_cursor_ms=cursor),
                    )
                    if fallback is not None:
                        push_program(
                            FillerProgram(
                                program=fallback.program,
                                duration_ms=entry.pad_ms,
                                filler_list_id=fallback.filler_list_id,
                                filler_type=FillerType.FALLBACK.value,
                            )
                        )
                    else:
                        push_flex(entry.pad_ms)

        logger.info(
            f"Time slot lineup built: {len(lineup)} items, "
            f"{(cursor - t0) / ONE_DAY_MS:.1f} days, {random.use_count} draws"
        )
        return SlotScheduleResult(
            lineup=lineup,
            start_time_ms=t0,
            seed=random.seed,
            discard_count=random.use_count,
            selections=selections,
        )

    def _pack_slot(
        self,
        slot: TimeSlotImpl,
        first: LineupProgram,
        slot_duration: int,
        cursor: int,
    ) -> List[PaddedProgram]:
        """Fill one slot occurrence with as many padded programs as fit."""
        schedule = self.schedule
        attempts = schedule.filler_retry_attempts

        padded = create_padded_program(first, schedule.pad_ms)
        slot.advance_iterator()
        maybe_add_pre_post_filler(
            slot, padded, slot_duration - padded.total_duration_ms, cursor, attempts
        )
        programs = [padded]
        added = padded.total_duration_ms

        while True:
            state = IterationState(slot_duration_ms=slot_duration, time_cursor_ms=cursor + added)
            candidate = slot.get_next_program(state)
            if candidate is None or candidate.duration_ms <= 0:
                break
            if added + candidate.duration_ms > slot_duration:
                break
            next_padded = create_padded_program(candidate, schedule.pad_ms)
            programs.append(next_padded)
            slot.advance_iterator()
            maybe_add_pre_post_filler(
                slot, next_padded, slot_duration - next_padded.total_duration_ms, cursor + added, attempts
            )
            added += next_padded.total_duration_ms

        remaining = max(0, slot_duration - added)
        if slot.has_any_filler_settings():
            remaining = add_head_and_tail_filler_to_slot(remaining, slot, programs, cursor, attempts)

        if schedule.flex_preference == "distribute" and slot.type != SlotType.FILLER:
            distribute_flex(
                programs,
                schedule.pad_ms,
                max(0, slot_duration - sum(p.total_duration_ms for p in programs)),
            )
        else:
            programs[-1].pad_ms += max(0, remaining)

        return programs
