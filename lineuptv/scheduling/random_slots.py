"""
Random Slot Scheduler for floating, weight-driven programming.

Slots have no fixed time of day. At each pad boundary one slot wins a
weighted draw among the slots not in cooldown and contributes either a
fixed block of time or a fixed number of programs.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from lineuptv.config import SchedulingConfig, get_config
from lineuptv.scheduling.constants import DEFAULT_PAD_MS, MAX_COOLDOWN_WAIT_MS, ONE_DAY_MS, SLACK_MS
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
from lineuptv.scheduling.slot_impl import RandomSlotImpl
from lineuptv.scheduling.slots import (
    DynamicDuration,
    FillerType,
    FixedDuration,
    RandomSlot,
    slot_iterator_key,
    validate_random_slots,
)

logger = logging.getLogger(__name__)


@dataclass
class RandomSlotSchedule:
    """A set of floating slots competing by weight."""

    slots: List[RandomSlot]
    pad_ms: int = DEFAULT_PAD_MS
    pad_style: str = "episode"  # slot | episode
    flex_preference: str = "end"  # distribute | end
    max_days: int = 7
    random_distribution: str = "weighted"  # uniform | weighted | none
    filler_retry_attempts: int = 3

    @classmethod
    def from_config(
        cls, slots: List[RandomSlot], config: Optional[SchedulingConfig] = None, **kwargs
    ) -> "RandomSlotSchedule":
        config = config or get_config().scheduling
        kwargs.setdefault("pad_ms", config.default_pad_ms)
        kwargs.setdefault("max_days", config.max_days)
        kwargs.setdefault("filler_retry_attempts", config.filler_retry_attempts)
        return cls(slots=slots, **kwargs)


class _ScheduleContext:
    """Mutable state of one scheduling run."""

    def __init__(
        self,
        schedule: RandomSlotSchedule,
        programs: List[SchedulerProgram],
        start_time_ms: int,
        random: RandomSource,
        slot_last_played: Optional[Dict[int, int]] = None,
    ):
        self.random = random
        self.start_time_ms = start_time_ms
        self.cursor = start_time_ms
        self.lineup: List[LineupProgram] = []
        self.selections: List[SlotSelection] = []
        self.slot_last_played: Dict[int, int] = dict(slot_last_played or {})
        self._next_sequential = 0

        iterators = create_program_iterators(
            schedule.slots,
            create_program_map(deduplicate_programs(list(programs))),
            random,
        )
        ordered = sorted(
            enumerate(schedule.slots),
            key=lambda pair: pair[1].index if pair[1].index is not None else pair[0],
        )
        self.sorted_slots = [
            RandomSlotImpl(
                slot,
                iterators.get(slot_iterator_key(slot)),
                random,
                slot_filler_iterators(slot, iterators),
            )
            for _, slot in ordered
        ]

    def push_flex(self, duration_ms: int) -> None:
        self.cursor += push_or_extend_flex(self.lineup, duration_ms)

    def push_program(self, program: Optional[LineupProgram]) -> None:
        if program is not None:
            self.lineup.append(program)

    def next_program(self, slot: RandomSlotImpl, slot_duration_ms: Optional[int] = None):
        if slot_duration_ms is None:
            spec = slot.duration_spec
            slot_duration_ms = spec.duration_ms if isinstance(spec, FixedDuration) else -1
        return slot.get_next_program(
            IterationState(slot_duration_ms=slot_duration_ms, time_cursor_ms=self.cursor)
        )

    def next_sequential_slot(self) -> Tuple[int, RandomSlotImpl]:
        index = self._next_sequential
        self._next_sequential = (index + 1) % len(self.sorted_slots)
        return index, self.sorted_slots[index]

    def record_selection(self, index: int) -> None:
        slot = self.sorted_slots[index]
        self.slot_last_played[index] = self.cursor
        self.selections.append(SlotSelection(slot.id, index, self.cursor))


class RandomSlotScheduler:
    """
    Builds a lineup from weighted floating slots.

    Usage:
        scheduler = RandomSlotScheduler(schedule)
        result = scheduler.generate_schedule(programs, seed=seed, discard_count=n)
    """

    def __init__(self, schedule: RandomSlotSchedule):
        self.schedule = schedule

    def validate(self) -> None:
        validate_random_slots(self.schedule.slots)

    def generate_schedule(
        self,
        programs: List[SchedulerProgram],
        seed: Optional[List[int]] = None,
        discard_count: int = 0,
        start_time_ms: Optional[int] = None,
        slot_last_played: Optional[Dict[int, int]] = None,
    ) -> SlotScheduleResult:
        """
        Build `max_days + 1` days of lineup starting at `start_time_ms`.

        Args:
            programs: Pool of schedulable programs
            seed: Random seed words; fresh entropy when omitted
            discard_count: Draws to skip before scheduling
            start_time_ms: Lineup start, defaults to now
            slot_last_played: Prior selection times keyed by sorted slot index

        Returns:
            SlotScheduleResult including the selections made
        """
        self.validate()
        schedule = self.schedule
        random = RandomSource(seed, discard_count)
        t0 = start_time_ms if start_time_ms is not None else int(time.time() * 1000)
        context = _ScheduleContext(schedule, programs, t0, random, slot_last_played)

        pad_ms = schedule.pad_ms
        upper_limit = t0 + (schedule.max_days + 1) * ONE_DAY_MS

        while context.cursor < upper_limit:
            m = context.cursor % pad_ms
            if m > SLACK_MS and pad_ms - m > SLACK_MS:
                context.push_flex(pad_ms - m)
                continue

            if schedule.random_distribution == "none":
                index, slot = context.next_sequential_slot()
                min_next_time = context.cursor + MAX_COOLDOWN_WAIT_MS
            else:
                index, slot, min_next_time = self._random_slot(context)

            if slot is None:
                wait_ms = min_next_time - context.cursor
                context.push_flex(wait_ms if wait_ms > 0 else pad_ms)
                continue

            context.record_selection(index)

            if isinstance(slot.duration_spec, DynamicDuration):
                padded = self._handle_dynamic_slot(slot, context)
            else:
                padded = self._handle_fixed_slot(slot, context)
            if not padded:
                continue

            self._distribute_remaining(padded, context.cursor)

            if self._emit(slot, padded, context, upper_limit):
                break

        logger.info(
            f"Random slot lineup built: {len(context.lineup)} items, "
            f"{len(context.selections)} selections, {random.use_count} draws"
        )
        return SlotScheduleResult(
            lineup=context.lineup,
            start_time_ms=t0,
            seed=random.seed,
            discard_count=random.use_count,
            selections=context.selections,
            slot_last_played=context.slot_last_played,
        )

    def _random_slot(
        self, context: _ScheduleContext
    ) -> Tuple[Optional[int], Optional[RandomSlotImpl], int]:
        """
        Weighted draw among slots out of cooldown.

        Returns:
            (index, slot, earliest time any cooled-down slot becomes eligible)
        """
        total_weight = 0.0
        chosen: Tuple[Optional[int], Optional[RandomSlotImpl]] = (None, None)
        min_next_time = context.cursor + MAX_COOLDOWN_WAIT_MS

        for i, slot in enumerate(context.sorted_slots):
            last_played = context.slot_last_played.get(i)
            if last_played is not None:
                min_next_time = min(min_next_time, last_played + slot.cooldown_ms)
                if context.cursor - last_played < slot.cooldown_ms - SLACK_MS:
                    continue

            total_weight += slot.weight
            if context.random.bool(slot.weight, total_weight):
                chosen = (i, slot)

        return chosen[0], chosen[1], min_next_time

    def _padded(self, program: LineupProgram) -> PaddedProgram:
        return create_padded_program(
            program, 1 if self.schedule.pad_style == "slot" else self.schedule.pad_ms
        )

    def _handle_fixed_slot(
        self, slot: RandomSlotImpl, context: _ScheduleContext
    ) -> Optional[List[PaddedProgram]]:
        slot_duration = slot.duration_spec.duration_ms
        attempts = self.schedule.filler_retry_attempts

        program = context.next_program(slot)
        if program is None or isinstance(program, FlexProgram):
            context.push_flex(slot_duration)
            return None

        if isinstance(program, RedirectProgram):
            program.duration_ms = slot_duration

        if program.duration_ms > slot_duration:
            context.push_program(program)
            slot.advance_iterator()
            context.cursor += program.duration_ms
            return None

        padded = self._padded(program)
        maybe_add_pre_post_filler(
            slot, padded, slot_duration - padded.total_duration_ms, context.cursor, attempts
        )
        total = padded.total_duration_ms
        slot.advance_iterator()
        programs = [padded]

        while True:
            candidate = context.next_program(slot)
            if candidate is None or candidate.duration_ms <= 0:
                break
            if total + candidate.duration_ms > slot_duration:
                break
            next_padded = self._padded(candidate)
            programs.append(next_padded)
            slot.advance_iterator()
            maybe_add_pre_post_filler(
                slot,
                next_padded,
                slot_duration - next_padded.total_duration_ms,
                context.cursor + total,
                attempts,
            )
            total += next_padded.total_duration_ms

        if slot.has_any_filler_settings():
            add_head_and_tail_filler_to_slot(slot_duration - total, slot, programs, context.cursor, attempts)
        return programs

    def _handle_dynamic_slot(
        self, slot: RandomSlotImpl, context: _ScheduleContext
    ) -> Optional[List[PaddedProgram]]:
        programs: List[PaddedProgram] = []
        any_length = IterationState(slot_duration_ms=-1, time_cursor_ms=context.cursor)

        for _ in range(slot.duration_spec.program_count):
            program = context.next_program(slot, -1)
            if program is None:
                continue
            padded = self._padded(program)
            programs.append(padded)
            for filler_type in (FillerType.PRE, FillerType.POST):
                filler = slot.get_filler_of_type(filler_type, any_length)
                if filler is not None:
                    padded.filler[filler_type] = filler
            slot.advance_iterator()

        if not programs:
            return None

        head = slot.get_filler_of_type(FillerType.HEAD, any_length)
        if head is not None:
            programs[0].filler[FillerType.HEAD] = head
        tail = slot.get_filler_of_type(FillerType.TAIL, any_length)
        if tail is not None:
            programs[-1].filler[FillerType.TAIL] = tail
        return programs

    def _distribute_remaining(self, programs: List[PaddedProgram], cursor: int) -> None:
        """Round the block up to the next pad boundary using the flex preference."""
        schedule = self.schedule
        pad_ms = schedule.pad_ms

        block_end = cursor + sum(p.total_duration_ms for p in programs)
        residue = block_end % pad_ms
        remaining = 0
        if SLACK_MS <= residue < pad_ms - SLACK_MS:
            remaining = pad_ms - residue

        if schedule.flex_preference == "distribute" and schedule.pad_style == "episode":
            distribute_flex(programs, pad_ms, remaining)
        elif schedule.flex_preference == "distribute":
            content = [p for p in programs if p.program.type != "filler"]
            if not content:
                programs[-1].pad_ms += remaining
                return
            share = remaining // len(programs)
            for p in content:
                p.pad_ms += share
            content[0].pad_ms += remaining - share * len(content)
        else:
            programs[-1].pad_ms += remaining

    def _emit(
        self,
        slot: RandomSlotImpl,
        programs: List[PaddedProgram],
        context: _ScheduleContext,
        upper_limit: int,
    ) -> bool:
        """
        Write a packed block to the lineup.

        Returns:
            True once the lineup has reached `upper_limit`
        """
        for entry in programs:
            if context.cursor + entry.program.duration_ms > upper_limit:
                return True

            for item in entry.emission_order():
                context.push_program(item)
            context.cursor += entry.total_duration_ms - entry.pad_ms

            if context.cursor + entry.pad_ms > upper_limit:
                return True

            if entry.pad_ms > SLACK_MS:
                fallback = slot.get_filler_of_type(
                    FillerType.FALLBACK,
                    IterationState(slot_duration_ms=-1, time_cursor_ms=context.cursor),
                )
                if fallback is not None:
                    context.push_program(
                        FillerProgram(
                            program=fallback.program,
                            duration_ms=entry.pad_ms,
                            filler_list_id=fallback.filler_list_id,
                            filler_type=FillerType.FALLBACK.value,
                        )
                    )
                    context.cursor += entry.pad_ms
                else:
                    context.push_flex(entry.pad_ms)
            elif entry.pad_ms > 0:
                context.push_flex(entry.pad_ms)
        return False
