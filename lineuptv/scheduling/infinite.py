"""
Infinite schedule generator.

Extends a channel's rolling buffer of timestamped items from floating
slots whose random streams, iterator positions and shuffle orders are
persisted between runs. A run with the same persisted state always
produces the same items, and a run that starts where the previous one
stopped continues the same random streams.

The generator never writes. `generate()` and `preview()` return a
`GenerationResult` holding the new items plus the slot and schedule
state deltas; the caller commits them in one transaction.
"""

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from lineuptv.config import InfiniteScheduleConfig, get_config
from lineuptv.errors import EmptyPoolError, NotFoundError, UnparseableFilterError
from lineuptv.scheduling.constants import DEFAULT_PAD_MS, ONE_DAY_MS
from lineuptv.scheduling.iterators import PersistedOrderIterator
from lineuptv.scheduling.ports import ContentPoolProvider, SchedulePersistence
from lineuptv.scheduling.programs import SchedulerProgram
from lineuptv.scheduling.random_source import RandomSource, create_entropy
from lineuptv.scheduling.slots import CONTENT_ORDERS, SlotFiller, SlotOrder, SlotType

logger = logging.getLogger(__name__)

PREVIEW_SCHEDULE_ID = "preview"


# ============ Domain records ============


@dataclass
class SlotState:
    """Persisted per-slot position. One row per slot."""

    rng_seed: Optional[List[int]] = None
    rng_use_count: int = 0
    iterator_position: int = 0
    shuffle_order: Optional[List[str]] = None
    fill_mode_count: int = 0
    fill_mode_duration_ms: int = 0
    last_scheduled_at_ms: Optional[int] = None


@dataclass
class ScheduleState:
    """Persisted per-schedule position. One row per schedule."""

    last_slot_index: Optional[int] = None
    rotation_cursor: int = 0
    generation_cursor_ms: Optional[int] = None
    selection_rng_seed: Optional[List[int]] = None
    selection_rng_use_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_slot_index": self.last_slot_index,
            "rotation_cursor": self.rotation_cursor,
            "generation_cursor_ms": self.generation_cursor_ms,
            "selection_rng_seed": self.selection_rng_seed,
            "selection_rng_use_count": self.selection_rng_use_count,
        }


@dataclass
class InfiniteSlotDef:
    """
    A slot of an infinite schedule.

    Slots with an `anchor_time_ms` are time-anchored and are not part of
    the floating rotation.
    """

    slot_index: int
    type: SlotType
    id: Optional[str] = None
    show_id: Optional[str] = None
    custom_show_id: Optional[str] = None
    filler_list_id: Optional[str] = None
    redirect_channel_id: Optional[str] = None
    smart_collection_id: Optional[str] = None
    order: str = SlotOrder.NEXT.value
    direction: str = "asc"
    season_filter: Optional[List[int]] = None
    anchor_time_ms: Optional[int] = None
    anchor_mode: Optional[str] = None
    anchor_days: Optional[List[int]] = None
    weight: int = 1
    cooldown_ms: int = 0
    fill_mode: str = "fill"  # fill | count | duration
    fill_value: Optional[int] = None
    pad_ms: Optional[int] = None
    pad_to_multiple: Optional[int] = None
    filler: List[SlotFiller] = field(default_factory=list)
    state: Optional[SlotState] = None

    def __post_init__(self):
        self.type = SlotType(self.type)


@dataclass
class InfiniteScheduleDef:
    channel_id: str
    id: Optional[str] = None
    name: Optional[str] = None
    pad_ms: int = DEFAULT_PAD_MS
    flex_preference: str = "end"
    time_zone_offset_minutes: int = 0
    buffer_days: int = 7
    buffer_threshold_days: int = 2
    enabled: bool = True
    slot_selection: Optional[str] = None  # Overrides infinite.slot_selection
    slots: List[InfiniteSlotDef] = field(default_factory=list)
    state: Optional[ScheduleState] = None


@dataclass
class GeneratedScheduleItem:
    """One emitted buffer item. Equality ignores the item id."""

    schedule_id: str
    item_type: str  # content | filler | redirect | flex | offline
    start_time_ms: int
    duration_ms: int
    sequence_index: int
    slot_id: Optional[str] = None
    program_id: Optional[str] = None
    redirect_channel_id: Optional[str] = None
    filler_list_id: Optional[str] = None
    filler_type: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)

    @property
    def end_time_ms(self) -> int:
        return self.start_time_ms + self.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "slot_id": self.slot_id,
            "program_id": self.program_id,
            "item_type": self.item_type,
            "start_time_ms": self.start_time_ms,
            "duration_ms": self.duration_ms,
            "redirect_channel_id": self.redirect_channel_id,
            "filler_list_id": self.filler_list_id,
            "filler_type": self.filler_type,
            "sequence_index": self.sequence_index,
        }


@dataclass
class SlotStateUpdate:
    """New persisted state for a slot touched by a run."""

    iterator_position: int
    rng_seed: List[int]
    rng_use_count: int
    shuffle_order: Optional[List[str]] = None
    fill_mode_count: int = 0
    fill_mode_duration_ms: int = 0
    last_scheduled_at_ms: Optional[int] = None


@dataclass
class GenerationResult:
    schedule_id: str
    items: List[GeneratedScheduleItem]
    from_time_ms: int
    to_time_ms: int
    slot_states: Dict[str, SlotStateUpdate] = field(default_factory=dict)
    schedule_state: Optional[ScheduleState] = None
    escape_valve_count: int = 0

    @property
    def end_time_ms(self) -> int:
        return self.items[-1].end_time_ms if self.items else self.from_time_ms


# ============ Generation ============


class _SlotRun:
    """A floating slot with its pool, restored iterator and random stream."""

    def __init__(self, slot: InfiniteSlotDef, programs: List[SchedulerProgram]):
        state = slot.state or SlotState()
        self.slot = slot
        self.programs = programs
        self.random = RandomSource(state.rng_seed or create_entropy(), state.rng_use_count)
        self.fill_mode_count = state.fill_mode_count
        self.fill_mode_duration_ms = state.fill_mode_duration_ms
        self.last_scheduled_at_ms = state.last_scheduled_at_ms
        self.touched = state.rng_seed is None
        self.iterator: Optional[PersistedOrderIterator] = None

        if slot.type not in (SlotType.FLEX, SlotType.REDIRECT):
            self.iterator = PersistedOrderIterator(
                programs,
                _iteration_order(slot),
                self.random,
                key=_custom_show_key(slot) if slot.type == SlotType.CUSTOM_SHOW else None,
                ascending=slot.direction != "desc",
                stored_order=state.shuffle_order,
                position=state.iterator_position,
            )
            if self.iterator.order_changed:
                self.touched = True

    def in_cooldown(self, cursor_ms: int) -> bool:
        if self.slot.cooldown_ms <= 0 or self.last_scheduled_at_ms is None:
            return False
        return cursor_ms - self.last_scheduled_at_ms < self.slot.cooldown_ms

    def cooldown_expires_at(self) -> int:
        if self.last_scheduled_at_ms is None:
            return 0
        return self.last_scheduled_at_ms + self.slot.cooldown_ms

    def fill_in_progress(self) -> bool:
        if self.slot.fill_mode == "count":
            return 0 < self.fill_mode_count < (self.slot.fill_value or 1)
        if self.slot.fill_mode == "duration":
            return 0 < self.fill_mode_duration_ms < (self.slot.fill_value or 0)
        return False

    def record_play(self, duration_ms: int) -> bool:
        """
        Update the fill counters for one emitted item.

        Returns:
            True when the slot's fill run is complete
        """
        mode = self.slot.fill_mode
        if mode == "count":
            self.fill_mode_count += 1
            if self.fill_mode_count >= max(1, self.slot.fill_value or 1):
                self.fill_mode_count = 0
                return True
            return False
        if mode == "duration":
            self.fill_mode_duration_ms += duration_ms
            if self.fill_mode_duration_ms >= (self.slot.fill_value or 0):
                self.fill_mode_duration_ms = 0
                return True
            return False
        return True

    def state_update(self) -> SlotStateUpdate:
        return SlotStateUpdate(
            iterator_position=self.iterator.position if self.iterator else 0,
            rng_seed=list(self.random.seed),
            rng_use_count=self.random.use_count,
            shuffle_order=self.iterator.shuffle_order if self.iterator else None,
            fill_mode_count=self.fill_mode_count,
            fill_mode_duration_ms=self.fill_mode_duration_ms,
            last_scheduled_at_ms=self.last_scheduled_at_ms,
        )


def _iteration_order(slot: InfiniteSlotDef) -> str:
    # Filler slots may carry a filler ordering; play those shuffled
    if slot.order not in CONTENT_ORDERS:
        return SlotOrder.SHUFFLE.value
    if slot.type == SlotType.CUSTOM_SHOW and slot.order in (
        SlotOrder.ALPHANUMERIC.value,
        SlotOrder.CHRONOLOGICAL.value,
    ):
        return SlotOrder.NEXT.value
    return slot.order


def _custom_show_key(slot: InfiniteSlotDef) -> Callable[[SchedulerProgram], int]:
    def by_index(program: SchedulerProgram) -> int:
        index = program.custom_show_index(slot.custom_show_id)
        return index if index is not None else 0

    return by_index


def default_preview_seed(schedule_def: InfiniteScheduleDef) -> List[int]:
    """
    Derive a stable seed from a schedule definition.

    Used by previews that are not given a seed, so the same definition
    always previews the same lineup.
    """
    digest = hashlib.sha256()
    digest.update(f"{schedule_def.id or PREVIEW_SCHEDULE_ID}|{schedule_def.channel_id}".encode())
    for slot in sorted(schedule_def.slots, key=lambda s: s.slot_index):
        parts = (
            slot.slot_index,
            slot.type.value,
            slot.show_id,
            slot.custom_show_id,
            slot.filler_list_id,
            slot.smart_collection_id,
            slot.redirect_channel_id,
            slot.order,
        )
        digest.update("|".join(str(part) for part in parts).encode())
    raw = digest.digest()
    return [int.from_bytes(raw[i : i + 4], "big") for i in range(0, len(raw), 4)]


class InfiniteScheduleGenerator:
    """
    Builds buffer items for infinite schedules.

    Usage:
        generator = InfiniteScheduleGenerator(db, pools)
        result = generator.generate(schedule_id)
        service.commit(result)
    """

    def __init__(
        self,
        persistence: SchedulePersistence,
        pools: ContentPoolProvider,
        config: Optional[InfiniteScheduleConfig] = None,
    ):
        self.persistence = persistence
        self.pools = pools
        self.config = config or get_config().infinite

    def generate(
        self,
        schedule_id: str,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        now_ms: Optional[int] = None,
    ) -> GenerationResult:
        """
        Generate items for a persisted schedule.

        Args:
            schedule_id: Schedule to extend
            from_ms: Window start; defaults to the buffer end, or now when the
                buffer is empty or already behind
            to_ms: Window end; defaults to `from_ms + buffer_days`
            now_ms: Reference "now", defaults to the wall clock

        Returns:
            GenerationResult with items and state deltas, nothing persisted

        Raises:
            NotFoundError: If the schedule does not exist
        """
        schedule = self.persistence.load_schedule_with_state(schedule_id)
        if schedule is None:
            raise NotFoundError("InfiniteSchedule", schedule_id)

        now = now_ms if now_ms is not None else int(time.time() * 1000)
        if from_ms is None:
            buffer_end = self.persistence.get_buffer_end_time(schedule_id)
            from_ms = buffer_end if buffer_end is not None and buffer_end >= now else now
        if to_ms is None:
            to_ms = from_ms + schedule.buffer_days * ONE_DAY_MS

        logger.debug(
            f"Generating schedule {schedule_id} from {from_ms} to {to_ms} "
            f"({(to_ms - from_ms) / ONE_DAY_MS:.1f} days)"
        )

        runs = self._collect_slot_runs(schedule)
        return self._generate_items(
            schedule,
            runs,
            from_ms,
            to_ms,
            self.persistence.get_next_sequence_index(schedule_id),
        )

    def preview(
        self,
        schedule_def: InfiniteScheduleDef,
        from_ms: int,
        to_ms: int,
        seed: Optional[List[int]] = None,
    ) -> GenerationResult:
        """
        Run generation against a throwaway copy of `schedule_def`.

        The copy starts from empty state. It keeps the schedule id, or uses
        PREVIEW_SCHEDULE_ID, and slots without an id are named after their
        index. Every random stream is derived from `seed`, or from
        default_preview_seed() when none is given, so repeated previews
        match exactly.
        """
        if seed is None:
            seed = default_preview_seed(schedule_def)
        schedule_id = schedule_def.id or PREVIEW_SCHEDULE_ID
        slots = []
        for slot in schedule_def.slots:
            state = SlotState(rng_seed=list(seed) + [slot.slot_index])
            slot_id = slot.id or f"{schedule_id}-slot-{slot.slot_index}"
            slots.append(replace(slot, id=slot_id, state=state))

        schedule = replace(
            schedule_def,
            id=schedule_id,
            slots=slots,
            state=ScheduleState(selection_rng_seed=list(seed)),
        )
        runs = self._collect_slot_runs(schedule)
        return self._generate_items(schedule, runs, from_ms, to_ms, 0)

    # ---------- Pools ----------

    def _collect_slot_runs(self, schedule: InfiniteScheduleDef) -> List[_SlotRun]:
        runs = []
        for slot in sorted(schedule.slots, key=lambda s: s.slot_index):
            runs.append(_SlotRun(slot, self._programs_for_slot(slot)))
        return runs

    def _programs_for_slot(self, slot: InfiniteSlotDef) -> List[SchedulerProgram]:
        try:
            return self._resolve_pool(slot)
        except UnparseableFilterError as e:
            logger.warning(f"Slot {slot.id}: {e.message}; treating as empty")
        except EmptyPoolError as e:
            logger.warning(f"{e.message}; filling with flex")
        return []

    def _resolve_pool(self, slot: InfiniteSlotDef) -> List[SchedulerProgram]:
        resolve_extra = self.config.resolve_movie_and_smart_collection_pools

        if slot.type == SlotType.SHOW and slot.show_id:
            source = f"show {slot.show_id}"
            programs = self.pools.get_show_programs(slot.show_id, slot.season_filter)
        elif slot.type == SlotType.CUSTOM_SHOW and slot.custom_show_id:
            source = f"custom show {slot.custom_show_id}"
            programs = self.pools.get_custom_show_programs(slot.custom_show_id)
        elif slot.type == SlotType.FILLER and slot.filler_list_id:
            source = f"filler list {slot.filler_list_id}"
            programs = self.pools.get_filler_list_programs(slot.filler_list_id)
        elif slot.type == SlotType.SMART_COLLECTION and slot.smart_collection_id:
            if not resolve_extra:
                logger.debug(f"Slot {slot.id}: smart collection pools are disabled")
                return []
            source = f"smart collection {slot.smart_collection_id}"
            programs = self.pools.get_smart_collection_programs(slot.smart_collection_id)
        elif slot.type == SlotType.MOVIE:
            if not resolve_extra:
                logger.debug(f"Slot {slot.id}: movie pools are disabled")
                return []
            source = "movies"
            programs = self.pools.get_movie_programs()
        else:
            return []

        if not programs:
            raise EmptyPoolError(slot.id, source)
        return programs

    # ---------- Selection ----------

    def _selection_mode(self, schedule: InfiniteScheduleDef) -> str:
        return schedule.slot_selection or self.config.slot_selection

    def _select_round_robin(
        self, runs: List[_SlotRun], state: ScheduleState, cursor_ms: int
    ) -> Optional[int]:
        count = len(runs)
        for offset in range(count):
            index = (state.rotation_cursor + offset) % count
            if not runs[index].in_cooldown(cursor_ms):
                state.rotation_cursor = (index + 1) % count
                return index
        return None

    def _select_weighted(
        self, runs: List[_SlotRun], random: RandomSource, cursor_ms: int
    ) -> Optional[int]:
        total_weight = 0
        chosen = None
        first_eligible = None
        for index, run in enumerate(runs):
            if run.in_cooldown(cursor_ms):
                continue
            if first_eligible is None:
                first_eligible = index
            total_weight += run.slot.weight
            if random.bool(run.slot.weight, total_weight):
                chosen = index
        return chosen if chosen is not None else first_eligible

    def _escape_valve(self, runs: List[_SlotRun], cursor_ms: int) -> int:
        index = min(range(len(runs)), key=lambda i: (runs[i].cooldown_expires_at(), i))
        logger.warning(
            f"All {len(runs)} slots in cooldown at {cursor_ms}; "
            f"playing slot {runs[index].slot.slot_index} early"
        )
        return index

    # ---------- Item loop ----------

    def _generate_items(
        self,
        schedule: InfiniteScheduleDef,
        runs: List[_SlotRun],
        from_ms: int,
        to_ms: int,
        first_sequence_index: int,
    ) -> GenerationResult:
        schedule_state = replace(schedule.state) if schedule.state else ScheduleState()
        result = GenerationResult(
            schedule_id=schedule.id,
            items=[],
            from_time_ms=from_ms,
            to_time_ms=to_ms,
            schedule_state=schedule_state,
        )

        floating = [run for run in runs if run.slot.anchor_time_ms is None]
        if not floating:
            logger.warning(f"No floating slots found in schedule {schedule.id}")
            return result

        if schedule_state.selection_rng_seed is None:
            schedule_state.selection_rng_seed = create_entropy()
        selection_random = RandomSource(
            schedule_state.selection_rng_seed, schedule_state.selection_rng_use_count
        )
        weighted = self._selection_mode(schedule) == "weighted"
        by_slot_index = {run.slot.slot_index: i for i, run in enumerate(floating)}

        cursor = from_ms
        sequence_index = first_sequence_index
        items = result.items

        def emit(item_type: str, duration_ms: int, run: Optional[_SlotRun] = None, **extra) -> None:
            nonlocal cursor, sequence_index
            if duration_ms <= 0:
                return
            items.append(
                GeneratedScheduleItem(
                    schedule_id=schedule.id,
                    item_type=item_type,
                    start_time_ms=cursor,
                    duration_ms=duration_ms,
                    sequence_index=sequence_index,
                    slot_id=run.slot.id if run else None,
                    **extra,
                )
            )
            sequence_index += 1
            cursor += duration_ms

        while cursor < to_ms:
            index = None
            continuing = schedule_state.last_slot_index in by_slot_index and floating[
                by_slot_index[schedule_state.last_slot_index]
            ].fill_in_progress()

            if continuing:
                index = by_slot_index[schedule_state.last_slot_index]
            elif weighted:
                index = self._select_weighted(floating, selection_random, cursor)
            else:
                index = self._select_round_robin(floating, schedule_state, cursor)

            if index is None:
                index = self._escape_valve(floating, cursor)
                result.escape_valve_count += 1
                if not weighted:
                    schedule_state.rotation_cursor = (index + 1) % len(floating)

            run = floating[index]
            slot = run.slot
            schedule_state.last_slot_index = slot.slot_index
            if not continuing:
                run.last_scheduled_at_ms = cursor
            run.touched = True
            pad_ms = slot.pad_ms if slot.pad_ms is not None else schedule.pad_ms
            if pad_ms <= 0:
                pad_ms = DEFAULT_PAD_MS

            if slot.type == SlotType.REDIRECT:
                emit("redirect", pad_ms, run, redirect_channel_id=slot.redirect_channel_id)
                continue
            if slot.type == SlotType.FLEX:
                emit("flex", pad_ms)
                continue

            program = run.iterator.current() if run.iterator else None
            if program is not None and program.duration_ms <= 0:
                run.iterator.next()
                program = None
            if program is None:
                logger.debug(
                    f"Slot {slot.id} ({slot.type.value}) has no programs; filling with flex"
                )
                emit("flex", pad_ms)
                run.record_play(pad_ms)
                continue

            multiple = slot.pad_to_multiple or 0
            if multiple > 0 and cursor % multiple:
                emit("flex", multiple - cursor % multiple)

            emit(
                "filler" if slot.type == SlotType.FILLER else "content",
                program.duration_ms,
                run,
                program_id=program.id,
                filler_list_id=slot.filler_list_id if slot.type == SlotType.FILLER else None,
            )

            if multiple > 0 and program.duration_ms % multiple:
                emit("flex", multiple - program.duration_ms % multiple)

            run.iterator.next()
            run.record_play(program.duration_ms)

        schedule_state.generation_cursor_ms = cursor
        schedule_state.selection_rng_use_count = selection_random.use_count
        result.slot_states = {
            run.slot.id: run.state_update() for run in runs if run.touched and run.slot.id
        }

        logger.info(
            f"Generated {len(items)} items for schedule {schedule.id} "
            f"({len(result.slot_states)} slot states changed)"
        )
        return result
