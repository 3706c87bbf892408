"""
Program iterators for slot scheduling.

An iterator hands out "the next program" from a fixed pool. `current()`
peeks and is idempotent until `next()` is called; `next()` advances.
Every iterator can export and re-import its position via
`get_state()` / `restore_state()`.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from lineuptv.errors import InvalidConfigurationError
from lineuptv.scheduling.programs import (
    FlexProgram,
    ProgramMap,
    RedirectProgram,
    SchedulerProgram,
    get_program_orderer,
    sort_programs,
)
from lineuptv.scheduling.random_source import RandomSource
from lineuptv.scheduling.slots import (
    DurationWeighting,
    FillerOrder,
    Slot,
    SlotOrder,
    SlotType,
    filler_iterator_key,
    slot_iterator_key,
    validate_slot,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class IterationState:
    """
    Where the scheduler is when it asks for a program.

    A negative `slot_duration_ms` means "any length fits".
    """

    slot_duration_ms: int
    time_cursor_ms: int


class ProgramIterator(ABC, Generic[T]):
    """Base class for program iterators."""

    @abstractmethod
    def current(self, state: Optional[IterationState] = None) -> Optional[T]:
        """Peek at the program that would play next."""

    @abstractmethod
    def next(self) -> None:
        """Advance past the current program."""

    def reset(self) -> None:
        """Return to the initial position."""

    def get_state(self) -> Dict[str, Any]:
        return {}

    def restore_state(self, state: Dict[str, Any]) -> None:
        pass


class StaticProgramIterator(ProgramIterator[T]):
    """Returns the same program forever."""

    def __init__(self, program: T):
        self._program = program

    def current(self, state: Optional[IterationState] = None) -> Optional[T]:
        return self._program

    def next(self) -> None:
        pass


class FlexProgramIterator(ProgramIterator[FlexProgram]):
    """Returns flex stretched to whatever time the slot has left."""

    def current(self, state: Optional[IterationState] = None) -> Optional[FlexProgram]:
        duration = state.slot_duration_ms if state and state.slot_duration_ms > 0 else 0
        return FlexProgram(duration_ms=duration)

    def next(self) -> None:
        pass


class _PositionalIterator(ProgramIterator[SchedulerProgram]):
    """Shared position bookkeeping for list-backed iterators."""

    def __init__(self, programs: List[SchedulerProgram]):
        self._programs = programs
        self._position = 0

    @property
    def programs(self) -> List[SchedulerProgram]:
        return self._programs

    @property
    def position(self) -> int:
        return self._position

    def current(self, state: Optional[IterationState] = None) -> Optional[SchedulerProgram]:
        if not self._programs:
            return None
        return self._programs[self._position]

    def next(self) -> None:
        if self._programs:
            self._position = (self._position + 1) % len(self._programs)

    def reset(self) -> None:
        self._position = 0

    def get_state(self) -> Dict[str, Any]:
        return {"position": self._position}

    def restore_state(self, state: Dict[str, Any]) -> None:
        position = int(state.get("position", 0))
        self._position = position % len(self._programs) if self._programs else 0

    def _reorder(self, program_ids: List[str]) -> bool:
        by_id = {p.id: p for p in self._programs}
        if len(program_ids) != len(by_id) or set(program_ids) != set(by_id):
            return False
        self._programs = [by_id[pid] for pid in program_ids]
        return True


class OrderedProgramIterator(_PositionalIterator):
    """Plays a pool in a fixed sort order, wrapping at the end."""

    def __init__(
        self,
        programs: List[SchedulerProgram],
        key: Callable[[SchedulerProgram], Any],
        ascending: bool = True,
    ):
        super().__init__(sort_programs(programs, key, ascending))


class ShuffleProgramIterator(_PositionalIterator):
    """
    Plays a random permutation of the pool.

    When the permutation is exhausted it is rotated at its midpoint rather
    than reshuffled, so the same program never opens two cycles in a row.
    """

    def __init__(self, programs: List[SchedulerProgram], random: RandomSource):
        self._random = random
        super().__init__(list(random.shuffle(list(programs))))

    def next(self) -> None:
        if not self._programs:
            return
        self._position += 1
        if self._position >= len(self._programs):
            mid = len(self._programs) // 2
            self._programs = self._programs[mid:] + self._programs[:mid]
            self._position = 0

    def reset(self) -> None:
        self._programs = list(self._random.shuffle(list(self._programs)))
        self._position = 0

    def get_state(self) -> Dict[str, Any]:
        return {"position": self._position, "order": [p.id for p in self._programs]}

    def restore_state(self, state: Dict[str, Any]) -> None:
        order = state.get("order")
        if order and not self._reorder(list(order)):
            logger.debug("Stored shuffle order no longer matches pool; keeping fresh shuffle")
        super().restore_state(state)


class ChunkedShuffleProgramIterator(_PositionalIterator):
    """Sorted pool rotated to a random starting point."""

    def __init__(
        self,
        programs: List[SchedulerProgram],
        key: Callable[[SchedulerProgram], Any],
        ascending: bool,
        random: RandomSource,
    ):
        ordered = sort_programs(programs, key, ascending)
        self._offset = random.integer(0, len(ordered)) if ordered else 0
        super().__init__(ordered[self._offset:] + ordered[: self._offset])

    def get_state(self) -> Dict[str, Any]:
        return {"position": self._position, "offset": self._offset}


class PersistedOrderIterator(_PositionalIterator):
    """
    List iterator whose play order survives between generation runs.

    For shuffle orderings a stored order is reused while it still covers
    exactly the current pool; otherwise a new one is drawn from `random`.
    A shuffle order is redrawn each time it is played through.
    """

    def __init__(
        self,
        programs: List[SchedulerProgram],
        order: str,
        random: RandomSource,
        key: Optional[Callable[[SchedulerProgram], Any]] = None,
        ascending: bool = True,
        stored_order: Optional[List[str]] = None,
        position: int = 0,
    ):
        self._order = order
        self._random = random
        self.order_changed = False

        if order in (SlotOrder.SHUFFLE.value, SlotOrder.ORDERED_SHUFFLE.value):
            super().__init__(sort_programs(programs, key or get_program_orderer("next"), ascending))
            if not (stored_order and len(stored_order) == len(programs) and self._reorder(list(stored_order))):
                self._draw_order()
        else:
            super().__init__(sort_programs(programs, key or get_program_orderer(order), ascending))

        self.restore_state({"position": position})

    @property
    def shuffle_order(self) -> Optional[List[str]]:
        if self._order in (SlotOrder.SHUFFLE.value, SlotOrder.ORDERED_SHUFFLE.value):
            return [p.id for p in self._programs]
        return None

    def _draw_order(self) -> None:
        if self._order == SlotOrder.SHUFFLE.value:
            self._programs = list(self._random.shuffle(list(self._programs)))
        elif self._programs:
            offset = self._random.integer(0, len(self._programs) - 1)
            self._programs = self._programs[offset:] + self._programs[:offset]
        self.order_changed = True

    def next(self) -> None:
        if not self._programs:
            return
        self._position += 1
        if self._position >= len(self._programs):
            self._position = 0
            if self._order == SlotOrder.SHUFFLE.value:
                self._draw_order()

    def get_state(self) -> Dict[str, Any]:
        return {"position": self._position, "order": self.shuffle_order}


@dataclass
class WeightedProgram:
    program: SchedulerProgram
    original_weight: float
    current_weight: float


class WeightedFillerProgramIterator(ProgramIterator[SchedulerProgram]):
    """
    Picks filler by duration weight, damped for recently chosen items.

    Only items that fit the requested slot window and were not picked
    within the last `slot_duration_ms` of schedule time are candidates.
    A pick multiplies that item's weight by `decay_factor`; every `next()`
    moves all weights back toward their originals by `recovery_factor`.
    """

    def __init__(
        self,
        programs: List[SchedulerProgram],
        order: FillerOrder,
        random: RandomSource,
        weighting: DurationWeighting = DurationWeighting.LINEAR,
        decay_factor: float = 0.5,
        recovery_factor: float = 0.05,
    ):
        if not programs:
            raise InvalidConfigurationError("Cannot schedule an empty filler list slot.")

        self._random = random
        self._decay_factor = decay_factor
        self._recovery_factor = recovery_factor
        self._last_seen: Dict[str, int] = {}
        self._pending: Optional[tuple] = None

        weights = _duration_weights(programs, FillerOrder(order), DurationWeighting(weighting))
        self._entries = [
            WeightedProgram(program=p, original_weight=weights[p.id], current_weight=weights[p.id])
            for p in sorted(programs, key=lambda p: p.duration_ms)
        ]
        self._max_duration = self._entries[-1].program.duration_ms

    @property
    def entries(self) -> List[WeightedProgram]:
        return self._entries

    def _candidates(self, state: Optional[IterationState]) -> List[WeightedProgram]:
        if state is None or state.slot_duration_ms < 0:
            return list(self._entries)

        limit = state.slot_duration_ms
        candidates = []
        for entry in self._entries:
            if entry.program.duration_ms > limit:
                break
            last_seen = self._last_seen.get(entry.program.id)
            if last_seen is not None and state.time_cursor_ms - last_seen < limit:
                continue
            candidates.append(entry)
        return candidates

    def current(self, state: Optional[IterationState] = None) -> Optional[SchedulerProgram]:
        key = (state.slot_duration_ms, state.time_cursor_ms) if state else None
        if self._pending is not None and self._pending[0] == key:
            return self._pending[1].program

        candidates = self._candidates(state)
        if not candidates:
            self._pending = None
            return None

        cumulative = []
        total = 0.0
        for entry in candidates:
            total += entry.current_weight
            cumulative.append(total)

        target = self._random.real(0, total)
        chosen = candidates[-1]
        for entry, threshold in zip(candidates, cumulative):
            if target < threshold:
                chosen = entry
                break

        cursor = state.time_cursor_ms if state else 0
        self._pending = (key, chosen, cursor)
        return chosen.program

    def next(self) -> None:
        if self._pending is not None:
            _, chosen, cursor = self._pending
            self._last_seen[chosen.program.id] = cursor
            chosen.current_weight *= self._decay_factor
            self._pending = None

        for entry in self._entries:
            entry.current_weight = min(
                entry.original_weight,
                entry.current_weight
                + (entry.original_weight - entry.current_weight) * self._recovery_factor,
            )

    def reset(self) -> None:
        self._pending = None
        for entry in self._entries:
            entry.current_weight = entry.original_weight

    def get_state(self) -> Dict[str, Any]:
        return {
            "weights": {e.program.id: e.current_weight for e in self._entries},
            "last_seen": dict(self._last_seen),
        }

    def restore_state(self, state: Dict[str, Any]) -> None:
        weights = state.get("weights") or {}
        for entry in self._entries:
            if entry.program.id in weights:
                entry.current_weight = float(weights[entry.program.id])
        self._last_seen = {k: int(v) for k, v in (state.get("last_seen") or {}).items()}
        self._pending = None


def _duration_weights(
    programs: List[SchedulerProgram],
    order: FillerOrder,
    weighting: DurationWeighting,
) -> Dict[str, float]:
    """Normalized static weights keyed by program id."""
    durations = {p.id: max(p.duration_ms, 1) for p in programs}
    longest = max(durations.values())

    if order == FillerOrder.SHUFFLE_PREFER_LONG:
        if weighting == DurationWeighting.LOG:
            raw = {pid: math.log(d + 1) for pid, d in durations.items()}
        else:
            raw = {pid: float(d) for pid, d in durations.items()}
    elif order == FillerOrder.SHUFFLE_PREFER_SHORT:
        if weighting == DurationWeighting.LOG:
            raw = {pid: math.log(longest + 1) - math.log(d + 1) + 1 for pid, d in durations.items()}
        else:
            raw = {pid: float(longest - d + 1) for pid, d in durations.items()}
    else:
        raw = {pid: 1.0 for pid in durations}

    total = sum(raw.values())
    if total <= 0:
        return {pid: 1.0 / len(raw) for pid in raw}
    return {pid: weight / total for pid, weight in raw.items()}


# ============ Iterator construction ============


def _content_iterator(
    programs: List[SchedulerProgram],
    slot: Slot,
    random: RandomSource,
) -> ProgramIterator:
    unique = list({p.id: p for p in programs}.values())
    if slot.order == SlotOrder.SHUFFLE.value:
        return ShuffleProgramIterator(unique, random)
    if slot.order == SlotOrder.ORDERED_SHUFFLE.value:
        return ChunkedShuffleProgramIterator(unique, get_program_orderer("next"), slot.ascending, random)
    return OrderedProgramIterator(unique, get_program_orderer(slot.order), slot.ascending)


def _custom_show_iterator(slot: Slot, program_map: ProgramMap, random: RandomSource) -> ProgramIterator:
    show_id = slot.custom_show_id
    programs = program_map.custom.get(show_id, [])

    def by_index(program: SchedulerProgram) -> int:
        index = program.custom_show_index(show_id)
        return index if index is not None else 0

    if slot.order == SlotOrder.SHUFFLE.value:
        return ShuffleProgramIterator(programs, random)
    if slot.order == SlotOrder.ORDERED_SHUFFLE.value:
        return ChunkedShuffleProgramIterator(programs, by_index, True, random)
    return OrderedProgramIterator(programs, by_index, True)


def _filler_iterator(
    filler_list_id: str,
    order: str,
    programs: List[SchedulerProgram],
    random: RandomSource,
    weighting: DurationWeighting = DurationWeighting.LINEAR,
    decay_factor: float = 0.5,
    recovery_factor: float = 0.05,
) -> ProgramIterator:
    if not programs:
        raise InvalidConfigurationError(
            "Cannot schedule an empty filler list slot.",
            details={"filler_list_id": filler_list_id},
        )
    if order == FillerOrder.UNIFORM.value:
        return ShuffleProgramIterator(programs, random)
    return WeightedFillerProgramIterator(
        programs,
        FillerOrder(order),
        random,
        weighting=weighting,
        decay_factor=decay_factor,
        recovery_factor=recovery_factor,
    )


_SLOT_ITERATOR_BUILDERS: Dict[SlotType, Callable[[Slot, ProgramMap, RandomSource], ProgramIterator]] = {
    SlotType.FLEX: lambda slot, pm, rnd: FlexProgramIterator(),
    SlotType.REDIRECT: lambda slot, pm, rnd: StaticProgramIterator(RedirectProgram(channel_id=slot.channel_id)),
    SlotType.CUSTOM_SHOW: _custom_show_iterator,
    SlotType.FILLER: lambda slot, pm, rnd: _filler_iterator(
        slot.filler_list_id,
        slot.order,
        pm.filler.get(slot.filler_list_id, []),
        rnd,
        weighting=slot.duration_weighting,
        decay_factor=slot.decay_factor,
        recovery_factor=slot.recovery_factor,
    ),
    SlotType.MOVIE: lambda slot, pm, rnd: _content_iterator(pm.content.get("movie", []), slot, rnd),
    SlotType.SHOW: lambda slot, pm, rnd: _content_iterator(
        pm.content.get(f"show.{slot.show_id}", []), slot, rnd
    ),
    SlotType.SMART_COLLECTION: lambda slot, pm, rnd: _content_iterator(
        pm.smart_collection.get(slot.smart_collection_id, []), slot, rnd
    ),
}


def create_program_iterators(
    slots: List[Slot],
    program_map: ProgramMap,
    random: RandomSource,
) -> Dict[str, ProgramIterator]:
    """
    Build one iterator per distinct slot target and per attached filler list.

    Args:
        slots: The schedule's slots
        program_map: Pool grouped by `create_program_map`
        random: Random source shared by every iterator of this run

    Returns:
        Mapping of iterator key to iterator

    Raises:
        InvalidConfigurationError: On bad orderings or empty filler lists
    """
    iterators: Dict[str, ProgramIterator] = {}

    for slot in slots:
        validate_slot(slot)
        key = slot_iterator_key(slot)
        if key not in iterators:
            iterators[key] = _SLOT_ITERATOR_BUILDERS[slot.type](slot, program_map, random)

    seen_lists = set()
    for slot in slots:
        if not slot.may_have_filler():
            continue
        for filler in slot.filler:
            if filler.filler_list_id in seen_lists:
                continue
            seen_lists.add(filler.filler_list_id)
            key = filler_iterator_key(filler.filler_list_id, filler.filler_order)
            if key in iterators:
                continue
            iterators[key] = _filler_iterator(
                filler.filler_list_id,
                FillerOrder(filler.filler_order).value,
                program_map.filler.get(filler.filler_list_id, []),
                random,
            )

    logger.debug(f"Created {len(iterators)} program iterators for {len(slots)} slots")
    return iterators


def slot_filler_iterators(slot: Slot, iterators: Dict[str, ProgramIterator]) -> Dict[str, ProgramIterator]:
    """Filler iterators attached to `slot`, keyed by filler list id."""
    if not slot.may_have_filler():
        return {}
    attached: Dict[str, ProgramIterator] = {}
    for filler in slot.filler:
        iterator = iterators.get(filler_iterator_key(filler.filler_list_id, filler.filler_order))
        if iterator is not None:
            attached[filler.filler_list_id] = iterator
    return attached


def copy_redirect(program: RedirectProgram, duration_ms: int) -> RedirectProgram:
    return replace(program, duration_ms=duration_ms)
