"""
Lineup building helpers shared by the slot schedulers.

Padding, flex distribution and filler placement all work on
`PaddedProgram`: a lineup program plus the padding after it and the
filler around it.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TypeVar

from lineuptv.scheduling.constants import SLACK_MS
from lineuptv.scheduling.iterators import IterationState
from lineuptv.scheduling.programs import FillerProgram, FlexProgram, LineupProgram, lineup_to_dict
from lineuptv.scheduling.slot_impl import SlotImpl
from lineuptv.scheduling.slots import FillerType

T = TypeVar("T")


@dataclass
class PaddedProgram:
    program: LineupProgram
    pad_ms: int
    filler: Dict[FillerType, FillerProgram] = field(default_factory=dict)

    @property
    def total_duration_ms(self) -> int:
        filler_ms = sum(f.duration_ms for f in self.filler.values())
        return self.program.duration_ms + filler_ms + self.pad_ms

    def emission_order(self) -> List[LineupProgram]:
        """Programs in play order: head, pre, program, post, tail."""
        ordered: List[LineupProgram] = []
        for filler_type in (FillerType.HEAD, FillerType.PRE):
            if filler_type in self.filler:
                ordered.append(self.filler[filler_type])
        ordered.append(self.program)
        for filler_type in (FillerType.POST, FillerType.TAIL):
            if filler_type in self.filler:
                ordered.append(self.filler[filler_type])
        return ordered


def retry_simple(fn: Callable[[], Optional[T]], attempts: int = 3) -> Optional[T]:
    """Call `fn` until it returns something, at most `attempts` times."""
    for _ in range(max(1, attempts)):
        result = fn()
        if result is not None:
            return result
    return None


def push_or_extend_flex(lineup: List[LineupProgram], duration_ms: int) -> int:
    """
    Append flex to the lineup, merging into a trailing flex entry.

    Returns:
        How far the time cursor should advance
    """
    if duration_ms <= 0:
        return 0
    if lineup and isinstance(lineup[-1], FlexProgram):
        lineup[-1] = FlexProgram(duration_ms=lineup[-1].duration_ms + duration_ms)
    else:
        lineup.append(FlexProgram(duration_ms=duration_ms))
    return duration_ms


def create_padded_program(program: LineupProgram, pad_ms: int) -> PaddedProgram:
    """Pad a program up to the next multiple of `pad_ms` unless within slack."""
    if pad_ms <= 0:
        return PaddedProgram(program, 0)
    remainder = program.duration_ms % pad_ms
    pad_amount = pad_ms - remainder
    should_pad = remainder > SLACK_MS and pad_amount > SLACK_MS
    return PaddedProgram(program, pad_amount if should_pad else 0)


def distribute_flex(programs: List[PaddedProgram], pad_ms: int, remaining_ms: int) -> None:
    """
    Spread unused slot time across non-filler programs in whole pads.

    The sub-pad remainder goes to the last program; whole pads go first
    to the programs carrying the least padding.
    """
    relevant = [p for p in programs if p.program.type != "filler"]
    if not relevant or pad_ms <= 0:
        return

    whole_pads, leftover = divmod(remaining_ms, pad_ms)
    relevant[-1].pad_ms += leftover

    by_least_pad = sorted(range(len(relevant)), key=lambda i: relevant[i].pad_ms)
    count = len(relevant)
    for i in range(count):
        share = whole_pads // count
        if i < whole_pads % count:
            share += 1
        relevant[by_least_pad[i]].pad_ms += share * pad_ms


def add_head_and_tail_filler_to_slot(
    remaining_ms: int,
    slot: SlotImpl,
    programs: List[PaddedProgram],
    time_cursor_ms: int = -1,
    attempts: int = 3,
) -> int:
    """
    Place head filler before the first program and tail filler after the last.

    Tail filler may use the last program's padding, which it replaces.

    Returns:
        Time left in the slot afterwards
    """
    if remaining_ms <= 0 or not programs:
        return remaining_ms

    if slot.has_filler_of_type(FillerType.HEAD):
        head_state = IterationState(slot_duration_ms=remaining_ms, time_cursor_ms=time_cursor_ms)
        head = retry_simple(lambda: slot.get_filler_of_type(FillerType.HEAD, head_state), attempts)
        if head is not None:
            remaining_ms -= head.duration_ms
            programs[0].filler[FillerType.HEAD] = head

    last = programs[-1]
    last_pad = last.pad_ms
    if remaining_ms + last_pad > 0 and slot.has_filler_of_type(FillerType.TAIL):
        tail_state = IterationState(slot_duration_ms=remaining_ms + last_pad, time_cursor_ms=time_cursor_ms)
        tail = retry_simple(lambda: slot.get_filler_of_type(FillerType.TAIL, tail_state), attempts)
        if tail is not None:
            last.pad_ms = 0
            remaining_ms = remaining_ms + last_pad - tail.duration_ms
            last.filler[FillerType.TAIL] = tail
    else:
        remaining_ms -= last_pad

    return remaining_ms


def _maybe_add_filler_of_type(
    filler_type: FillerType,
    remaining_ms: int,
    slot: SlotImpl,
    program: PaddedProgram,
    time_cursor_ms: int,
    attempts: int,
) -> int:
    if not slot.has_filler_of_type(filler_type):
        return remaining_ms

    total_ms = remaining_ms + max(program.pad_ms, 0)
    if total_ms <= 0:
        return remaining_ms

    state = IterationState(slot_duration_ms=total_ms, time_cursor_ms=time_cursor_ms)
    filler = retry_simple(lambda: slot.get_filler_of_type(filler_type, state), attempts)
    if filler is not None:
        leftover_pad = program.pad_ms - filler.duration_ms
        if leftover_pad < 0:
            # Filler ate past the program's padding into the slot
            remaining_ms += leftover_pad
        program.pad_ms = max(0, leftover_pad)
        program.filler[filler_type] = filler

    return remaining_ms


def maybe_add_pre_post_filler(
    slot: SlotImpl,
    program: PaddedProgram,
    remaining_ms: int,
    time_cursor_ms: int = -1,
    attempts: int = 3,
) -> int:
    """Attach pre and post filler to one program, paid for by its padding first."""
    remaining_ms = _maybe_add_filler_of_type(
        FillerType.PRE, remaining_ms, slot, program, time_cursor_ms, attempts
    )
    return _maybe_add_filler_of_type(
        FillerType.POST, remaining_ms, slot, program, time_cursor_ms, attempts
    )


@dataclass
class SlotSelection:
    """Which slot produced the block starting at `start_time_ms`."""

    slot_id: str
    slot_index: int
    start_time_ms: int


@dataclass
class SlotScheduleResult:
    """
    Output of a slot scheduler run.

    `seed` plus `discard_count` reproduce the random stream position the
    run ended at; passing them back continues the same stream.
    """

    lineup: List[LineupProgram]
    start_time_ms: int
    seed: List[int]
    discard_count: int
    selections: List[SlotSelection] = field(default_factory=list)
    slot_last_played: Dict[int, int] = field(default_factory=dict)

    @property
    def total_duration_ms(self) -> int:
        return sum(p.duration_ms for p in self.lineup)

    def to_dict(self) -> dict:
        return {
            "lineup": [lineup_to_dict(p) for p in self.lineup],
            "start_time_ms": self.start_time_ms,
            "seed": list(self.seed),
            "discard_count": self.discard_count,
        }
