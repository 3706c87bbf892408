"""
Ad-hoc filler selection from play history.

Used when a channel needs a single filler item to cover a gap right now,
outside any pre-built lineup. Lists compete by weight; within the chosen
list, programs are scored by how long ago they last played and by their
duration.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from lineuptv.config import SchedulingConfig, get_config
from lineuptv.scheduling.constants import (
    FIVE_MINUTES_MS,
    MAX_SAFE_INTEGER,
    ONE_DAY_MS,
)
from lineuptv.scheduling.ports import PlayHistoryEntry, PlayHistoryProvider
from lineuptv.scheduling.programs import SchedulerProgram
from lineuptv.scheduling.random_source import RandomSource

logger = logging.getLogger(__name__)


@dataclass
class FillerChannel:
    id: str
    filler_repeat_cooldown_ms: Optional[int] = None


@dataclass
class ChannelFillerList:
    """A filler list attached to a channel."""

    filler_list_id: str
    weight: float = 100
    cooldown_ms: int = 0
    programs: List[SchedulerProgram] = field(default_factory=list)


@dataclass
class FillerPickResult:
    filler: Optional[SchedulerProgram] = None
    filler_list_id: Optional[str] = None
    minimum_wait_ms: int = MAX_SAFE_INTEGER

    def to_dict(self) -> dict:
        return {
            "filler": self.filler.to_dict() if self.filler else None,
            "filler_list_id": self.filler_list_id,
            "minimum_wait_ms": self.minimum_wait_ms,
        }


def normalize_duration(duration_ms: float) -> int:
    """Duration score; grows logarithmically past three minutes."""
    minutes = duration_ms / (60 * 1000)
    if minutes >= 3.0:
        minutes = 3.0 + math.log(minutes)
    y = 10000 * (math.ceil(minutes * 1000) + 1)
    return math.ceil(y / 1000000) + 1


def normalize_since(time_since_ms: float) -> int:
    """Recency score; grows quadratically with time since last play."""
    y = math.ceil(time_since_ms / 600) + 1
    y = y * y
    return math.ceil(y / 1000000) + 1


class FillerPicker:
    """
    Weighted filler picker driven by channel play history.

    Usage:
        picker = FillerPicker(history_provider)
        result = picker.pick_filler(channel, fillers, max_duration_ms=90_000)
    """

    def __init__(
        self,
        history_provider: PlayHistoryProvider,
        random: Optional[RandomSource] = None,
        default_cooldown_ms: Optional[int] = None,
        config: Optional[SchedulingConfig] = None,
    ):
        self.config = config or get_config().scheduling
        self.history_provider = history_provider
        self.random = random or RandomSource()
        if default_cooldown_ms is None:
            default_cooldown_ms = self.config.default_filler_cooldown_ms
        self.default_cooldown_ms = default_cooldown_ms

    def pick_filler(
        self,
        channel: FillerChannel,
        fillers: List[ChannelFillerList],
        max_duration_ms: int,
        now_ms: Optional[int] = None,
    ) -> FillerPickResult:
        """
        Pick one filler program that fits in `max_duration_ms`.

        Args:
            channel: Channel the filler is for
            fillers: The channel's filler lists, in declaration order
            max_duration_ms: Gap to cover
            now_ms: Reference time, defaults to the wall clock

        Returns:
            FillerPickResult. When nothing was picked, `minimum_wait_ms` is
            the shortest wait after which some program would be eligible
            and still fit, or MAX_SAFE_INTEGER when none would.
        """
        if not fillers:
            return FillerPickResult()

        now = now_ms if now_ms is not None else int(time.time() * 1000)
        repeat_cooldown_ms = (
            channel.filler_repeat_cooldown_ms
            if channel.filler_repeat_cooldown_ms is not None
            else self.default_cooldown_ms
        )

        history_by_list: Dict[Optional[str], List[PlayHistoryEntry]] = {}
        for entry in self.history_provider.get_history_for_channel(channel.id):
            history_by_list.setdefault(entry.list_id, []).append(entry)

        logger.debug(
            f"Considering {len(fillers)} filler lists for channel {channel.id}, "
            f"{sum(len(f.programs) for f in fillers)} programs"
        )

        list_weight = 0.0
        minimum_wait = MAX_SAFE_INTEGER

        for filler in fillers:
            list_history = history_by_list.get(filler.filler_list_id, [])
            program_last_played: Dict[str, int] = {}
            for entry in list_history:
                previous = program_last_played.get(entry.program_id)
                if previous is None or entry.played_at_ms > previous:
                    program_last_played[entry.program_id] = entry.played_at_ms
            list_last_played = max((e.played_at_ms for e in list_history), default=None)

            list_considered = False
            list_chosen = False
            chosen: Optional[SchedulerProgram] = None
            program_total_weight = 0.0

            for program in self.random.shuffle(list(filler.programs)):
                if program.duration_ms > max_duration_ms:
                    continue

                played_at = program_last_played.get(program.id)
                since_played = now - played_at if played_at is not None else ONE_DAY_MS

                if since_played < repeat_cooldown_ms:
                    wait = repeat_cooldown_ms - since_played
                    if program.duration_ms + wait <= max_duration_ms:
                        minimum_wait = min(minimum_wait, wait)
                    continue

                if not list_considered:
                    list_considered = True
                    list_weight += filler.weight
                    since_list = now - list_last_played if list_last_played is not None else ONE_DAY_MS
                    if since_list < filler.cooldown_ms:
                        wait = filler.cooldown_ms - since_list
                        if program.duration_ms + wait <= max_duration_ms:
                            minimum_wait = min(minimum_wait, wait)
                        logger.debug(
                            f"Filler list {filler.filler_list_id} in cooldown "
                            f"({since_list} < {filler.cooldown_ms})"
                        )
                        break
                    if not self.weighted_pick("filler", filler.weight, list_weight):
                        break
                    list_chosen = True

                if list_chosen:
                    capped_since = min(since_played, FIVE_MINUTES_MS)
                    program_weight = normalize_since(capped_since) + normalize_duration(program.duration_ms)
                    program_total_weight += program_weight
                    if self.weighted_pick("program", program_weight, program_total_weight):
                        chosen = program

            if chosen is not None:
                logger.debug(f"Picked filler {chosen.id} from list {filler.filler_list_id}")
                return FillerPickResult(
                    filler=chosen,
                    filler_list_id=filler.filler_list_id,
                    minimum_wait_ms=0,
                )

        return FillerPickResult(minimum_wait_ms=minimum_wait)

    def weighted_pick(self, reason: str, numerator: float, denominator: float) -> bool:
        """Weighted coin flip; `reason` is "filler" or "program"."""
        return self.random.bool(numerator, denominator)
