"""
Program types for lineup building.

A `SchedulerProgram` is an item from the content pool. The lineup itself
is a list of `LineupProgram` variants: content, custom-show content,
filler, redirect and flex.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional, Union

from lineuptv.errors import InvalidConfigurationError


class ProgramKind(str, Enum):
    """Media subtype of a pool item."""

    MOVIE = "movie"
    EPISODE = "episode"
    TRACK = "track"
    MUSIC_VIDEO = "music_video"
    OTHER_VIDEO = "other_video"


@dataclass
class CustomShowContext:
    """Membership of a program in a custom show, with its position."""

    custom_show_id: str
    index: int


@dataclass
class SchedulerProgram:
    """A playable item in a channel's content pool."""

    id: str
    duration_ms: int
    kind: ProgramKind = ProgramKind.EPISODE
    title: str = ""
    show_id: Optional[str] = None
    show_title: Optional[str] = None
    artist_id: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    release_date_ms: Optional[int] = None
    parent_custom_shows: list[CustomShowContext] = field(default_factory=list)
    parent_filler_lists: list[str] = field(default_factory=list)
    parent_smart_collections: list[str] = field(default_factory=list)

    def custom_show_index(self, custom_show_id: str) -> Optional[int]:
        for context in self.parent_custom_shows:
            if context.custom_show_id == custom_show_id:
                return context.index
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "duration_ms": self.duration_ms,
            "kind": self.kind.value,
            "title": self.title,
            "show_id": self.show_id,
            "season_number": self.season_number,
            "episode_number": self.episode_number,
        }


# ============ Lineup variants ============


@dataclass
class ContentProgram:
    program: SchedulerProgram
    duration_ms: int
    type: str = field(default="content", init=False)

    @property
    def program_id(self) -> str:
        return self.program.id


@dataclass
class CustomProgram:
    program: SchedulerProgram
    duration_ms: int
    custom_show_id: str
    index: int = 0
    type: str = field(default="custom", init=False)

    @property
    def program_id(self) -> str:
        return self.program.id


@dataclass
class FillerProgram:
    program: SchedulerProgram
    duration_ms: int
    filler_list_id: str
    filler_type: Optional[str] = None
    type: str = field(default="filler", init=False)

    @property
    def program_id(self) -> str:
        return self.program.id


@dataclass
class RedirectProgram:
    channel_id: str
    duration_ms: int = 1
    type: str = field(default="redirect", init=False)

    @property
    def program_id(self) -> None:
        return None


@dataclass
class FlexProgram:
    duration_ms: int
    type: str = field(default="flex", init=False)

    @property
    def program_id(self) -> None:
        return None


LineupProgram = Union[ContentProgram, CustomProgram, FillerProgram, RedirectProgram, FlexProgram]


def lineup_to_dict(item: LineupProgram) -> dict[str, Any]:
    """Flatten a lineup entry for API responses and logging."""
    data: dict[str, Any] = {
        "type": item.type,
        "duration_ms": item.duration_ms,
        "program_id": item.program_id,
    }
    if isinstance(item, CustomProgram):
        data["custom_show_id"] = item.custom_show_id
        data["index"] = item.index
    elif isinstance(item, FillerProgram):
        data["filler_list_id"] = item.filler_list_id
        data["filler_type"] = item.filler_type
    elif isinstance(item, RedirectProgram):
        data["channel_id"] = item.channel_id
    return data


# ============ Pool helpers ============


@dataclass
class ProgramMap:
    """Pool items grouped by what a slot can target."""

    content: dict[str, list[SchedulerProgram]] = field(default_factory=dict)
    custom: dict[str, list[SchedulerProgram]] = field(default_factory=dict)
    filler: dict[str, list[SchedulerProgram]] = field(default_factory=dict)
    smart_collection: dict[str, list[SchedulerProgram]] = field(default_factory=dict)


def _merge_unique(existing: list, extra: list) -> list:
    merged = list(existing)
    for value in extra:
        if value not in merged:
            merged.append(value)
    return merged


def deduplicate_programs(programs: list[SchedulerProgram]) -> list[SchedulerProgram]:
    """
    Collapse repeated program ids, merging their parent memberships.

    Merged programs are copies; the input programs are left unchanged.
    """
    by_id: dict[str, SchedulerProgram] = {}
    for program in programs:
        existing = by_id.get(program.id)
        if existing is None:
            by_id[program.id] = program
            continue
        by_id[program.id] = replace(
            existing,
            parent_filler_lists=_merge_unique(
                existing.parent_filler_lists, program.parent_filler_lists
            ),
            parent_custom_shows=_merge_unique(
                existing.parent_custom_shows, program.parent_custom_shows
            ),
            parent_smart_collections=_merge_unique(
                existing.parent_smart_collections, program.parent_smart_collections
            ),
        )
    return list(by_id.values())


def content_key(program: SchedulerProgram) -> Optional[str]:
    """Key under which a program is schedulable by movie/show slots."""
    if program.kind in (ProgramKind.MOVIE, ProgramKind.MUSIC_VIDEO, ProgramKind.OTHER_VIDEO):
        return "movie"
    if program.kind == ProgramKind.EPISODE and program.show_id:
        return f"show.{program.show_id}"
    if program.kind == ProgramKind.TRACK and program.artist_id:
        return f"artist.{program.artist_id}"
    return None


def create_program_map(programs: list[SchedulerProgram]) -> ProgramMap:
    program_map = ProgramMap()
    for program in programs:
        key = content_key(program)
        if key is not None:
            program_map.content.setdefault(key, []).append(program)
        for context in program.parent_custom_shows:
            program_map.custom.setdefault(context.custom_show_id, []).append(program)
        for list_id in program.parent_filler_lists:
            program_map.filler.setdefault(list_id, []).append(program)
        for collection_id in program.parent_smart_collections:
            program_map.smart_collection.setdefault(collection_id, []).append(program)
    return program_map


# ============ Orderers ============


def order_next(program: SchedulerProgram) -> Any:
    if program.kind == ProgramKind.EPISODE:
        return (program.season_number or 0) * 100_000 + (program.episode_number or 0)
    if program.kind == ProgramKind.TRACK:
        return program.title
    return program.release_date_ms or 0


def order_alphanumeric(program: SchedulerProgram) -> Any:
    if program.kind in (ProgramKind.EPISODE, ProgramKind.TRACK):
        return f"{program.show_title or ''}_{program.title}"
    return program.title


def order_chronological(program: SchedulerProgram) -> Any:
    return program.release_date_ms or 0


_ORDERERS: dict[str, Callable[[SchedulerProgram], Any]] = {
    "next": order_next,
    "alphanumeric": order_alphanumeric,
    "chronological": order_chronological,
}


def get_program_orderer(order: str) -> Callable[[SchedulerProgram], Any]:
    """Sort key for the named ordering."""
    try:
        return _ORDERERS[order]
    except KeyError:
        raise InvalidConfigurationError(f"No sort key for ordering '{order}'") from None


def sort_programs(
    programs: list[SchedulerProgram],
    key: Callable[[SchedulerProgram], Any],
    ascending: bool = True,
) -> list[SchedulerProgram]:
    """Stable sort that tolerates mixed key types within a pool."""

    def safe_key(program: SchedulerProgram) -> tuple:
        value = key(program)
        return (0, value, "") if isinstance(value, (int, float)) else (1, 0, str(value))

    return sorted(programs, key=safe_key, reverse=not ascending)
