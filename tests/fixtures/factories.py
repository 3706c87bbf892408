"""
Test Data Factories

Factory classes for generating scheduling test data.
"""

from typing import Any, Dict, List, Optional

from lineuptv.scheduling.infinite import InfiniteScheduleDef, InfiniteSlotDef
from lineuptv.scheduling.programs import CustomShowContext, ProgramKind, SchedulerProgram

ONE_MINUTE_MS = 60 * 1000


class BaseFactory:
    """Base factory class."""

    _counter = 0

    @classmethod
    def _next_id(cls) -> int:
        BaseFactory._counter += 1
        return BaseFactory._counter


class ProgramFactory(BaseFactory):
    """Factory for SchedulerProgram instances."""

    @classmethod
    def episode(
        cls,
        show_id: str,
        season: int = 1,
        episode: int = 1,
        minutes: float = 22,
        program_id: Optional[str] = None,
        **kwargs,
    ) -> SchedulerProgram:
        return SchedulerProgram(
            id=program_id or f"{show_id}-s{season:02d}e{episode:02d}",
            duration_ms=int(minutes * ONE_MINUTE_MS),
            kind=ProgramKind.EPISODE,
            title=kwargs.pop("title", f"Episode {episode}"),
            show_id=show_id,
            show_title=kwargs.pop("show_title", show_id.title()),
            season_number=season,
            episode_number=episode,
            **kwargs,
        )

    @classmethod
    def show(
        cls,
        show_id: str,
        count: int,
        minutes: float = 22,
        season: int = 1,
    ) -> List[SchedulerProgram]:
        """A season of `count` equally long episodes."""
        return [cls.episode(show_id, season, i + 1, minutes) for i in range(count)]

    @classmethod
    def movie(
        cls,
        title: Optional[str] = None,
        minutes: float = 100,
        program_id: Optional[str] = None,
        **kwargs,
    ) -> SchedulerProgram:
        n = cls._next_id()
        return SchedulerProgram(
            id=program_id or f"movie-{n}",
            duration_ms=int(minutes * ONE_MINUTE_MS),
            kind=ProgramKind.MOVIE,
            title=title or f"Movie {n}",
            **kwargs,
        )

    @classmethod
    def filler(
        cls,
        filler_list_id: str,
        seconds: float = 30,
        program_id: Optional[str] = None,
    ) -> SchedulerProgram:
        n = cls._next_id()
        return SchedulerProgram(
            id=program_id or f"{filler_list_id}-{n}",
            duration_ms=int(seconds * 1000),
            kind=ProgramKind.OTHER_VIDEO,
            title=f"Filler {n}",
            parent_filler_lists=[filler_list_id],
        )

    @classmethod
    def custom_show(
        cls,
        custom_show_id: str,
        count: int,
        minutes: float = 30,
    ) -> List[SchedulerProgram]:
        """Programs of a custom show, listed in reverse so ordering is exercised."""
        return [
            SchedulerProgram(
                id=f"{custom_show_id}-{i}",
                duration_ms=int(minutes * ONE_MINUTE_MS),
                kind=ProgramKind.OTHER_VIDEO,
                title=f"Part {i}",
                parent_custom_shows=[CustomShowContext(custom_show_id, i)],
            )
            for i in reversed(range(count))
        ]


class InfiniteScheduleFactory(BaseFactory):
    """Factory for infinite schedule definitions and API payloads."""

    @classmethod
    def slot(cls, slot_index: int, slot_type: str = "show", **kwargs) -> InfiniteSlotDef:
        return InfiniteSlotDef(slot_index=slot_index, type=slot_type, **kwargs)

    @classmethod
    def create(
        cls,
        slots: Optional[List[InfiniteSlotDef]] = None,
        channel_id: Optional[str] = None,
        **kwargs,
    ) -> InfiniteScheduleDef:
        return InfiniteScheduleDef(
            channel_id=channel_id or f"channel-{cls._next_id()}",
            slots=slots or [],
            **kwargs,
        )

    @classmethod
    def create_dict(
        cls,
        slots: Optional[List[Dict[str, Any]]] = None,
        channel_id: Optional[str] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "channel_id": channel_id or f"channel-{cls._next_id()}",
            "name": kwargs.pop("name", "Test Schedule"),
            "pad_ms": kwargs.pop("pad_ms", 5 * ONE_MINUTE_MS),
            "slots": slots if slots is not None else [
                {"slot_index": 0, "type": "show", "show_id": "alpha"},
                {"slot_index": 1, "type": "show", "show_id": "beta"},
            ],
        }
        data.update(kwargs)
        return data
