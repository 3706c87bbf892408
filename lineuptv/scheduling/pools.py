"""
In-memory content pool provider.

Backs previews, tests and small setups where the catalog is handed over
as a list of programs instead of being queried from a media library.
"""

import logging
import re
from typing import Dict, List, Optional

from lineuptv.errors import UnparseableFilterError
from lineuptv.scheduling.ports import ContentPoolProvider
from lineuptv.scheduling.programs import ProgramKind, SchedulerProgram, create_program_map, deduplicate_programs

logger = logging.getLogger(__name__)

# field:value terms joined by AND, e.g. "kind:movie AND title:alien"
_FILTER_TERM = re.compile(r"^\s*(\w+)\s*:\s*(\S+)\s*$")
_FILTER_FIELDS = {"kind", "show_id", "title", "season_number", "artist_id"}


def parse_smart_filter(filter_text: str) -> Dict[str, str]:
    """
    Parse a smart collection filter into field/value terms.

    Raises:
        ValueError: If a term is malformed or names an unknown field
    """
    terms: Dict[str, str] = {}
    for part in re.split(r"\s+AND\s+", filter_text.strip()):
        match = _FILTER_TERM.match(part)
        if not match:
            raise ValueError(f"Malformed filter term: {part!r}")
        name, value = match.group(1), match.group(2)
        if name not in _FILTER_FIELDS:
            raise ValueError(f"Unknown filter field: {name}")
        terms[name] = value.lower()
    return terms


def _matches(program: SchedulerProgram, terms: Dict[str, str]) -> bool:
    for name, value in terms.items():
        actual = getattr(program, name)
        if isinstance(actual, ProgramKind):
            actual = actual.value
        if name == "title":
            if value not in (actual or "").lower():
                return False
        elif str(actual).lower() != value:
            return False
    return True


class InMemoryPoolProvider(ContentPoolProvider):
    """
    Pools built from a flat program list.

    Smart collections are either explicit members (programs listing the
    collection in `parent_smart_collections`) or a filter registered with
    `add_smart_collection`.
    """

    def __init__(self, programs: Optional[List[SchedulerProgram]] = None):
        self._programs = deduplicate_programs(list(programs or []))
        self._program_map = create_program_map(self._programs)
        self._smart_filters: Dict[str, str] = {}

    def add_smart_collection(self, collection_id: str, filter_text: str) -> None:
        self._smart_filters[collection_id] = filter_text

    def get_show_programs(
        self, show_id: str, season_filter: Optional[List[int]] = None
    ) -> List[SchedulerProgram]:
        programs = list(self._program_map.content.get(f"show.{show_id}", []))
        if season_filter:
            programs = [p for p in programs if p.season_number in season_filter]
        return programs

    def get_custom_show_programs(self, custom_show_id: str) -> List[SchedulerProgram]:
        programs = self._program_map.custom.get(custom_show_id, [])
        return sorted(programs, key=lambda p: p.custom_show_index(custom_show_id) or 0)

    def get_filler_list_programs(self, filler_list_id: str) -> List[SchedulerProgram]:
        return list(self._program_map.filler.get(filler_list_id, []))

    def get_smart_collection_programs(self, smart_collection_id: str) -> List[SchedulerProgram]:
        members = list(self._program_map.smart_collection.get(smart_collection_id, []))
        filter_text = self._smart_filters.get(smart_collection_id)
        if filter_text is None:
            return members

        try:
            terms = parse_smart_filter(filter_text)
        except ValueError as e:
            raise UnparseableFilterError(smart_collection_id, filter_text, e) from e

        seen = {p.id for p in members}
        members.extend(p for p in self._programs if p.id not in seen and _matches(p, terms))
        return members

    def get_movie_programs(self) -> List[SchedulerProgram]:
        return [p for p in self._programs if p.kind == ProgramKind.MOVIE]
