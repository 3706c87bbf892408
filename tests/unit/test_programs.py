"""
Unit tests for program pools.
"""

import pytest

from lineuptv.scheduling.programs import deduplicate_programs

from tests.fixtures.factories import ProgramFactory


@pytest.mark.unit
class TestDeduplicatePrograms:
    """Tests for collapsing repeated programs."""

    def test_merges_parent_memberships(self):
        """Test a program listed twice keeps both filler lists."""
        first = ProgramFactory.filler("bumpers", program_id="clip")
        second = ProgramFactory.filler("promos", program_id="clip")

        (merged,) = deduplicate_programs([first, second])

        assert merged.id == "clip"
        assert merged.parent_filler_lists == ["bumpers", "promos"]

    def test_inputs_left_unchanged(self):
        """Test merging does not touch the programs passed in."""
        first = ProgramFactory.filler("bumpers", program_id="clip")
        second = ProgramFactory.filler("promos", program_id="clip")

        deduplicate_programs([first, second])
        deduplicate_programs([first, second])

        assert first.parent_filler_lists == ["bumpers"]
        assert second.parent_filler_lists == ["promos"]

    def test_unique_programs_pass_through(self):
        """Test programs without duplicates are returned in order."""
        programs = ProgramFactory.show("alpha", 3)

        assert deduplicate_programs(programs) == programs
