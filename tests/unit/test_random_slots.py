"""
Unit tests for the random slot scheduler.
"""

from collections import Counter
from unittest.mock import patch

import pytest

from lineuptv.config import SchedulingConfig
from lineuptv.errors import InvalidConfigurationError
from lineuptv.scheduling.constants import ONE_DAY_MS, ONE_HOUR_MS, ONE_MINUTE_MS, SLACK_MS
from lineuptv.scheduling.lineup import maybe_add_pre_post_filler
from lineuptv.scheduling.programs import lineup_to_dict
from lineuptv.scheduling.random_slots import RandomSlotSchedule, RandomSlotScheduler
from lineuptv.scheduling.slots import DynamicDuration, FixedDuration, RandomSlot, SlotType

from tests.fixtures.factories import ProgramFactory

HALF_HOUR_MS = 30 * ONE_MINUTE_MS


def show_slot(index, show_id, **kwargs):
    kwargs.setdefault("duration_spec", FixedDuration(HALF_HOUR_MS))
    return RandomSlot(type=SlotType.SHOW, show_id=show_id, index=index, **kwargs)


def half_hour_shows(*show_ids):
    return [ProgramFactory.episode(show_id, minutes=30) for show_id in show_ids]


@pytest.mark.unit
class TestRandomSlotSelection:
    """Tests for weighted slot selection."""

    def test_weights_converge(self):
        """Test observed selection ratios track the configured weights."""
        schedule = RandomSlotSchedule(
            slots=[
                show_slot(0, "a", weight=37.5),
                show_slot(1, "b", weight=25),
                show_slot(2, "c", weight=37.5),
            ],
            pad_ms=HALF_HOUR_MS,
            max_days=21,
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            half_hour_shows("a", "b", "c"), seed=[42], start_time_ms=0
        )

        selections = result.selections[:1000]
        assert len(selections) == 1000
        counts = Counter(s.slot_index for s in selections)
        assert counts[0] / 1000 == pytest.approx(0.375, abs=0.05)
        assert counts[1] / 1000 == pytest.approx(0.25, abs=0.05)
        assert counts[2] / 1000 == pytest.approx(0.375, abs=0.05)

    def test_cooldown_respected(self):
        """Test a slot is never reselected inside its cooldown."""
        cooldown = 2 * ONE_HOUR_MS
        schedule = RandomSlotSchedule(
            slots=[
                show_slot(0, "a", weight=10, cooldown_ms=cooldown),
                show_slot(1, "b", weight=1),
                show_slot(2, "c", weight=1),
            ],
            pad_ms=HALF_HOUR_MS,
            max_days=2,
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            half_hour_shows("a", "b", "c"), seed=[5], start_time_ms=0
        )

        times = [s.start_time_ms for s in result.selections if s.slot_index == 0]
        assert len(times) > 1
        for earlier, later in zip(times, times[1:]):
            assert later - earlier >= cooldown - SLACK_MS

    def test_all_slots_cooling_down_waits_with_flex(self):
        """Test flex fills the wait until the earliest cooldown expires."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(0, "a", cooldown_ms=2 * ONE_HOUR_MS)],
            pad_ms=HALF_HOUR_MS,
            max_days=0,
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            half_hour_shows("a"), seed=[1], start_time_ms=0
        )

        times = [s.start_time_ms for s in result.selections]
        assert times[:3] == [0, 2 * ONE_HOUR_MS, 4 * ONE_HOUR_MS]
        assert result.lineup[1].type == "flex"
        assert result.lineup[1].duration_ms == 90 * ONE_MINUTE_MS

    def test_sequential_distribution(self):
        """Test random_distribution none cycles slots in index order."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(2, "c"), show_slot(0, "a"), show_slot(1, "b")],
            pad_ms=HALF_HOUR_MS,
            max_days=0,
            random_distribution="none",
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            half_hour_shows("a", "b", "c"), seed=[1], start_time_ms=0
        )

        assert [s.slot_index for s in result.selections[:6]] == [0, 1, 2, 0, 1, 2]
        assert [item.program.show_id for item in result.lineup[:3]] == ["a", "b", "c"]

    def test_slot_last_played_carries_over(self):
        """Test prior selection times keep a slot in cooldown."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(0, "a", cooldown_ms=2 * ONE_HOUR_MS), show_slot(1, "b")],
            pad_ms=HALF_HOUR_MS,
            max_days=0,
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            half_hour_shows("a", "b"),
            seed=[1],
            start_time_ms=ONE_HOUR_MS,
            slot_last_played={0: ONE_HOUR_MS - HALF_HOUR_MS},
        )

        first_a = next(s.start_time_ms for s in result.selections if s.slot_index == 0)
        assert first_a >= 2 * ONE_HOUR_MS + HALF_HOUR_MS - SLACK_MS
        assert result.slot_last_played[0] >= first_a


@pytest.mark.unit
class TestRandomSlotBlocks:
    """Tests for block packing and padding."""

    def test_dynamic_slot_pads_each_episode(self):
        """Test episode padding puts flex after every program."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(0, "alpha", duration_spec=DynamicDuration(2))],
            pad_ms=HALF_HOUR_MS,
            max_days=0,
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            ProgramFactory.show("alpha", 4, minutes=22), seed=[1], start_time_ms=0
        )

        assert [(p.type, p.duration_ms // ONE_MINUTE_MS) for p in result.lineup[:4]] == [
            ("content", 22),
            ("flex", 8),
            ("content", 22),
            ("flex", 8),
        ]
        assert result.selections[1].start_time_ms == ONE_HOUR_MS

    def test_slot_padding_pads_block_end(self):
        """Test slot padding plays programs back to back and pads once."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(0, "alpha", duration_spec=DynamicDuration(2))],
            pad_ms=HALF_HOUR_MS,
            pad_style="slot",
            max_days=0,
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            ProgramFactory.show("alpha", 4, minutes=22), seed=[1], start_time_ms=0
        )

        assert [(p.type, p.duration_ms // ONE_MINUTE_MS) for p in result.lineup[:3]] == [
            ("content", 22),
            ("content", 22),
            ("flex", 16),
        ]

    def test_fixed_slot_packs_until_full(self):
        """Test a fixed block holds as many programs as fit."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(0, "alpha", duration_spec=FixedDuration(ONE_HOUR_MS))],
            pad_ms=HALF_HOUR_MS,
            max_days=0,
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            ProgramFactory.show("alpha", 4, minutes=22), seed=[1], start_time_ms=0
        )

        content = [p for p in result.lineup[:4] if p.type == "content"]
        assert len(content) == 2
        assert result.selections[1].start_time_ms == ONE_HOUR_MS

    def test_fixed_slot_filler_sees_program_start(self):
        """Test pre and post filler for each packed program is picked at its own start time."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(0, "alpha", duration_spec=FixedDuration(ONE_HOUR_MS))],
            pad_ms=HALF_HOUR_MS,
            max_days=0,
        )

        with patch(
            "lineuptv.scheduling.random_slots.maybe_add_pre_post_filler",
            wraps=maybe_add_pre_post_filler,
        ) as add_filler:
            RandomSlotScheduler(schedule).generate_schedule(
                ProgramFactory.show("alpha", 4, minutes=22), seed=[1], start_time_ms=0
            )

        cursors = [c.args[3] for c in add_filler.call_args_list[:2]]
        assert cursors == [0, HALF_HOUR_MS]

    def test_schedule_defaults_from_config(self):
        """Test unset pad and horizon come from the scheduling config."""
        schedule = RandomSlotSchedule.from_config(
            [show_slot(0, "alpha", duration_spec=DynamicDuration(2))],
            SchedulingConfig(default_pad_ms=HALF_HOUR_MS, max_days=0),
        )

        result = RandomSlotScheduler(schedule).generate_schedule(
            ProgramFactory.show("alpha", 4, minutes=22), seed=[1], start_time_ms=0
        )

        assert [(p.type, p.duration_ms // ONE_MINUTE_MS) for p in result.lineup[:2]] == [
            ("content", 22),
            ("flex", 8),
        ]
        assert all(s.start_time_ms < ONE_DAY_MS for s in result.selections)

    def test_same_seed_same_lineup(self):
        """Test identical seeds reproduce lineup and stream position."""
        schedule = RandomSlotSchedule(
            slots=[show_slot(0, "a", order="shuffle"), show_slot(1, "b", weight=2)],
            pad_ms=HALF_HOUR_MS,
            max_days=1,
        )
        programs = ProgramFactory.show("a", 5, minutes=30) + ProgramFactory.show("b", 5, minutes=30)

        first = RandomSlotScheduler(schedule).generate_schedule(programs, seed=[9, 9], start_time_ms=0)
        second = RandomSlotScheduler(schedule).generate_schedule(programs, seed=[9, 9], start_time_ms=0)

        assert [lineup_to_dict(p) for p in first.lineup] == [lineup_to_dict(p) for p in second.lineup]
        assert first.discard_count == second.discard_count > 0


@pytest.mark.unit
class TestRandomSlotValidation:
    """Tests for rejecting unusable floating slots."""

    @pytest.mark.parametrize(
        "slot",
        [
            RandomSlot(type=SlotType.FLEX, duration_spec=DynamicDuration(1)),
            RandomSlot(type=SlotType.REDIRECT, channel_id="other", duration_spec=DynamicDuration(1)),
            RandomSlot(type=SlotType.SHOW, show_id="a"),
            RandomSlot(type=SlotType.SHOW, show_id="a", duration_spec=DynamicDuration(0)),
            RandomSlot(type=SlotType.SHOW, show_id="a", duration_spec=FixedDuration(0)),
            RandomSlot(type=SlotType.SHOW, show_id="a", weight=-1, duration_spec=FixedDuration(1)),
        ],
    )
    def test_invalid_slot(self, slot):
        """Test invalid slots raise before any lineup is built."""
        scheduler = RandomSlotScheduler(RandomSlotSchedule(slots=[slot]))

        with pytest.raises(InvalidConfigurationError):
            scheduler.generate_schedule([], seed=[1], start_time_ms=0)

    def test_no_slots(self):
        """Test an empty slot list is rejected."""
        with pytest.raises(InvalidConfigurationError):
            RandomSlotScheduler(RandomSlotSchedule(slots=[])).generate_schedule([], seed=[1])
