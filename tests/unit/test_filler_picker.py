"""
Unit tests for the history-driven filler picker.
"""

import itertools
from typing import List
from unittest.mock import patch

import pytest

import lineuptv.config as config_module
from lineuptv.config import LineupTVConfig, SchedulingConfig
from lineuptv.scheduling.constants import MAX_SAFE_INTEGER, ONE_HOUR_MS, ONE_MINUTE_MS
from lineuptv.scheduling.filler_picker import (
    ChannelFillerList,
    FillerChannel,
    FillerPicker,
    normalize_duration,
    normalize_since,
)
from lineuptv.scheduling.ports import PlayHistoryEntry, PlayHistoryProvider
from lineuptv.scheduling.random_source import RandomSource

from tests.fixtures.factories import ProgramFactory

NOW_MS = 1_700_000_000_000


class StaticHistory(PlayHistoryProvider):
    """Play history served from a fixed list."""

    def __init__(self, entries: List[PlayHistoryEntry] = None):
        self.entries = entries or []

    def get_history_for_channel(self, channel_id: str) -> List[PlayHistoryEntry]:
        return list(self.entries)


def filler_list(list_id: str, *seconds: float, **kwargs) -> ChannelFillerList:
    programs = [ProgramFactory.filler(list_id, seconds=s, program_id=f"{list_id}-{s}") for s in seconds]
    return ChannelFillerList(filler_list_id=list_id, programs=programs, **kwargs)


@pytest.mark.unit
class TestFillerPicker:
    """Tests for picking filler to cover a gap."""

    def test_no_fillers(self):
        """Test a channel without filler lists gets nothing."""
        result = FillerPicker(StaticHistory()).pick_filler(FillerChannel("ch"), [], 60_000, NOW_MS)

        assert result.filler is None
        assert result.minimum_wait_ms == MAX_SAFE_INTEGER

    def test_picks_only_fitting_program(self):
        """Test programs longer than the gap are never picked."""
        picker = FillerPicker(StaticHistory(), RandomSource([1]))

        result = picker.pick_filler(FillerChannel("ch"), [filler_list("bumpers", 15, 60)], 30_000, NOW_MS)

        assert result.filler.id == "bumpers-15"
        assert result.filler_list_id == "bumpers"
        assert result.minimum_wait_ms == 0

    def test_nothing_fits(self):
        """Test a gap shorter than every program reports no wait."""
        picker = FillerPicker(StaticHistory(), RandomSource([1]))

        result = picker.pick_filler(FillerChannel("ch"), [filler_list("bumpers", 60)], 30_000, NOW_MS)

        assert result.filler is None
        assert result.minimum_wait_ms == MAX_SAFE_INTEGER

    def test_repeat_cooldown_reports_wait(self):
        """Test a recently played program reports when it frees up."""
        history = StaticHistory(
            [PlayHistoryEntry("bumpers-30", "bumpers", NOW_MS - 10 * ONE_MINUTE_MS)]
        )
        picker = FillerPicker(history, RandomSource([1]), default_cooldown_ms=30 * ONE_MINUTE_MS)

        result = picker.pick_filler(
            FillerChannel("ch"), [filler_list("bumpers", 30)], 25 * ONE_MINUTE_MS, NOW_MS
        )

        assert result.filler is None
        assert result.minimum_wait_ms == 20 * ONE_MINUTE_MS

    def test_default_cooldown_from_config(self):
        """Test the repeat cooldown defaults to the scheduling config."""
        history = StaticHistory(
            [PlayHistoryEntry("bumpers-30", "bumpers", NOW_MS - 10 * ONE_MINUTE_MS)]
        )
        short = FillerPicker(
            history, RandomSource([1]), config=SchedulingConfig(default_filler_cooldown_ms=5 * ONE_MINUTE_MS)
        )
        long = FillerPicker(
            history, RandomSource([1]), config=SchedulingConfig(default_filler_cooldown_ms=ONE_HOUR_MS)
        )

        fillers = [filler_list("bumpers", 30)]
        picked = short.pick_filler(FillerChannel("ch"), fillers, ONE_MINUTE_MS, NOW_MS)
        blocked = long.pick_filler(FillerChannel("ch"), fillers, ONE_MINUTE_MS, NOW_MS)

        assert short.default_cooldown_ms == 5 * ONE_MINUTE_MS
        assert picked.filler.id == "bumpers-30"
        assert blocked.filler is None

    def test_default_cooldown_follows_loaded_config(self):
        """Test a picker without explicit settings reads the global config."""
        loaded = LineupTVConfig(scheduling={"default_filler_cooldown_ms": 1234})

        with patch.object(config_module, "_config", loaded):
            picker = FillerPicker(StaticHistory())

        assert picker.default_cooldown_ms == 1234

    def test_channel_cooldown_overrides_default(self):
        """Test the channel's repeat cooldown replaces the default."""
        history = StaticHistory(
            [PlayHistoryEntry("bumpers-30", "bumpers", NOW_MS - 10 * ONE_MINUTE_MS)]
        )
        picker = FillerPicker(history, RandomSource([1]), default_cooldown_ms=30 * ONE_MINUTE_MS)

        result = picker.pick_filler(
            FillerChannel("ch", filler_repeat_cooldown_ms=5 * ONE_MINUTE_MS),
            [filler_list("bumpers", 30)],
            ONE_MINUTE_MS,
            NOW_MS,
        )

        assert result.filler.id == "bumpers-30"

    def test_list_cooldown(self):
        """Test a list played inside its cooldown is skipped with a wait."""
        history = StaticHistory(
            [PlayHistoryEntry("bumpers-15", "bumpers", NOW_MS - 10 * ONE_MINUTE_MS)]
        )
        picker = FillerPicker(history, RandomSource([1]))

        result = picker.pick_filler(
            FillerChannel("ch", filler_repeat_cooldown_ms=0),
            [filler_list("bumpers", 15, 30, cooldown_ms=ONE_HOUR_MS)],
            2 * ONE_HOUR_MS,
            NOW_MS,
        )

        assert result.filler is None
        assert result.minimum_wait_ms == 50 * ONE_MINUTE_MS

    def test_history_of_other_lists_ignored(self):
        """Test plays from another list do not cool this one down."""
        history = StaticHistory(
            [PlayHistoryEntry("promos-15", "promos", NOW_MS - ONE_MINUTE_MS)]
        )
        picker = FillerPicker(history, RandomSource([1]))

        result = picker.pick_filler(
            FillerChannel("ch"),
            [filler_list("bumpers", 15, cooldown_ms=ONE_HOUR_MS)],
            ONE_MINUTE_MS,
            NOW_MS,
        )

        assert result.filler.id == "bumpers-15"

    def test_list_weights_accumulate(self):
        """Test later lists compete against the running total weight."""
        picker = FillerPicker(StaticHistory(), RandomSource([1]))
        calls = []

        def pick(reason, numerator, denominator):
            calls.append((reason, numerator, denominator))
            return reason == "program" or numerator != denominator

        with patch.object(picker, "weighted_pick", side_effect=pick):
            result = picker.pick_filler(
                FillerChannel("ch"),
                [filler_list("first", 15, weight=100), filler_list("second", 15, weight=100)],
                ONE_MINUTE_MS,
                NOW_MS,
            )

        assert result.filler_list_id == "second"
        assert ("filler", 100, 100) in calls
        assert ("filler", 100, 200) in calls

    def test_rejected_lists_yield_nothing(self):
        """Test nothing is picked when every list loses its draw."""
        picker = FillerPicker(StaticHistory(), RandomSource([1]))

        with patch.object(picker, "weighted_pick", return_value=False):
            result = picker.pick_filler(
                FillerChannel("ch"), [filler_list("bumpers", 15, 30)], ONE_MINUTE_MS, NOW_MS
            )

        assert result.filler is None
        assert result.minimum_wait_ms == MAX_SAFE_INTEGER

    def test_minimum_wait_never_negative(self):
        """Test minimum wait stays non-negative across history and cooldown combinations."""
        offsets = [-ONE_HOUR_MS, -ONE_MINUTE_MS, 0, ONE_MINUTE_MS, 29 * ONE_MINUTE_MS, 2 * ONE_HOUR_MS]
        cooldowns = [0, ONE_MINUTE_MS, 30 * ONE_MINUTE_MS]
        gaps = [10_000, 45_000, ONE_HOUR_MS]

        for offset, list_cooldown, repeat_cooldown, gap in itertools.product(
            offsets, cooldowns, cooldowns, gaps
        ):
            history = StaticHistory([PlayHistoryEntry("bumpers-30", "bumpers", NOW_MS - offset)])
            picker = FillerPicker(history, RandomSource([offset % 97 + 1]))

            result = picker.pick_filler(
                FillerChannel("ch", filler_repeat_cooldown_ms=repeat_cooldown),
                [filler_list("bumpers", 15, 30, 40, cooldown_ms=list_cooldown)],
                gap,
                NOW_MS,
            )

            assert result.minimum_wait_ms >= 0
            if result.filler is not None:
                assert result.filler.duration_ms <= gap


@pytest.mark.unit
class TestNormalization:
    """Tests for the scoring curves."""

    def test_duration_score_increases(self):
        """Test longer programs never score lower."""
        scores = [normalize_duration(s * 1000) for s in (5, 30, 60, 180, 600, 3600)]

        assert scores == sorted(scores)
        assert scores[0] >= 1

    def test_since_score_increases(self):
        """Test longer-unplayed programs never score lower."""
        scores = [normalize_since(m * ONE_MINUTE_MS) for m in (0, 5, 30, 120)]

        assert scores == sorted(scores)
        assert scores[-1] > scores[0]
