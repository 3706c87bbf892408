"""
Unit tests for infinite schedule persistence.
"""

import pytest
from sqlalchemy import func, select

from lineuptv.database.infinite_schedule_db import InfiniteScheduleDB
from lineuptv.database.models import GeneratedItem, InfiniteScheduleSlot, InfiniteScheduleSlotState
from lineuptv.scheduling.constants import ONE_DAY_MS, ONE_HOUR_MS, ONE_MINUTE_MS
from lineuptv.scheduling.infinite import GeneratedScheduleItem, ScheduleState, SlotStateUpdate
from lineuptv.scheduling.slots import FillerOrder, FillerType, SlotFiller

from tests.fixtures.factories import InfiniteScheduleFactory


@pytest.fixture
def repo(db_session):
    return InfiniteScheduleDB(db_session)


@pytest.fixture
def schedule(repo):
    return repo.create_schedule(
        InfiniteScheduleFactory.create(
            slots=[
                InfiniteScheduleFactory.slot(0, show_id="alpha", cooldown_ms=ONE_HOUR_MS),
                InfiniteScheduleFactory.slot(
                    1,
                    show_id="beta",
                    order="shuffle",
                    filler=[SlotFiller(types=[FillerType.PRE, FillerType.POST], filler_list_id="bumpers")],
                ),
            ],
            name="Evening",
        )
    )


def make_items(schedule_id, count, start_ms=0, duration_ms=30 * ONE_MINUTE_MS, first_index=0):
    return [
        GeneratedScheduleItem(
            schedule_id=schedule_id,
            item_type="content",
            start_time_ms=start_ms + i * duration_ms,
            duration_ms=duration_ms,
            sequence_index=first_index + i,
            program_id=f"program-{first_index + i}",
        )
        for i in range(count)
    ]


@pytest.mark.unit
class TestScheduleCrud:
    """Tests for schedule create, read, update and delete."""

    def test_create_with_state_rows(self, repo, schedule, db_session):
        """Test slots and schedule get their state rows on creation."""
        assert schedule.id is not None
        assert schedule.name == "Evening"
        assert [s.slot_index for s in schedule.slots] == [0, 1]
        assert all(s.state is not None and s.state.rng_seed is None for s in schedule.slots)
        assert schedule.state is not None
        assert schedule.state.rotation_cursor == 0

        state_count = db_session.execute(
            select(func.count()).select_from(InfiniteScheduleSlotState)
        ).scalar()
        assert state_count == 2

    def test_slot_fields_round_trip(self, schedule):
        """Test slot configuration survives storage."""
        alpha, beta = schedule.slots

        assert alpha.show_id == "alpha"
        assert alpha.cooldown_ms == ONE_HOUR_MS
        assert alpha.order == "next"
        assert beta.order == "shuffle"
        assert beta.filler == [
            SlotFiller(
                types=[FillerType.PRE, FillerType.POST],
                filler_list_id="bumpers",
                filler_order=FillerOrder.SHUFFLE_PREFER_SHORT,
            )
        ]

    def test_get_by_channel(self, repo, schedule):
        """Test lookup by channel id."""
        assert repo.get_schedule_by_channel(schedule.channel_id).id == schedule.id
        assert repo.get_schedule_by_channel("nobody") is None

    def test_list_enabled_only(self, repo, schedule):
        """Test disabled schedules are filtered on request."""
        repo.create_schedule(InfiniteScheduleFactory.create(enabled=False))

        assert len(repo.list_schedules()) == 2
        assert [s.id for s in repo.list_schedules(enabled_only=True)] == [schedule.id]

    def test_update_ignores_unknown_fields(self, repo, schedule):
        """Test only schedule columns are updated."""
        updated = repo.update_schedule(schedule.id, {"name": "Late", "pad_ms": ONE_MINUTE_MS, "bogus": 1})

        assert updated.name == "Late"
        assert updated.pad_ms == ONE_MINUTE_MS
        assert repo.update_schedule("missing", {"name": "x"}) is None

    def test_delete_cascades(self, repo, schedule, db_session):
        """Test deleting a schedule removes slots, states and items."""
        repo.append_generated_items(make_items(schedule.id, 3))

        assert repo.delete_schedule(schedule.id) is True
        assert repo.delete_schedule(schedule.id) is False
        for model in (InfiniteScheduleSlot, InfiniteScheduleSlotState, GeneratedItem):
            count = db_session.execute(select(func.count()).select_from(model)).scalar()
            assert count == 0


@pytest.mark.unit
class TestReplaceSlots:
    """Tests for replacing a schedule's slots."""

    def test_matching_ids_keep_state(self, repo, schedule):
        """Test a slot kept by id keeps its stored state."""
        alpha = schedule.slots[0]
        repo.save_slot_state(alpha.id, SlotStateUpdate(iterator_position=4, rng_seed=[1], rng_use_count=9))

        alpha.cooldown_ms = 0
        updated = repo.replace_slots(
            schedule.id,
            [alpha, InfiniteScheduleFactory.slot(1, "flex")],
        )

        kept = updated.slots[0]
        assert kept.id == alpha.id
        assert kept.cooldown_ms == 0
        assert kept.state.iterator_position == 4
        assert kept.state.rng_use_count == 9
        assert updated.slots[1].type.value == "flex"
        assert updated.slots[1].state is not None

    def test_removed_slots_deleted(self, repo, schedule, db_session):
        """Test slots missing from the new list are deleted with their state."""
        repo.replace_slots(schedule.id, [schedule.slots[0]])

        states = db_session.execute(select(func.count()).select_from(InfiniteScheduleSlotState)).scalar()
        assert len(repo.load_schedule_with_state(schedule.id).slots) == 1
        assert states == 1


@pytest.mark.unit
class TestState:
    """Tests for slot and schedule state storage."""

    def test_save_and_load_slot_state(self, repo, schedule):
        """Test a slot state update is stored in full."""
        slot_id = schedule.slots[1].id
        repo.save_slot_state(
            slot_id,
            SlotStateUpdate(
                iterator_position=2,
                rng_seed=[5, 6],
                rng_use_count=40,
                shuffle_order=["beta-s01e02", "beta-s01e01"],
                fill_mode_count=1,
                fill_mode_duration_ms=ONE_MINUTE_MS,
                last_scheduled_at_ms=123,
            ),
        )

        state = repo.load_slot_state(slot_id)
        assert state.rng_seed == [5, 6]
        assert state.rng_use_count == 40
        assert state.shuffle_order == ["beta-s01e02", "beta-s01e01"]
        assert state.last_scheduled_at_ms == 123

    def test_save_schedule_state(self, repo, schedule):
        """Test the schedule state is stored."""
        repo.save_schedule_state(
            schedule.id,
            ScheduleState(last_slot_index=1, rotation_cursor=0, selection_rng_seed=[7], selection_rng_use_count=3),
        )

        state = repo.load_schedule_with_state(schedule.id).state
        assert state.last_slot_index == 1
        assert state.selection_rng_seed == [7]
        assert state.selection_rng_use_count == 3

    def test_reset_slot_seeds(self, repo, schedule):
        """Test resetting forgets streams and positions."""
        for slot in schedule.slots:
            repo.save_slot_state(slot.id, SlotStateUpdate(iterator_position=3, rng_seed=[1], rng_use_count=5))
        repo.save_schedule_state(schedule.id, ScheduleState(last_slot_index=0, rotation_cursor=1, selection_rng_seed=[2]))

        assert repo.reset_slot_seeds(schedule.id) == 2

        reloaded = repo.load_schedule_with_state(schedule.id)
        assert all(s.state.rng_seed is None and s.state.iterator_position == 0 for s in reloaded.slots)
        assert reloaded.state.selection_rng_seed is None
        assert reloaded.state.rotation_cursor == 0


@pytest.mark.unit
class TestGeneratedItems:
    """Tests for the generated item buffer."""

    def test_empty_buffer(self, repo, schedule):
        """Test an empty buffer has no end and starts at sequence 0."""
        assert repo.get_buffer_end_time(schedule.id) is None
        assert repo.get_next_sequence_index(schedule.id) == 0
        assert repo.count_generated_items(schedule.id) == 0

    def test_append_in_chunks(self, repo, schedule):
        """Test more items than one insert chunk are all written."""
        assert repo.append_generated_items(make_items(schedule.id, 250)) == 250

        assert repo.count_generated_items(schedule.id) == 250
        assert repo.get_next_sequence_index(schedule.id) == 250
        assert repo.get_buffer_end_time(schedule.id) == 250 * 30 * ONE_MINUTE_MS

    def test_items_in_range(self, repo, schedule):
        """Test range queries return overlapping items in sequence order."""
        repo.append_generated_items(make_items(schedule.id, 10))

        items = repo.get_generated_items(schedule.id, from_ms=45 * ONE_MINUTE_MS, to_ms=2 * ONE_HOUR_MS)

        assert [i.sequence_index for i in items] == [1, 2, 3]
        assert len(repo.get_generated_items(schedule.id, limit=4)) == 4

    def test_item_at_time(self, repo, schedule):
        """Test the item covering a moment is found."""
        repo.append_generated_items(make_items(schedule.id, 4))

        assert repo.get_item_at_time(schedule.id, 65 * ONE_MINUTE_MS).sequence_index == 2
        assert repo.get_item_at_time(schedule.id, 5 * ONE_HOUR_MS) is None

    def test_delete_from(self, repo, schedule):
        """Test items starting at or after a time are removed."""
        repo.append_generated_items(make_items(schedule.id, 6))

        assert repo.delete_generated_items_from(schedule.id, ONE_HOUR_MS) == 4
        assert repo.get_buffer_end_time(schedule.id) == ONE_HOUR_MS

    def test_delete_before(self, repo, schedule):
        """Test items that ended by a time are pruned."""
        repo.append_generated_items(make_items(schedule.id, 6))

        assert repo.delete_generated_items_before(schedule.id, 65 * ONE_MINUTE_MS) == 2
        assert repo.count_generated_items(schedule.id) == 4

    def test_clear(self, repo, schedule):
        """Test clearing removes every item of the schedule only."""
        other = repo.create_schedule(InfiniteScheduleFactory.create())
        repo.append_generated_items(make_items(schedule.id, 3) + make_items(other.id, 2))

        assert repo.clear_generated_items(schedule.id) == 3
        assert repo.count_generated_items(other.id) == 2


@pytest.mark.unit
class TestBufferMaintenanceQuery:
    """Tests for finding schedules that need more buffer."""

    def test_empty_buffer_needs_maintenance(self, repo, schedule):
        """Test a schedule without items needs generating."""
        assert repo.get_schedules_needing_buffer_maintenance(0) == [schedule.id]

    def test_threshold(self, repo, schedule):
        """Test a buffer is extended once it ends within the threshold."""
        threshold_ms = schedule.buffer_threshold_days * ONE_DAY_MS
        repo.append_generated_items(make_items(schedule.id, 1, duration_ms=threshold_ms + ONE_HOUR_MS))

        assert repo.get_schedules_needing_buffer_maintenance(0) == []
        assert repo.get_schedules_needing_buffer_maintenance(2 * ONE_HOUR_MS) == [schedule.id]

    def test_disabled_skipped(self, repo):
        """Test disabled schedules are never maintained."""
        repo.create_schedule(InfiniteScheduleFactory.create(enabled=False))

        assert repo.get_schedules_needing_buffer_maintenance(0) == []
