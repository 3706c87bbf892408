"""
Persistence for infinite schedules.

`InfiniteScheduleDB` is the SQLAlchemy implementation of the
`SchedulePersistence` port plus schedule CRUD. It only flushes; callers
own the transaction and commit or roll back.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload

from lineuptv.database.models import (
    GeneratedItem,
    InfiniteSchedule,
    InfiniteScheduleSlot,
    InfiniteScheduleSlotState,
    InfiniteScheduleState,
)
from lineuptv.scheduling.infinite import (
    GeneratedScheduleItem,
    InfiniteScheduleDef,
    InfiniteSlotDef,
    ScheduleState,
    SlotState,
    SlotStateUpdate,
)
from lineuptv.scheduling.ports import SchedulePersistence
from lineuptv.scheduling.slots import FillerOrder, FillerType, SlotFiller

logger = logging.getLogger(__name__)

INSERT_CHUNK_SIZE = 100

SCHEDULE_FIELDS = (
    "name",
    "channel_id",
    "pad_ms",
    "flex_preference",
    "time_zone_offset_minutes",
    "buffer_days",
    "buffer_threshold_days",
    "enabled",
    "slot_selection",
)


# ============ Row <-> domain conversion ============


def _filler_config(fillers: List[SlotFiller]) -> Optional[dict]:
    if not fillers:
        return None
    return {
        "fillers": [
            {
                "types": [FillerType(t).value for t in f.types],
                "filler_list_id": f.filler_list_id,
                "filler_order": FillerOrder(f.filler_order).value,
            }
            for f in fillers
        ]
    }


def _fillers_from_config(config: Optional[dict]) -> List[SlotFiller]:
    fillers = []
    for entry in (config or {}).get("fillers") or []:
        fillers.append(
            SlotFiller(
                types=[FillerType(t) for t in entry.get("types", [])],
                filler_list_id=entry["filler_list_id"],
                filler_order=FillerOrder(entry.get("filler_order", FillerOrder.SHUFFLE_PREFER_SHORT.value)),
            )
        )
    return fillers


def slot_state_from_row(row: Optional[InfiniteScheduleSlotState]) -> Optional[SlotState]:
    if row is None:
        return None
    return SlotState(
        rng_seed=list(row.rng_seed) if row.rng_seed is not None else None,
        rng_use_count=row.rng_use_count,
        iterator_position=row.iterator_position,
        shuffle_order=list(row.shuffle_order) if row.shuffle_order is not None else None,
        fill_mode_count=row.fill_mode_count,
        fill_mode_duration_ms=row.fill_mode_duration_ms,
        last_scheduled_at_ms=row.last_scheduled_at_ms,
    )


def schedule_state_from_row(row: Optional[InfiniteScheduleState]) -> Optional[ScheduleState]:
    if row is None:
        return None
    return ScheduleState(
        last_slot_index=row.last_slot_index,
        rotation_cursor=row.rotation_cursor,
        generation_cursor_ms=row.generation_cursor_ms,
        selection_rng_seed=list(row.selection_rng_seed) if row.selection_rng_seed is not None else None,
        selection_rng_use_count=row.selection_rng_use_count,
    )


def slot_def_from_row(row: InfiniteScheduleSlot) -> InfiniteSlotDef:
    config = row.slot_config or {}
    return InfiniteSlotDef(
        id=row.id,
        slot_index=row.slot_index,
        type=row.slot_type,
        show_id=row.show_id,
        custom_show_id=row.custom_show_id,
        filler_list_id=row.filler_list_id,
        redirect_channel_id=row.redirect_channel_id,
        smart_collection_id=row.smart_collection_id,
        order=config.get("order") or "next",
        direction=config.get("direction") or "asc",
        season_filter=config.get("season_filter"),
        anchor_time_ms=row.anchor_time_ms,
        anchor_mode=row.anchor_mode,
        anchor_days=row.anchor_days,
        weight=row.weight,
        cooldown_ms=row.cooldown_ms,
        fill_mode=row.fill_mode,
        fill_value=row.fill_value,
        pad_ms=row.pad_ms,
        pad_to_multiple=row.pad_to_multiple,
        filler=_fillers_from_config(row.filler_config),
        state=slot_state_from_row(row.state),
    )


def schedule_def_from_row(row: InfiniteSchedule) -> InfiniteScheduleDef:
    return InfiniteScheduleDef(
        id=row.id,
        channel_id=row.channel_id,
        name=row.name,
        pad_ms=row.pad_ms,
        flex_preference=row.flex_preference,
        time_zone_offset_minutes=row.time_zone_offset_minutes,
        buffer_days=row.buffer_days,
        buffer_threshold_days=row.buffer_threshold_days,
        enabled=row.enabled,
        slot_selection=row.slot_selection,
        slots=[slot_def_from_row(s) for s in row.slots],
        state=schedule_state_from_row(row.state),
    )


def _slot_row(slot: InfiniteSlotDef) -> InfiniteScheduleSlot:
    row = InfiniteScheduleSlot(
        slot_index=slot.slot_index,
        slot_type=slot.type.value,
        show_id=slot.show_id,
        custom_show_id=slot.custom_show_id,
        filler_list_id=slot.filler_list_id,
        redirect_channel_id=slot.redirect_channel_id,
        smart_collection_id=slot.smart_collection_id,
        slot_config={
            "order": slot.order,
            "direction": slot.direction,
            "season_filter": slot.season_filter,
        },
        anchor_time_ms=slot.anchor_time_ms,
        anchor_mode=slot.anchor_mode,
        anchor_days=slot.anchor_days,
        weight=slot.weight,
        cooldown_ms=slot.cooldown_ms,
        fill_mode=slot.fill_mode,
        fill_value=slot.fill_value,
        pad_ms=slot.pad_ms,
        pad_to_multiple=slot.pad_to_multiple,
        filler_config=_filler_config(slot.filler),
    )
    if slot.id:
        row.id = slot.id
    # Slot and state are created together
    row.state = InfiniteScheduleSlotState()
    return row


def _item_row(item: GeneratedScheduleItem, created_at_ms: int) -> GeneratedItem:
    return GeneratedItem(
        id=item.id,
        schedule_id=item.schedule_id,
        slot_id=item.slot_id,
        program_id=item.program_id,
        item_type=item.item_type,
        start_time_ms=item.start_time_ms,
        duration_ms=item.duration_ms,
        redirect_channel_id=item.redirect_channel_id,
        filler_list_id=item.filler_list_id,
        filler_type=item.filler_type,
        sequence_index=item.sequence_index,
        created_at_ms=created_at_ms,
    )


def item_from_row(row: GeneratedItem) -> GeneratedScheduleItem:
    return GeneratedScheduleItem(
        id=row.id,
        schedule_id=row.schedule_id,
        slot_id=row.slot_id,
        program_id=row.program_id,
        item_type=row.item_type,
        start_time_ms=row.start_time_ms,
        duration_ms=row.duration_ms,
        redirect_channel_id=row.redirect_channel_id,
        filler_list_id=row.filler_list_id,
        filler_type=row.filler_type,
        sequence_index=row.sequence_index,
    )


# ============ Repository ============


class InfiniteScheduleDB(SchedulePersistence):
    """SQLAlchemy-backed schedule storage."""

    def __init__(self, session: Session):
        self.session = session

    # ---------- Loading ----------

    def get_schedule_row(self, schedule_id: str) -> Optional[InfiniteSchedule]:
        stmt = (
            select(InfiniteSchedule)
            .where(InfiniteSchedule.id == schedule_id)
            .options(
                selectinload(InfiniteSchedule.slots).selectinload(InfiniteScheduleSlot.state),
                selectinload(InfiniteSchedule.state),
            )
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def load_schedule_with_state(self, schedule_id: str) -> Optional[InfiniteScheduleDef]:
        row = self.get_schedule_row(schedule_id)
        return schedule_def_from_row(row) if row else None

    def get_schedule_by_channel(self, channel_id: str) -> Optional[InfiniteScheduleDef]:
        stmt = select(InfiniteSchedule.id).where(InfiniteSchedule.channel_id == channel_id)
        schedule_id = self.session.execute(stmt).scalars().first()
        return self.load_schedule_with_state(schedule_id) if schedule_id else None

    def list_schedules(self, enabled_only: bool = False) -> List[InfiniteScheduleDef]:
        stmt = select(InfiniteSchedule).options(
            selectinload(InfiniteSchedule.slots).selectinload(InfiniteScheduleSlot.state),
            selectinload(InfiniteSchedule.state),
        )
        if enabled_only:
            stmt = stmt.where(InfiniteSchedule.enabled.is_(True))
        rows = self.session.execute(stmt.order_by(InfiniteSchedule.created_at)).scalars().all()
        return [schedule_def_from_row(r) for r in rows]

    def load_slot_state(self, slot_id: str) -> Optional[SlotState]:
        stmt = select(InfiniteScheduleSlotState).where(InfiniteScheduleSlotState.slot_id == slot_id)
        return slot_state_from_row(self.session.execute(stmt).scalar_one_or_none())

    # ---------- State ----------

    def save_slot_state(self, slot_id: str, update: SlotStateUpdate) -> None:
        stmt = select(InfiniteScheduleSlotState).where(InfiniteScheduleSlotState.slot_id == slot_id)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = InfiniteScheduleSlotState(slot_id=slot_id)
            self.session.add(row)

        row.rng_seed = list(update.rng_seed)
        row.rng_use_count = update.rng_use_count
        row.iterator_position = update.iterator_position
        row.shuffle_order = list(update.shuffle_order) if update.shuffle_order is not None else None
        row.fill_mode_count = update.fill_mode_count
        row.fill_mode_duration_ms = update.fill_mode_duration_ms
        row.last_scheduled_at_ms = update.last_scheduled_at_ms
        self.session.flush()

    def save_schedule_state(self, schedule_id: str, state: ScheduleState) -> None:
        stmt = select(InfiniteScheduleState).where(InfiniteScheduleState.schedule_id == schedule_id)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            row = InfiniteScheduleState(schedule_id=schedule_id)
            self.session.add(row)

        row.last_slot_index = state.last_slot_index
        row.rotation_cursor = state.rotation_cursor
        row.generation_cursor_ms = state.generation_cursor_ms
        row.selection_rng_seed = (
            list(state.selection_rng_seed) if state.selection_rng_seed is not None else None
        )
        row.selection_rng_use_count = state.selection_rng_use_count
        self.session.flush()

    def reset_slot_seeds(self, schedule_id: str) -> int:
        """
        Forget every random stream and position of a schedule.

        Returns:
            Number of slot states reset
        """
        stmt = (
            select(InfiniteScheduleSlotState)
            .join(InfiniteScheduleSlot)
            .where(InfiniteScheduleSlot.schedule_id == schedule_id)
        )
        rows = self.session.execute(stmt).scalars().all()
        for row in rows:
            row.rng_seed = None
            row.rng_use_count = 0
            row.iterator_position = 0
            row.shuffle_order = None
            row.fill_mode_count = 0
            row.fill_mode_duration_ms = 0
            row.last_scheduled_at_ms = None

        state_stmt = select(InfiniteScheduleState).where(InfiniteScheduleState.schedule_id == schedule_id)
        state = self.session.execute(state_stmt).scalar_one_or_none()
        if state is not None:
            state.selection_rng_seed = None
            state.selection_rng_use_count = 0
            state.rotation_cursor = 0
            state.last_slot_index = None

        self.session.flush()
        logger.info(f"Reset {len(rows)} slot seeds for schedule {schedule_id}")
        return len(rows)

    # ---------- Generated items ----------

    def append_generated_items(self, items: List[GeneratedScheduleItem]) -> int:
        created_at_ms = int(time.time() * 1000)
        for start in range(0, len(items), INSERT_CHUNK_SIZE):
            chunk = items[start:start + INSERT_CHUNK_SIZE]
            self.session.add_all([_item_row(item, created_at_ms) for item in chunk])
            self.session.flush()
        return len(items)

    def delete_generated_items_from(self, schedule_id: str, from_ms: int) -> int:
        stmt = delete(GeneratedItem).where(
            GeneratedItem.schedule_id == schedule_id,
            GeneratedItem.start_time_ms >= from_ms,
        )
        return self.session.execute(stmt).rowcount or 0

    def delete_generated_items_before(self, schedule_id: str, before_ms: int) -> int:
        stmt = delete(GeneratedItem).where(
            GeneratedItem.schedule_id == schedule_id,
            GeneratedItem.start_time_ms + GeneratedItem.duration_ms <= before_ms,
        )
        return self.session.execute(stmt).rowcount or 0

    def clear_generated_items(self, schedule_id: str) -> int:
        stmt = delete(GeneratedItem).where(GeneratedItem.schedule_id == schedule_id)
        return self.session.execute(stmt).rowcount or 0

    def get_buffer_end_time(self, schedule_id: str) -> Optional[int]:
        stmt = select(func.max(GeneratedItem.start_time_ms + GeneratedItem.duration_ms)).where(
            GeneratedItem.schedule_id == schedule_id
        )
        return self.session.execute(stmt).scalar()

    def get_next_sequence_index(self, schedule_id: str) -> int:
        stmt = select(func.max(GeneratedItem.sequence_index)).where(
            GeneratedItem.schedule_id == schedule_id
        )
        last = self.session.execute(stmt).scalar()
        return 0 if last is None else last + 1

    def count_generated_items(self, schedule_id: str) -> int:
        stmt = select(func.count()).select_from(GeneratedItem).where(
            GeneratedItem.schedule_id == schedule_id
        )
        return self.session.execute(stmt).scalar() or 0

    def get_generated_items(
        self,
        schedule_id: str,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[GeneratedScheduleItem]:
        """Items overlapping [from_ms, to_ms), in sequence order."""
        stmt = select(GeneratedItem).where(GeneratedItem.schedule_id == schedule_id)
        if from_ms is not None:
            stmt = stmt.where(GeneratedItem.start_time_ms + GeneratedItem.duration_ms > from_ms)
        if to_ms is not None:
            stmt = stmt.where(GeneratedItem.start_time_ms < to_ms)
        stmt = stmt.order_by(GeneratedItem.sequence_index)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [item_from_row(r) for r in self.session.execute(stmt).scalars().all()]

    def get_item_at_time(self, schedule_id: str, at_ms: int) -> Optional[GeneratedScheduleItem]:
        """The item playing at `at_ms`, if the buffer covers it."""
        stmt = (
            select(GeneratedItem)
            .where(
                GeneratedItem.schedule_id == schedule_id,
                GeneratedItem.start_time_ms <= at_ms,
                GeneratedItem.start_time_ms + GeneratedItem.duration_ms > at_ms,
            )
            .order_by(GeneratedItem.sequence_index.desc())
            .limit(1)
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        return item_from_row(row) if row else None

    def get_schedules_needing_buffer_maintenance(self, now_ms: int) -> List[str]:
        """
        Enabled schedules whose buffer ends within their threshold of `now_ms`.
        """
        buffer_end = (
            select(
                GeneratedItem.schedule_id.label("schedule_id"),
                func.max(GeneratedItem.start_time_ms + GeneratedItem.duration_ms).label("end_ms"),
            )
            .group_by(GeneratedItem.schedule_id)
            .subquery()
        )
        stmt = (
            select(InfiniteSchedule.id, InfiniteSchedule.buffer_threshold_days, buffer_end.c.end_ms)
            .outerjoin(buffer_end, buffer_end.c.schedule_id == InfiniteSchedule.id)
            .where(InfiniteSchedule.enabled.is_(True))
        )
        needing = []
        for schedule_id, threshold_days, end_ms in self.session.execute(stmt).all():
            if end_ms is None or end_ms < now_ms + threshold_days * 24 * 60 * 60 * 1000:
                needing.append(schedule_id)
        return needing

    # ---------- CRUD ----------

    def create_schedule(self, schedule: InfiniteScheduleDef) -> InfiniteScheduleDef:
        row = InfiniteSchedule(**{name: getattr(schedule, name) for name in SCHEDULE_FIELDS})
        if schedule.id:
            row.id = schedule.id
        row.slots = [_slot_row(slot) for slot in schedule.slots]
        row.state = InfiniteScheduleState()
        self.session.add(row)
        self.session.flush()
        logger.info(f"Created infinite schedule {row.id} with {len(row.slots)} slots")
        return self.load_schedule_with_state(row.id)

    def update_schedule(self, schedule_id: str, changes: Dict[str, Any]) -> Optional[InfiniteScheduleDef]:
        row = self.get_schedule_row(schedule_id)
        if row is None:
            return None
        for name, value in changes.items():
            if name in SCHEDULE_FIELDS:
                setattr(row, name, value)
        self.session.flush()
        return self.load_schedule_with_state(schedule_id)

    def replace_slots(self, schedule_id: str, slots: List[InfiniteSlotDef]) -> Optional[InfiniteScheduleDef]:
        """
        Replace a schedule's slots.

        Slots whose id matches an existing slot keep their row and state;
        removed slots are deleted together with their state.
        """
        row = self.get_schedule_row(schedule_id)
        if row is None:
            return None

        existing = {s.id: s for s in row.slots}
        kept: List[InfiniteScheduleSlot] = []
        for slot in slots:
            current = existing.pop(slot.id, None) if slot.id else None
            if current is None:
                kept.append(_slot_row(slot))
                continue
            fresh = _slot_row(slot)
            for column in InfiniteScheduleSlot.__table__.columns.keys():
                if column not in ("id", "schedule_id", "created_at", "updated_at"):
                    setattr(current, column, getattr(fresh, column))
            if current.state is None:
                current.state = InfiniteScheduleSlotState()
            kept.append(current)

        row.slots = kept
        self.session.flush()
        logger.info(
            f"Replaced slots of schedule {schedule_id}: {len(kept)} kept/created, {len(existing)} removed"
        )
        return self.load_schedule_with_state(schedule_id)

    def delete_schedule(self, schedule_id: str) -> bool:
        row = self.get_schedule_row(schedule_id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        logger.info(f"Deleted infinite schedule {schedule_id}")
        return True
