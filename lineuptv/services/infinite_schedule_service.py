"""
Infinite Schedule Service

Ties the generator to storage: validates definitions, commits generation
results in one transaction, and keeps buffers topped up and pruned.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy.orm import Session

from lineuptv.config import InfiniteScheduleConfig, get_config
from lineuptv.database.infinite_schedule_db import InfiniteScheduleDB
from lineuptv.errors import InvalidConfigurationError, NotFoundError
from lineuptv.scheduling.constants import ONE_DAY_MS, ONE_HOUR_MS
from lineuptv.scheduling.infinite import (
    GenerationResult,
    InfiniteScheduleDef,
    InfiniteScheduleGenerator,
    InfiniteSlotDef,
)
from lineuptv.scheduling.pools import InMemoryPoolProvider
from lineuptv.scheduling.ports import ContentPoolProvider
from lineuptv.scheduling.slots import CONTENT_ORDERS, FILLER_ORDERS, SlotType

logger = logging.getLogger(__name__)

FILL_MODES = ("fill", "count", "duration")
SLOT_SELECTION_MODES = ("round_robin", "weighted")
FLEX_PREFERENCES = ("distribute", "end")

# Reference column each slot type needs
_REQUIRED_REFERENCE = {
    SlotType.SHOW: "show_id",
    SlotType.CUSTOM_SHOW: "custom_show_id",
    SlotType.FILLER: "filler_list_id",
    SlotType.REDIRECT: "redirect_channel_id",
    SlotType.SMART_COLLECTION: "smart_collection_id",
}

# Global pool provider, replaced at startup by whatever backs the library
_pool_provider: Optional[ContentPoolProvider] = None


def get_pool_provider() -> ContentPoolProvider:
    """Get the content pool provider (an empty in-memory one by default)."""
    global _pool_provider
    if _pool_provider is None:
        _pool_provider = InMemoryPoolProvider()
    return _pool_provider


def set_pool_provider(provider: Optional[ContentPoolProvider]) -> None:
    global _pool_provider
    _pool_provider = provider


def _now_ms() -> int:
    return int(time.time() * 1000)


def validate_schedule_def(schedule: InfiniteScheduleDef) -> None:
    """
    Check a schedule definition before anything is stored.

    Raises:
        InvalidConfigurationError: On the first problem found
    """
    if not schedule.channel_id:
        raise InvalidConfigurationError("Schedule requires a channel_id")
    if schedule.flex_preference not in FLEX_PREFERENCES:
        raise InvalidConfigurationError(f"Unknown flex preference: {schedule.flex_preference}")
    if schedule.slot_selection is not None and schedule.slot_selection not in SLOT_SELECTION_MODES:
        raise InvalidConfigurationError(f"Unknown slot selection: {schedule.slot_selection}")
    if schedule.buffer_days <= 0:
        raise InvalidConfigurationError("buffer_days must be positive")
    if schedule.buffer_threshold_days < 0:
        raise InvalidConfigurationError("buffer_threshold_days cannot be negative")

    seen_indexes = set()
    for slot in schedule.slots:
        if slot.slot_index in seen_indexes:
            raise InvalidConfigurationError(
                f"Duplicate slot index {slot.slot_index}", slot_id=slot.id
            )
        seen_indexes.add(slot.slot_index)
        validate_slot_def(slot)


def validate_slot_def(slot: InfiniteSlotDef) -> None:
    reference = _REQUIRED_REFERENCE.get(slot.type)
    if reference and not getattr(slot, reference):
        raise InvalidConfigurationError(
            f"{slot.type.value} slot {slot.slot_index} requires {reference}", slot_id=slot.id
        )

    allowed_orders = FILLER_ORDERS | CONTENT_ORDERS if slot.type == SlotType.FILLER else CONTENT_ORDERS
    if slot.order not in allowed_orders:
        raise InvalidConfigurationError(
            f"Unknown order {slot.order!r} for slot {slot.slot_index}", slot_id=slot.id
        )
    if slot.direction not in ("asc", "desc"):
        raise InvalidConfigurationError(
            f"Unknown direction {slot.direction!r} for slot {slot.slot_index}", slot_id=slot.id
        )

    if slot.fill_mode not in FILL_MODES:
        raise InvalidConfigurationError(
            f"Unknown fill mode {slot.fill_mode!r} for slot {slot.slot_index}", slot_id=slot.id
        )
    if slot.fill_mode != "fill" and (slot.fill_value is None or slot.fill_value <= 0):
        raise InvalidConfigurationError(
            f"Fill mode {slot.fill_mode} requires a positive fill_value", slot_id=slot.id
        )

    if slot.weight < 0:
        raise InvalidConfigurationError("Slot weight cannot be negative", slot_id=slot.id)
    if slot.cooldown_ms < 0:
        raise InvalidConfigurationError("Slot cooldown cannot be negative", slot_id=slot.id)
    if slot.pad_to_multiple is not None and slot.pad_to_multiple < 0:
        raise InvalidConfigurationError("pad_to_multiple cannot be negative", slot_id=slot.id)


class InfiniteScheduleService:
    """
    Infinite schedule operations over one database session.

    Every method that writes commits before returning, or rolls back and
    re-raises.
    """

    def __init__(
        self,
        session: Session,
        pools: Optional[ContentPoolProvider] = None,
        config: Optional[InfiniteScheduleConfig] = None,
    ):
        self.session = session
        self.db = InfiniteScheduleDB(session)
        self.pools = pools or get_pool_provider()
        self.config = config or get_config().infinite
        self.generator = InfiniteScheduleGenerator(self.db, self.pools, self.config)

    # ============ CRUD ============

    def list_schedules(self, enabled_only: bool = False) -> List[InfiniteScheduleDef]:
        return self.db.list_schedules(enabled_only=enabled_only)

    def get_schedule(self, schedule_id: str) -> InfiniteScheduleDef:
        schedule = self.db.load_schedule_with_state(schedule_id)
        if schedule is None:
            raise NotFoundError("InfiniteSchedule", schedule_id)
        return schedule

    def create_schedule(self, schedule: InfiniteScheduleDef) -> InfiniteScheduleDef:
        validate_schedule_def(schedule)
        with self._transaction():
            created = self.db.create_schedule(schedule)
        return created

    def update_schedule(
        self,
        schedule_id: str,
        changes: Dict[str, Any],
        slots: Optional[List[InfiniteSlotDef]] = None,
    ) -> InfiniteScheduleDef:
        """
        Update schedule fields and, when given, replace its slots.

        Already generated items are kept; call `regenerate` to rebuild them
        under the new rules.
        """
        current = self.get_schedule(schedule_id)
        candidate = InfiniteScheduleDef(**{**asdict_shallow(current), **changes})
        if slots is not None:
            candidate.slots = slots
        validate_schedule_def(candidate)

        with self._transaction():
            self.db.update_schedule(schedule_id, changes)
            if slots is not None:
                self.db.replace_slots(schedule_id, slots)
        return self.get_schedule(schedule_id)

    def delete_schedule(self, schedule_id: str) -> None:
        with self._transaction():
            if not self.db.delete_schedule(schedule_id):
                raise NotFoundError("InfiniteSchedule", schedule_id)

    # ============ Generation ============

    def commit(self, result: GenerationResult) -> int:
        """
        Persist a generation result: items, slot states and schedule state.

        Returns:
            Number of items written
        """
        with self._transaction():
            written = self.db.append_generated_items(result.items)
            for slot_id, update in result.slot_states.items():
                self.db.save_slot_state(slot_id, update)
            if result.schedule_state is not None:
                self.db.save_schedule_state(result.schedule_id, result.schedule_state)

        if result.escape_valve_count:
            logger.warning(
                f"Schedule {result.schedule_id}: escape valve used {result.escape_valve_count} times"
            )
        logger.info(f"Committed {written} items for schedule {result.schedule_id}")
        return written

    def extend_buffer(
        self,
        schedule_id: str,
        to_ms: Optional[int] = None,
        now_ms: Optional[int] = None,
    ) -> GenerationResult:
        """Generate from the buffer end and commit."""
        result = self.generator.generate(schedule_id, to_ms=to_ms, now_ms=now_ms)
        self.commit(result)
        return result

    def regenerate(
        self,
        schedule_id: str,
        clear: bool = False,
        now_ms: Optional[int] = None,
    ) -> GenerationResult:
        """
        Rebuild a schedule's buffer.

        Args:
            schedule_id: Schedule to rebuild
            clear: Drop every item and reset all random streams first, so the
                new buffer starts from scratch. Otherwise only items starting
                at or after now are replaced and the streams continue.
            now_ms: Reference "now"

        Returns:
            The committed GenerationResult
        """
        self.get_schedule(schedule_id)
        now = now_ms if now_ms is not None else _now_ms()

        with self._transaction():
            if clear:
                removed = self.db.clear_generated_items(schedule_id)
                self.db.reset_slot_seeds(schedule_id)
            else:
                removed = self.db.delete_generated_items_from(schedule_id, now)
        logger.info(f"Regenerating schedule {schedule_id}: removed {removed} items (clear={clear})")

        result = self.generator.generate(schedule_id, now_ms=now)
        self.commit(result)
        return result

    def preview(
        self,
        schedule: InfiniteScheduleDef,
        from_ms: int,
        to_ms: int,
        seed: Optional[List[int]] = None,
    ) -> GenerationResult:
        """Generate without persisting anything."""
        if to_ms <= from_ms:
            raise InvalidConfigurationError("Preview range end must be after its start")
        validate_schedule_def(schedule)
        return self.generator.preview(schedule, from_ms, to_ms, seed=seed)

    def reset_seeds(self, schedule_id: str) -> int:
        self.get_schedule(schedule_id)
        with self._transaction():
            count = self.db.reset_slot_seeds(schedule_id)
        return count

    # ============ Diagnostics ============

    def get_state(self, schedule_id: str, now_ms: Optional[int] = None) -> Dict[str, Any]:
        """Slot states, schedule state and buffer extent of a schedule."""
        schedule = self.get_schedule(schedule_id)
        now = now_ms if now_ms is not None else _now_ms()
        buffer_end = self.db.get_buffer_end_time(schedule_id)
        current = self.db.get_item_at_time(schedule_id, now)

        return {
            "schedule_id": schedule_id,
            "schedule_state": schedule.state.to_dict() if schedule.state else None,
            "slots": [
                {
                    "slot_id": slot.id,
                    "slot_index": slot.slot_index,
                    "slot_type": slot.type.value,
                    "state": asdict(slot.state) if slot.state else None,
                }
                for slot in schedule.slots
            ],
            "buffer": {
                "item_count": self.db.count_generated_items(schedule_id),
                "end_time_ms": buffer_end,
                "remaining_ms": max(0, buffer_end - now) if buffer_end is not None else 0,
                "next_sequence_index": self.db.get_next_sequence_index(schedule_id),
                "current_item": current.to_dict() if current else None,
            },
        }

    # ============ Maintenance ============

    def prune(
        self,
        schedule_id: str,
        now_ms: Optional[int] = None,
        older_than_hours: Optional[int] = None,
    ) -> int:
        """Delete items that finished more than `older_than_hours` ago."""
        now = now_ms if now_ms is not None else _now_ms()
        hours = older_than_hours if older_than_hours is not None else self.config.prune_after_hours
        with self._transaction():
            count = self.db.delete_generated_items_before(schedule_id, now - hours * ONE_HOUR_MS)
        if count:
            logger.debug(f"Pruned {count} items from schedule {schedule_id}")
        return count

    def maintain_buffers(self, now_ms: Optional[int] = None) -> Dict[str, int]:
        """
        Extend every schedule whose buffer runs out within its threshold.

        A failing schedule is logged and counted; the rest still run.
        """
        now = now_ms if now_ms is not None else _now_ms()
        stats = {
            "checked": 0,
            "extended": 0,
            "items_generated": 0,
            "items_pruned": 0,
            "errors": 0,
        }

        for schedule in self.db.list_schedules(enabled_only=True):
            stats["checked"] += 1
            try:
                stats["items_pruned"] += self.prune(schedule.id, now_ms=now)
            except Exception as e:
                logger.error(f"Failed to prune schedule {schedule.id}: {e}")
                stats["errors"] += 1

        for schedule_id in self.db.get_schedules_needing_buffer_maintenance(now):
            try:
                schedule = self.get_schedule(schedule_id)
                result = self.generator.generate(
                    schedule_id,
                    to_ms=now + schedule.buffer_days * ONE_DAY_MS,
                    now_ms=now,
                )
                stats["items_generated"] += self.commit(result)
                stats["extended"] += 1
            except Exception as e:
                logger.error(f"Failed to extend buffer for schedule {schedule_id}: {e}")
                stats["errors"] += 1

        return stats

    # ============ Helpers ============

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        """Commit on success, roll back on error."""
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


def asdict_shallow(schedule: InfiniteScheduleDef) -> Dict[str, Any]:
    """Top-level fields of a schedule def without deep-copying slots."""
    return {name: getattr(schedule, name) for name in schedule.__dataclass_fields__}
