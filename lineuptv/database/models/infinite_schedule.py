"""
Infinite Schedule Database Models

Defines InfiniteSchedule, its slots, the per-slot and per-schedule
persisted state, and the generated buffer items.
"""

from typing import Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lineuptv.database.models.base import Base, TimestampMixin, uuid_column


class InfiniteSchedule(Base, TimestampMixin):
    """
    A rule-based schedule that keeps a rolling buffer of items for a channel.
    """

    __tablename__ = "infinite_schedules"

    id: Mapped[str] = uuid_column()
    channel_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    pad_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=300_000)
    # "distribute" or "end"
    flex_preference: Mapped[str] = mapped_column(String(20), nullable=False, default="end")
    time_zone_offset_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Buffer management
    buffer_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    buffer_threshold_days: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # "round_robin" or "weighted"; null follows the app config
    slot_selection: Mapped[str | None] = mapped_column(String(20), nullable=True)

    slots: Mapped[list["InfiniteScheduleSlot"]] = relationship(
        "InfiniteScheduleSlot",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="InfiniteScheduleSlot.slot_index",
    )
    state: Mapped[Optional["InfiniteScheduleState"]] = relationship(
        "InfiniteScheduleState",
        back_populates="schedule",
        cascade="all, delete-orphan",
        uselist=False,
    )
    items: Mapped[list["GeneratedItem"]] = relationship(
        "GeneratedItem",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="GeneratedItem.sequence_index",
    )

    def __repr__(self) -> str:
        return f"<InfiniteSchedule {self.id} channel={self.channel_id}>"


class InfiniteScheduleSlot(Base, TimestampMixin):
    """
    One slot of an infinite schedule.

    Only the reference column matching `slot_type` is populated. A null
    `anchor_time_ms` makes the slot floating.
    """

    __tablename__ = "infinite_schedule_slots"

    id: Mapped[str] = uuid_column()
    schedule_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("infinite_schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot_index: Mapped[int] = mapped_column(Integer, nullable=False)
    # movie, show, custom-show, filler, redirect, flex, smart-collection
    slot_type: Mapped[str] = mapped_column(String(20), nullable=False)

    show_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    custom_show_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    filler_list_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    redirect_channel_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    smart_collection_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # {"order": ..., "direction": ..., "season_filter": [...]}
    slot_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Time anchoring
    anchor_time_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    anchor_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    anchor_days: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Floating slots
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cooldown_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # "fill", "count" or "duration"
    fill_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="fill")
    fill_value: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    pad_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pad_to_multiple: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # {"fillers": [{"types": [...], "filler_list_id": ..., "filler_order": ...}]}
    filler_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    schedule: Mapped["InfiniteSchedule"] = relationship(
        "InfiniteSchedule",
        back_populates="slots",
    )
    state: Mapped[Optional["InfiniteScheduleSlotState"]] = relationship(
        "InfiniteScheduleSlotState",
        back_populates="slot",
        cascade="all, delete-orphan",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<InfiniteScheduleSlot {self.slot_index}:{self.slot_type}>"


class InfiniteScheduleSlotState(Base, TimestampMixin):
    """Random stream and iterator position of a slot. One row per slot."""

    __tablename__ = "infinite_schedule_slot_states"

    id: Mapped[str] = uuid_column()
    slot_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("infinite_schedule_slots.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    rng_seed: Mapped[list | None] = mapped_column(JSON, nullable=True)
    rng_use_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    iterator_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shuffle_order: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Progress through the current count/duration fill run
    fill_mode_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fill_mode_duration_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    last_scheduled_at_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    slot: Mapped["InfiniteScheduleSlot"] = relationship(
        "InfiniteScheduleSlot",
        back_populates="state",
    )

    def __repr__(self) -> str:
        return f"<InfiniteScheduleSlotState slot={self.slot_id} pos={self.iterator_position}>"


class InfiniteScheduleState(Base, TimestampMixin):
    """Slot rotation and generation cursor of a schedule. One row per schedule."""

    __tablename__ = "infinite_schedule_states"

    id: Mapped[str] = uuid_column()
    schedule_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("infinite_schedules.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    last_slot_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rotation_cursor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generation_cursor_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Separate stream used to choose which slot plays next
    selection_rng_seed: Mapped[list | None] = mapped_column(JSON, nullable=True)
    selection_rng_use_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    schedule: Mapped["InfiniteSchedule"] = relationship(
        "InfiniteSchedule",
        back_populates="state",
    )

    def __repr__(self) -> str:
        return f"<InfiniteScheduleState schedule={self.schedule_id}>"


class GeneratedItem(Base):
    """
    An emitted buffer item. Rows are append-only.
    """

    __tablename__ = "generated_schedule_items"
    __table_args__ = (
        Index("ix_generated_items_schedule_start", "schedule_id", "start_time_ms"),
    )

    id: Mapped[str] = uuid_column()
    schedule_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("infinite_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    slot_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    program_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # content, filler, redirect, flex, offline
    item_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_time_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    redirect_channel_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    filler_list_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    filler_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    sequence_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    schedule: Mapped["InfiniteSchedule"] = relationship(
        "InfiniteSchedule",
        back_populates="items",
    )

    @property
    def end_time_ms(self) -> int:
        return self.start_time_ms + self.duration_ms

    def __repr__(self) -> str:
        return f"<GeneratedItem #{self.sequence_index} {self.item_type} @{self.start_time_ms}>"
