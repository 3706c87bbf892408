"""
Slot definitions shared by the time-slot and random-slot schedulers.

A slot says what kind of content plays (its `type` and target id), in
what order, with which filler attached, and for how long.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

from lineuptv.errors import InvalidConfigurationError


class SlotType(str, Enum):
    """What a slot pulls its programs from."""

    MOVIE = "movie"
    SHOW = "show"
    CUSTOM_SHOW = "custom-show"
    FILLER = "filler"
    REDIRECT = "redirect"
    FLEX = "flex"
    SMART_COLLECTION = "smart-collection"


class SlotOrder(str, Enum):
    """Iteration order for content slots."""

    NEXT = "next"
    SHUFFLE = "shuffle"
    ORDERED_SHUFFLE = "ordered_shuffle"
    ALPHANUMERIC = "alphanumeric"
    CHRONOLOGICAL = "chronological"


class FillerOrder(str, Enum):
    """Iteration order for filler lists."""

    UNIFORM = "uniform"
    SHUFFLE_PREFER_SHORT = "shuffle_prefer_short"
    SHUFFLE_PREFER_LONG = "shuffle_prefer_long"


class Direction(str, Enum):
    ASC = "asc"
    DESC = "desc"


class FillerType(str, Enum):
    """Where attached filler plays relative to slot content."""

    HEAD = "head"  # Once, before the slot's first program
    PRE = "pre"  # Before each program
    POST = "post"  # After each program
    TAIL = "tail"  # Once, after the slot's last program
    FALLBACK = "fallback"  # Stretched over padding instead of flex


class DurationWeighting(str, Enum):
    LINEAR = "linear"
    LOG = "log"


@dataclass
class SlotFiller:
    """A filler list attached to a slot, with the positions it may fill."""

    types: list[FillerType]
    filler_list_id: str
    filler_order: FillerOrder = FillerOrder.SHUFFLE_PREFER_SHORT


@dataclass
class FixedDuration:
    """Pack programs until the slot's duration is used up."""

    duration_ms: int
    type: str = field(default="fixed", init=False)


@dataclass
class DynamicDuration:
    """Play a set number of programs regardless of their length."""

    program_count: int
    type: str = field(default="dynamic", init=False)


DurationSpec = Union[FixedDuration, DynamicDuration]

CONTENT_ORDERS = {o.value for o in SlotOrder}
CUSTOM_SHOW_ORDERS = {SlotOrder.NEXT.value, SlotOrder.SHUFFLE.value, SlotOrder.ORDERED_SHUFFLE.value}
FILLER_ORDERS = {o.value for o in FillerOrder}


@dataclass
class Slot:
    """
    Base slot definition.

    Only the target field matching `type` is read: `show_id` for shows,
    `custom_show_id` for custom shows and so on.
    """

    type: SlotType
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    order: str = SlotOrder.NEXT.value
    direction: Direction = Direction.ASC
    show_id: Optional[str] = None
    custom_show_id: Optional[str] = None
    filler_list_id: Optional[str] = None
    channel_id: Optional[str] = None
    smart_collection_id: Optional[str] = None
    filler: list[SlotFiller] = field(default_factory=list)

    # Filler slot weighting
    decay_factor: float = 0.5
    recovery_factor: float = 0.05
    duration_weighting: DurationWeighting = DurationWeighting.LINEAR

    def __post_init__(self):
        self.type = SlotType(self.type)
        self.direction = Direction(self.direction)
        self.duration_weighting = DurationWeighting(self.duration_weighting)
        if isinstance(self.order, Enum):
            self.order = self.order.value

    @property
    def ascending(self) -> bool:
        return self.direction == Direction.ASC

    def may_have_filler(self) -> bool:
        return self.type in (SlotType.MOVIE, SlotType.SHOW, SlotType.CUSTOM_SHOW)


@dataclass
class TimeSlot(Slot):
    """A slot anchored at an offset into the schedule period."""

    start_time_ms: int = 0


@dataclass
class RandomSlot(Slot):
    """A floating slot competing by weight, subject to a cooldown."""

    weight: float = 1.0
    cooldown_ms: int = 0
    duration_spec: Optional[DurationSpec] = None
    index: Optional[int] = None


# ============ Iterator keys ============


_ITERATOR_KEYS: dict[SlotType, Callable[[Slot], str]] = {
    SlotType.MOVIE: lambda slot: f"movie_{slot.order}",
    SlotType.SHOW: lambda slot: f"tv_{slot.show_id}_{slot.order}",
    SlotType.CUSTOM_SHOW: lambda slot: f"custom-show_{slot.custom_show_id}_{slot.order}",
    SlotType.FILLER: lambda slot: f"filler_{slot.filler_list_id}_{slot.order}",
    SlotType.SMART_COLLECTION: lambda slot: f"smart_collection_{slot.smart_collection_id}_{slot.order}",
    SlotType.REDIRECT: lambda slot: f"redirect_{slot.channel_id}",
    SlotType.FLEX: lambda slot: "flex",
}


def slot_iterator_key(slot: Slot) -> str:
    """Slots sharing a key share one iterator."""
    return _ITERATOR_KEYS[slot.type](slot)


def filler_iterator_key(filler_list_id: str, order: Union[str, FillerOrder]) -> str:
    order_value = order.value if isinstance(order, FillerOrder) else order
    return f"filler_{filler_list_id}_{order_value}"


# ============ Validation ============


_REQUIRED_TARGETS: dict[SlotType, Optional[str]] = {
    SlotType.MOVIE: None,
    SlotType.SHOW: "show_id",
    SlotType.CUSTOM_SHOW: "custom_show_id",
    SlotType.FILLER: "filler_list_id",
    SlotType.SMART_COLLECTION: "smart_collection_id",
    SlotType.REDIRECT: "channel_id",
    SlotType.FLEX: None,
}


def validate_slot(slot: Slot) -> None:
    """
    Check a single slot's target and ordering.

    Raises:
        InvalidConfigurationError: If the slot cannot be scheduled
    """
    target = _REQUIRED_TARGETS[slot.type]
    if target and not getattr(slot, target):
        raise InvalidConfigurationError(
            f"{slot.type.value} slot is missing {target}", slot_id=slot.id
        )

    if slot.type == SlotType.CUSTOM_SHOW and slot.order not in CUSTOM_SHOW_ORDERS:
        raise InvalidConfigurationError(
            f"Invalid ordering type for custom show slot: {slot.order}", slot_id=slot.id
        )
    if slot.type == SlotType.FILLER and slot.order not in FILLER_ORDERS:
        raise InvalidConfigurationError(
            f"Invalid ordering type for filler slot: {slot.order}", slot_id=slot.id
        )
    if slot.type in (SlotType.MOVIE, SlotType.SHOW, SlotType.SMART_COLLECTION) and slot.order not in CONTENT_ORDERS:
        raise InvalidConfigurationError(
            f"Invalid ordering type for {slot.type.value} slot: {slot.order}", slot_id=slot.id
        )


def validate_random_slots(slots: list[RandomSlot]) -> None:
    """
    Validate floating slots before any lineup is built.

    Raises:
        InvalidConfigurationError: On a missing duration spec, a dynamic
            duration on a flex or redirect slot, or a bad program count
    """
    if not slots:
        raise InvalidConfigurationError("Schedule has no slots")

    for slot in slots:
        validate_slot(slot)
        if slot.weight < 0:
            raise InvalidConfigurationError(f"Negative slot weight: {slot.weight}", slot_id=slot.id)

        spec = slot.duration_spec
        if spec is None:
            raise InvalidConfigurationError("Slot definition missing duration spec", slot_id=slot.id)

        if isinstance(spec, DynamicDuration):
            if slot.type in (SlotType.FLEX, SlotType.REDIRECT):
                raise InvalidConfigurationError(
                    f"Cannot schedule slot of type {slot.type.value} with dynamic duration",
                    slot_id=slot.id,
                )
            if spec.program_count <= 0:
                raise InvalidConfigurationError(
                    "Dynamic slots need a positive program count", slot_id=slot.id
                )
        elif spec.duration_ms <= 0:
            raise InvalidConfigurationError("Fixed slots need a positive duration", slot_id=slot.id)
