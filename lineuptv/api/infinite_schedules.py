"""Infinite schedule API endpoints - CRUD, preview, regeneration and buffer diagnostics"""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..config import get_config
from ..database import get_db
from ..database.infinite_schedule_db import InfiniteScheduleDB
from ..errors import InvalidConfigurationError, NotFoundError, SchedulingError
from ..scheduling.infinite import GenerationResult, InfiniteScheduleDef, InfiniteSlotDef
from ..scheduling.ports import ContentPoolProvider
from ..scheduling.slots import FillerOrder, FillerType, SlotFiller, SlotType
from ..services.infinite_schedule_service import InfiniteScheduleService, get_pool_provider

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/infinite-schedules", tags=["Infinite Schedules"])


# ============================================================================
# Pydantic Schemas
# ============================================================================


class SlotFillerSchema(BaseModel):
    """A filler list attached to a slot."""
    types: list[FillerType] = Field(..., min_length=1)
    filler_list_id: str
    filler_order: FillerOrder = FillerOrder.SHUFFLE_PREFER_SHORT


class SlotCreate(BaseModel):
    """Schema for one slot of a schedule."""
    id: str | None = None
    slot_index: int = Field(..., ge=0)
    type: SlotType
    show_id: str | None = None
    custom_show_id: str | None = None
    filler_list_id: str | None = None
    redirect_channel_id: str | None = None
    smart_collection_id: str | None = None
    order: str = "next"
    direction: str = "asc"
    season_filter: list[int] | None = None
    anchor_time_ms: int | None = None
    anchor_mode: str | None = None
    anchor_days: list[int] | None = None
    weight: int = Field(default=1, ge=0)
    cooldown_ms: int = Field(default=0, ge=0)
    fill_mode: str = Field(default="fill", description="fill, count or duration")
    fill_value: int | None = None
    pad_ms: int | None = None
    pad_to_multiple: int | None = Field(None, ge=0)
    filler: list[SlotFillerSchema] = []


class InfiniteScheduleCreate(BaseModel):
    """Schema for creating an infinite schedule."""
    channel_id: str = Field(..., min_length=1, max_length=36)
    name: str | None = Field(None, max_length=255)
    pad_ms: int | None = Field(None, ge=1, description="Defaults to scheduling.default_pad_ms")
    flex_preference: str = Field(default="end", description="distribute or end")
    time_zone_offset_minutes: int = 0
    buffer_days: int = Field(default=7, ge=1)
    buffer_threshold_days: int = Field(default=2, ge=0)
    enabled: bool = True
    slot_selection: str | None = Field(None, description="round_robin or weighted")
    slots: list[SlotCreate] = []


class InfiniteScheduleUpdate(BaseModel):
    """Schema for updating an infinite schedule. Slots, when given, replace all slots."""
    name: str | None = Field(None, max_length=255)
    pad_ms: int | None = Field(None, ge=1)
    flex_preference: str | None = None
    time_zone_offset_minutes: int | None = None
    buffer_days: int | None = Field(None, ge=1)
    buffer_threshold_days: int | None = Field(None, ge=0)
    enabled: bool | None = None
    slot_selection: str | None = None
    slots: list[SlotCreate] | None = None


class PreviewRequest(BaseModel):
    """Schema for previewing a schedule definition without saving it."""
    schedule: InfiniteScheduleCreate
    from_ms: int = Field(..., ge=0)
    to_ms: int = Field(..., ge=0)
    seed: list[int] | None = None


class GeneratedItemResponse(BaseModel):
    """Response schema for a generated item."""
    id: str
    schedule_id: str
    slot_id: str | None
    program_id: str | None
    item_type: str
    start_time_ms: int
    duration_ms: int
    redirect_channel_id: str | None = None
    filler_list_id: str | None = None
    filler_type: str | None = None
    sequence_index: int

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Helper Functions
# ============================================================================


def slot_from_schema(slot: SlotCreate) -> InfiniteSlotDef:
    """Convert a slot schema to a slot definition."""
    data = slot.model_dump(exclude={"filler"})
    return InfiniteSlotDef(
        **data,
        filler=[
            SlotFiller(
                types=list(f.types),
                filler_list_id=f.filler_list_id,
                filler_order=f.filler_order,
            )
            for f in slot.filler
        ],
    )


def schedule_from_schema(data: InfiniteScheduleCreate) -> InfiniteScheduleDef:
    fields = data.model_dump(exclude={"slots"})
    if fields["pad_ms"] is None:
        fields["pad_ms"] = get_config().scheduling.default_pad_ms
    return InfiniteScheduleDef(**fields, slots=[slot_from_schema(s) for s in data.slots])


def slot_to_response(slot: InfiniteSlotDef) -> dict[str, Any]:
    """Convert a slot definition to a response dictionary."""
    return {
        "id": slot.id,
        "slot_index": slot.slot_index,
        "type": slot.type.value,
        "show_id": slot.show_id,
        "custom_show_id": slot.custom_show_id,
        "filler_list_id": slot.filler_list_id,
        "redirect_channel_id": slot.redirect_channel_id,
        "smart_collection_id": slot.smart_collection_id,
        "order": slot.order,
        "direction": slot.direction,
        "season_filter": slot.season_filter,
        "anchor_time_ms": slot.anchor_time_ms,
        "anchor_mode": slot.anchor_mode,
        "anchor_days": slot.anchor_days,
        "weight": slot.weight,
        "cooldown_ms": slot.cooldown_ms,
        "fill_mode": slot.fill_mode,
        "fill_value": slot.fill_value,
        "pad_ms": slot.pad_ms,
        "pad_to_multiple": slot.pad_to_multiple,
        "filler": [
            {
                "types": [FillerType(t).value for t in f.types],
                "filler_list_id": f.filler_list_id,
                "filler_order": FillerOrder(f.filler_order).value,
            }
            for f in slot.filler
        ],
    }


def schedule_to_response(schedule: InfiniteScheduleDef) -> dict[str, Any]:
    """Convert a schedule definition to a response dictionary."""
    return {
        "id": schedule.id,
        "channel_id": schedule.channel_id,
        "name": schedule.name,
        "pad_ms": schedule.pad_ms,
        "flex_preference": schedule.flex_preference,
        "time_zone_offset_minutes": schedule.time_zone_offset_minutes,
        "buffer_days": schedule.buffer_days,
        "buffer_threshold_days": schedule.buffer_threshold_days,
        "enabled": schedule.enabled,
        "slot_selection": schedule.slot_selection,
        "slots": [slot_to_response(s) for s in schedule.slots],
    }


def generation_to_response(result: GenerationResult, include_items: bool = True) -> dict[str, Any]:
    response: dict[str, Any] = {
        "schedule_id": result.schedule_id,
        "from_time_ms": result.from_time_ms,
        "to_time_ms": result.to_time_ms,
        "end_time_ms": result.end_time_ms,
        "item_count": len(result.items),
        "escape_valve_count": result.escape_valve_count,
        "slot_states": {slot_id: asdict(u) for slot_id, u in result.slot_states.items()},
        "schedule_state": result.schedule_state.to_dict() if result.schedule_state else None,
    }
    if include_items:
        response["items"] = [item.to_dict() for item in result.items]
    return response


def scheduling_http_error(e: SchedulingError) -> HTTPException:
    """Map a scheduling error to an HTTP error."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, InvalidConfigurationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    logger.error(f"Scheduling error: {e.message}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


def get_service(
    db: Session = Depends(get_db),
    pools: ContentPoolProvider = Depends(get_pool_provider),
) -> InfiniteScheduleService:
    return InfiniteScheduleService(db, pools=pools)


# ============================================================================
# Schedule Endpoints
# ============================================================================


@router.get("")
def list_infinite_schedules(
    enabled_only: bool = False,
    service: InfiniteScheduleService = Depends(get_service),
) -> list[dict[str, Any]]:
    """List all infinite schedules."""
    return [schedule_to_response(s) for s in service.list_schedules(enabled_only=enabled_only)]


@router.get("/{schedule_id}")
def get_infinite_schedule(
    schedule_id: str,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Get an infinite schedule with its slots."""
    try:
        return schedule_to_response(service.get_schedule(schedule_id))
    except SchedulingError as e:
        raise scheduling_http_error(e) from e


@router.post("", status_code=status.HTTP_201_CREATED)
def create_infinite_schedule(
    data: InfiniteScheduleCreate,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Create an infinite schedule."""
    try:
        schedule = service.create_schedule(schedule_from_schema(data))
    except SchedulingError as e:
        raise scheduling_http_error(e) from e

    logger.info(f"Created infinite schedule {schedule.id} for channel {schedule.channel_id}")
    return schedule_to_response(schedule)


@router.put("/{schedule_id}")
def update_infinite_schedule(
    schedule_id: str,
    data: InfiniteScheduleUpdate,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Update an infinite schedule."""
    changes = data.model_dump(exclude_unset=True, exclude={"slots"})
    slots = [slot_from_schema(s) for s in data.slots] if data.slots is not None else None
    try:
        schedule = service.update_schedule(schedule_id, changes, slots=slots)
    except SchedulingError as e:
        raise scheduling_http_error(e) from e
    return schedule_to_response(schedule)


@router.delete("/{schedule_id}")
def delete_infinite_schedule(
    schedule_id: str,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, str]:
    """Delete an infinite schedule with its slots, state and items."""
    try:
        service.delete_schedule(schedule_id)
    except SchedulingError as e:
        raise scheduling_http_error(e) from e
    return {"message": "Infinite schedule deleted successfully"}


# ============================================================================
# Generation Endpoints
# ============================================================================


@router.post("/preview")
def preview_infinite_schedule(
    data: PreviewRequest,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Generate items for an unsaved schedule. Nothing is persisted."""
    try:
        result = service.preview(
            schedule_from_schema(data.schedule), data.from_ms, data.to_ms, seed=data.seed
        )
    except SchedulingError as e:
        raise scheduling_http_error(e) from e
    return generation_to_response(result)


@router.post("/{schedule_id}/extend")
def extend_infinite_schedule(
    schedule_id: str,
    to_ms: int | None = None,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Extend the buffer from its current end."""
    try:
        result = service.extend_buffer(schedule_id, to_ms=to_ms)
    except SchedulingError as e:
        raise scheduling_http_error(e) from e
    return generation_to_response(result, include_items=False)


@router.post("/{schedule_id}/regenerate")
def regenerate_infinite_schedule(
    schedule_id: str,
    clear: bool = False,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Rebuild the buffer from now, optionally starting over with fresh seeds."""
    try:
        result = service.regenerate(schedule_id, clear=clear)
    except SchedulingError as e:
        raise scheduling_http_error(e) from e
    return generation_to_response(result, include_items=False)


@router.post("/{schedule_id}/reset-seeds")
def reset_infinite_schedule_seeds(
    schedule_id: str,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Forget all random streams and positions of a schedule."""
    try:
        count = service.reset_seeds(schedule_id)
    except SchedulingError as e:
        raise scheduling_http_error(e) from e
    return {"message": "Seeds reset", "slots_reset": count}


# ============================================================================
# Diagnostics Endpoints
# ============================================================================


@router.get("/{schedule_id}/state")
def get_infinite_schedule_state(
    schedule_id: str,
    service: InfiniteScheduleService = Depends(get_service),
) -> dict[str, Any]:
    """Slot states, schedule state and buffer extent."""
    try:
        return service.get_state(schedule_id)
    except SchedulingError as e:
        raise scheduling_http_error(e) from e


@router.get("/{schedule_id}/items", response_model=list[GeneratedItemResponse])
def list_generated_items(
    schedule_id: str,
    from_ms: int | None = None,
    to_ms: int | None = None,
    limit: int = Query(default=500, ge=1, le=10_000),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    """Generated items overlapping [from_ms, to_ms)."""
    repo = InfiniteScheduleDB(db)
    if repo.load_schedule_with_state(schedule_id) is None:
        raise HTTPException(status_code=404, detail="Infinite schedule not found")
    items = repo.get_generated_items(schedule_id, from_ms=from_ms, to_ms=to_ms, limit=limit)
    return [item.to_dict() for item in items]
