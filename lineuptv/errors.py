"""
Scheduling error taxonomy.

NotFound and InvalidConfiguration errors reach the caller. EmptyPool and
UnparseableFilter are raised by pool providers and absorbed by the
generator, which degrades the affected slot to flex.
"""

from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(SchedulingError):
    """A referenced schedule, slot or channel does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "entity_id": str(entity_id)},
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidConfigurationError(SchedulingError):
    """
    A schedule definition cannot be scheduled as written.

    Raised during validation, before any state has been touched.
    """

    def __init__(
        self,
        message: str,
        slot_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if slot_id is not None:
            merged["slot_id"] = slot_id
        super().__init__(message, merged)
        self.slot_id = slot_id


class EmptyPoolError(SchedulingError):
    """A slot's content pool resolved to zero eligible items."""

    def __init__(self, slot_id: Optional[str], source: str):
        super().__init__(
            f"Slot {slot_id} has an empty pool ({source})",
            {"slot_id": slot_id, "source": source},
        )
        self.slot_id = slot_id
        self.source = source


class UnparseableFilterError(SchedulingError):
    """A smart collection's search filter could not be parsed."""

    def __init__(
        self,
        collection_id: str,
        filter_text: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            f"Cannot parse filter for smart collection {collection_id}: {filter_text!r}",
            {"collection_id": collection_id, "filter": filter_text},
        )
        self.collection_id = collection_id
        self.filter_text = filter_text
        self.original_error = original_error
