"""
Buffer Maintenance Tasks.

Periodic extension and pruning of infinite schedule buffers.
"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def maintain_buffers_task(
    session: Optional[Session] = None,
    now_ms: Optional[int] = None,
) -> dict[str, Any]:
    """
    Top up and prune every enabled infinite schedule.

    Schedules whose buffer ends before now + their threshold are extended
    to `buffer_days` ahead; items that finished more than
    `prune_after_hours` ago are deleted. One schedule failing does not stop
    the others.

    Args:
        session: Session to use; a new one is opened and closed when omitted
        now_ms: Reference "now", defaults to the wall clock

    Returns:
        Statistics about the run
    """
    from lineuptv.database.connection import get_sync_session
    from lineuptv.services.infinite_schedule_service import InfiniteScheduleService

    logger.info("Starting buffer maintenance task")

    own_session = session is None
    session = session or get_sync_session()
    try:
        stats = InfiniteScheduleService(session).maintain_buffers(now_ms=now_ms)
    except Exception as e:
        logger.error(f"Buffer maintenance task failed: {e}")
        session.rollback()
        stats = {
            "checked": 0,
            "extended": 0,
            "items_generated": 0,
            "items_pruned": 0,
            "errors": 1,
        }
    finally:
        if own_session:
            session.close()

    logger.info(
        f"Buffer maintenance complete: checked {stats['checked']} schedules, "
        f"extended {stats['extended']}, generated {stats['items_generated']} items, "
        f"pruned {stats['items_pruned']}, errors: {stats['errors']}"
    )
    return stats
