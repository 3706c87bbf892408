"""Health check API endpoint for LineupTV"""

import logging
import platform
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from lineuptv import __version__

from ..database import get_db
from ..tasks.scheduler import scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


def check_database(db: Session) -> dict[str, Any]:
    """Run a trivial query against the database."""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return {"status": "error", "error": str(e)}


@router.get("")
def health_check(db: Session = Depends(get_db)) -> dict[str, Any]:
    """Basic health check."""
    database = check_database(db)
    return {
        "status": "healthy" if database["status"] == "ok" else "degraded",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
        "python": platform.python_version(),
        "database": database,
        "background_tasks": {
            "running": scheduler.running,
            "tasks": scheduler.get_tasks(),
        },
    }
