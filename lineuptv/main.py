"""
LineupTV Main Application

FastAPI application entry point for the scheduling engine.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from lineuptv import __version__
from lineuptv.config import load_config
from lineuptv.database import close_db, init_sync_db

# Logger
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup loads configuration, initializes the database and starts the
    buffer maintenance task; shutdown stops it and closes the database.
    """
    logger.info(f"Starting LineupTV v{__version__}")

    config = load_config()
    logger.info(f"Configuration loaded, server port: {config.server.port}")

    init_sync_db()

    try:
        from lineuptv.tasks.buffer_tasks import maintain_buffers_task
        from lineuptv.tasks.scheduler import scheduler

        scheduler.add_task(
            "buffer_maintenance",
            maintain_buffers_task,
            config.infinite.maintenance_interval_minutes * 60,
            run_immediately=True,
        )
        await scheduler.start()
        logger.info("Background task scheduler started")
    except Exception as e:
        logger.warning(f"Background task scheduler initialization failed: {e}")

    yield

    logger.info("Shutting down LineupTV")

    try:
        from lineuptv.tasks.scheduler import scheduler

        await scheduler.stop()
    except Exception as e:
        logger.warning(f"Error stopping task scheduler: {e}")

    close_db()
    logger.info("LineupTV shutdown complete")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="LineupTV",
        description="Linear television scheduling engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    from lineuptv.api import api_router

    app.include_router(api_router)

    @app.get("/", include_in_schema=False)
    def root() -> dict:
        return {"name": "LineupTV", "version": __version__, "docs": "/api/docs"}

    return app


def main() -> None:
    """Run the server with uvicorn."""
    import uvicorn

    from lineuptv.utils.logging_setup import setup_logging_from_config

    config = load_config()
    setup_logging_from_config(config.logging)

    logger.info(f"Starting LineupTV v{__version__}")

    uvicorn.run(
        "lineuptv.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.debug,
        log_level=config.server.log_level.lower(),
    )


# Create the app instance
app = create_app()


if __name__ == "__main__":
    main()
