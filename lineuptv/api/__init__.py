"""API routes and controllers for LineupTV"""

from fastapi import APIRouter

from .health import router as health_router
from .infinite_schedules import router as infinite_schedules_router

# Create the main API router
api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["Health"])
api_router.include_router(infinite_schedules_router, tags=["Infinite Schedules"])

__all__ = ["api_router"]
