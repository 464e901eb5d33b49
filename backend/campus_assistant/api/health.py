"""
Health check endpoint.
"""
import logging

from fastapi import APIRouter
from pydantic import BaseModel

from campus_assistant.services.connection_manager import manager
from campus_assistant.services.db_init import check_database_ready
from campus_assistant.services.pocketbase import PocketbaseError, pocketbase

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    pocketbase: bool
    database: str
    connections: int


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Service status; degraded when Pocketbase is unreachable."""
    try:
        await pocketbase.health_check()
        pocketbase_ok = True
    except PocketbaseError as e:
        logger.warning("Pocketbase health check failed: %s", e.message)
        pocketbase_ok = False

    if pocketbase_ok:
        ready, database = await check_database_ready()
    else:
        ready, database = False, "Pocketbase unreachable"

    return HealthResponse(
        status="ok" if ready else "degraded",
        pocketbase=pocketbase_ok,
        database=database,
        connections=manager.connection_count,
    )
