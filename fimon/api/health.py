"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from fimon import __version__
from fimon.api.deps import get_monitor, get_session
from fimon.services.monitor_service import IntegrityMonitor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    watcher: str
    reconciler: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    monitor: Annotated[IntegrityMonitor, Depends(get_monitor)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    watcher_status = "running" if monitor.watcher.is_running else "stopped"
    reconciler_status = "running" if monitor.reconciler.is_running else "stopped"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version=__version__,
        database=db_status,
        watcher=watcher_status,
        reconciler=reconciler_status,
    )
