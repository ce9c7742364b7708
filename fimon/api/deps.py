"""Shared API dependencies: DB session, integrity monitor."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from fimon.services.monitor_service import IntegrityMonitor


def get_monitor(request: Request) -> IntegrityMonitor:
    """Get the integrity monitor from app state."""
    monitor: IntegrityMonitor = request.app.state.monitor
    return monitor


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session
