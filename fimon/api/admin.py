"""Administrative endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from fimon.api.deps import get_monitor
from fimon.schemas.file_record import MessageResponse
from fimon.services.monitor_service import IntegrityMonitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.delete("/files/{record_id}", response_model=MessageResponse)
async def purge_file_record(
    record_id: int,
    monitor: Annotated[IntegrityMonitor, Depends(get_monitor)],
) -> MessageResponse:
    """Physically remove a file record by id."""
    record = await monitor.purge(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="File record not found")
    logger.info("Admin purged record %d (%s)", record_id, record.file_path)
    return MessageResponse(message="File record deleted")
