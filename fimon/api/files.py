"""Tracked file API endpoints."""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from fimon.api.deps import get_monitor
from fimon.exceptions import PathNotFoundError
from fimon.schemas.file_record import (
    FileListResponse,
    FileRecordResponse,
    FileRegisterRequest,
    MessageResponse,
    ReconcileResponse,
)
from fimon.services.monitor_service import IntegrityMonitor

router = APIRouter(prefix="/api/files", tags=["files"])


@router.post("", response_model=FileRecordResponse, status_code=201)
async def register_file(
    body: FileRegisterRequest,
    monitor: Annotated[IntegrityMonitor, Depends(get_monitor)],
) -> FileRecordResponse:
    """Start tracking a file."""
    try:
        record = await monitor.register(body.file_path, body.host_ip)
    except PathNotFoundError as exc:
        raise HTTPException(status_code=400, detail="File does not exist") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return FileRecordResponse.model_validate(record)


@router.get("", response_model=FileListResponse)
async def list_files(
    monitor: Annotated[IntegrityMonitor, Depends(get_monitor)],
    include_deleted: Annotated[bool, Query()] = False,
) -> FileListResponse:
    """List tracked files; soft-deleted ones only on request."""
    records = await (monitor.list_all() if include_deleted else monitor.list_active())
    return FileListResponse(data=[FileRecordResponse.model_validate(r) for r in records])


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_files(
    monitor: Annotated[IntegrityMonitor, Depends(get_monitor)],
) -> ReconcileResponse:
    """Run a reconciliation sweep now instead of waiting for the next tick."""
    stats = await monitor.reconcile_now()
    return ReconcileResponse(**asdict(stats))


@router.get("/{file_path:path}", response_model=FileRecordResponse)
async def get_file(
    file_path: str,
    monitor: Annotated[IntegrityMonitor, Depends(get_monitor)],
) -> FileRecordResponse:
    """Look up one record, active or soft-deleted."""
    try:
        record = await monitor.get(file_path)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="File not tracked")
    return FileRecordResponse.model_validate(record)


@router.delete("/{file_path:path}", response_model=MessageResponse)
async def deregister_file(
    file_path: str,
    monitor: Annotated[IntegrityMonitor, Depends(get_monitor)],
) -> MessageResponse:
    """Stop tracking a file. Succeeds for paths that were never tracked."""
    try:
        found = await monitor.deregister(file_path)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if found:
        return MessageResponse(message="Stopped monitoring file")
    return MessageResponse(message="File was not monitored")
