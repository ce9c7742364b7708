"""File record request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fimon.services.datetime_service import as_utc


class FileRegisterRequest(BaseModel):
    """Request to start tracking a file."""

    # Empty paths are rejected by the monitor so the API can answer 400.
    file_path: str = Field(default="", max_length=4096)
    host_ip: str | None = Field(default=None, max_length=255)

    @field_validator("host_ip")
    @classmethod
    def blank_host_means_default(cls, v: str | None) -> str | None:
        _ = cls
        if v is not None and not v.strip():
            return None
        return v


class FileRecordResponse(BaseModel):
    """A tracked file as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    host_ip: str
    file_name: str
    file_path: str
    last_update: datetime
    original_md5: str
    latest_md5: str
    scan_time: datetime
    is_deleted: bool

    @field_validator("last_update", "scan_time")
    @classmethod
    def timestamps_are_utc(cls, v: datetime) -> datetime:
        """SQLite hands back naive datetimes; they are UTC."""
        _ = cls
        return as_utc(v)


class FileListResponse(BaseModel):
    """List of tracked files."""

    data: list[FileRecordResponse]


class MessageResponse(BaseModel):
    message: str


class ReconcileResponse(BaseModel):
    """Outcome of a reconciliation sweep."""

    checked: int = Field(ge=0)
    modified: int = Field(ge=0)
    deleted: int = Field(ge=0)
    unchanged: int = Field(ge=0)
    failed: int = Field(ge=0)
    duration: float = Field(ge=0)
