"""Tracked file model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from fimon.models.base import Base

DEFAULT_HOST_IP = "127.0.0.1"


class FileRecord(Base):
    """One row per tracked absolute path with its content fingerprints.

    ``original_md5`` is written once at first registration. Only ``latest_md5``,
    ``last_update``, ``scan_time`` and ``is_deleted`` change afterwards.
    """

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    host_ip: Mapped[str] = mapped_column(Text, nullable=False, default=DEFAULT_HOST_IP)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    last_update: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    original_md5: Mapped[str] = mapped_column(String(32), nullable=False)
    latest_md5: Mapped[str] = mapped_column(String(32), nullable=False)
    scan_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    __table_args__ = (Index("idx_files_is_deleted", "is_deleted"),)

    def __repr__(self) -> str:
        return (
            f"FileRecord(id={self.id!r}, file_path={self.file_path!r}, "
            f"is_deleted={self.is_deleted!r})"
        )
