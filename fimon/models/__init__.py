"""SQLAlchemy ORM models for fimon."""

from fimon.models.base import Base
from fimon.models.file_record import DEFAULT_HOST_IP, FileRecord

__all__ = [
    "DEFAULT_HOST_IP",
    "Base",
    "FileRecord",
]
