"""Streaming content fingerprints and stat helpers."""

from __future__ import annotations

import asyncio
import hashlib
import os
from typing import TYPE_CHECKING

from fimon.exceptions import ReadFailure
from fimon.services.datetime_service import from_timestamp

if TYPE_CHECKING:
    from datetime import datetime

DEFAULT_CHUNK_SIZE = 64 * 1024


def fingerprint(path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Compute the MD5 hex digest of a file, reading it in fixed-size chunks.

    MD5 is an integrity checksum here, not a security primitive.

    Raises:
        ReadFailure: If the file cannot be opened or fully read.
    """
    digest = hashlib.md5(usedforsecurity=False)
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(chunk_size), b""):
                digest.update(chunk)
    except OSError as exc:
        raise ReadFailure(path, exc.strerror or str(exc)) from exc
    return digest.hexdigest()


async def fingerprint_async(path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Compute :func:`fingerprint` in a worker thread."""
    return await asyncio.to_thread(fingerprint, path, chunk_size)


def stat_mtime(path: str) -> datetime | None:
    """Return the modification time of ``path`` as UTC, or None if it does not exist.

    Other ``OSError``s (permission denied on a parent directory, I/O errors)
    propagate to the caller.
    """
    try:
        st = os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None
    return from_timestamp(st.st_mtime)
