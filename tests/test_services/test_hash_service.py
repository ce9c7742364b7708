"""Tests for content fingerprints and stat helpers."""

from __future__ import annotations

import hashlib
import os
from datetime import UTC
from typing import TYPE_CHECKING

import pytest

from fimon.exceptions import InternalServerError, ReadFailure
from fimon.services.hash_service import fingerprint, fingerprint_async, stat_mtime

if TYPE_CHECKING:
    from pathlib import Path

HELLO_MD5 = "5d41402abc4b2a76b9719d911017c592"
EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"


class TestFingerprint:
    def test_known_digest(self, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello")
        assert fingerprint(str(path)) == HELLO_MD5

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty"
        path.write_bytes(b"")
        assert fingerprint(str(path)) == EMPTY_MD5

    def test_chunk_size_does_not_change_digest(self, tmp_path: Path) -> None:
        data = os.urandom(10_000)
        path = tmp_path / "blob.bin"
        path.write_bytes(data)
        expected = hashlib.md5(data).hexdigest()
        assert fingerprint(str(path), chunk_size=7) == expected
        assert fingerprint(str(path), chunk_size=1 << 20) == expected

    def test_missing_file_raises_read_failure(self, tmp_path: Path) -> None:
        missing = tmp_path / "nope"
        with pytest.raises(ReadFailure) as exc_info:
            fingerprint(str(missing))
        assert exc_info.value.path == str(missing)
        assert isinstance(exc_info.value, InternalServerError)

    def test_directory_raises_read_failure(self, tmp_path: Path) -> None:
        with pytest.raises(ReadFailure):
            fingerprint(str(tmp_path))

    async def test_async_matches_sync(self, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello")
        assert await fingerprint_async(str(path)) == HELLO_MD5


class TestStatMtime:
    def test_returns_aware_utc(self, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_bytes(b"x")
        os.utime(path, (1_700_000_000, 1_700_000_000))
        mtime = stat_mtime(str(path))
        assert mtime is not None
        assert mtime.tzinfo is UTC
        assert mtime.timestamp() == 1_700_000_000

    def test_missing_returns_none(self, tmp_path: Path) -> None:
        assert stat_mtime(str(tmp_path / "missing")) is None

    def test_path_below_a_file_returns_none(self, tmp_path: Path) -> None:
        path = tmp_path / "a.txt"
        path.write_bytes(b"x")
        assert stat_mtime(str(path / "child")) is None
