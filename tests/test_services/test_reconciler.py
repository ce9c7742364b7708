"""Tests for the periodic reconciler."""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING

import pytest

from fimon.exceptions import ReadFailure
from fimon.models.file_record import FileRecord
from fimon.services.datetime_service import as_utc, from_timestamp, now_utc
from fimon.services.hash_service import fingerprint, stat_mtime
from fimon.services.reconcile_service import Reconciler, ReconcileStats

if TYPE_CHECKING:
    from pathlib import Path

    from fimon.services.monitor_service import IntegrityMonitor
    from fimon.services.record_store import RecordStore

HELLO_MD5 = "5d41402abc4b2a76b9719d911017c592"


async def register(store: RecordStore, path: Path) -> FileRecord:
    mtime = stat_mtime(str(path))
    assert mtime is not None
    md5 = fingerprint(str(path))
    return await store.upsert(
        FileRecord(
            host_ip="127.0.0.1",
            file_name=path.name,
            file_path=str(path),
            last_update=mtime,
            latest_md5=md5,
            scan_time=now_utc(),
            is_deleted=False,
        )
    )


def bump_mtime(path: Path, seconds: int = 10) -> None:
    st = path.stat()
    os.utime(path, (st.st_atime, st.st_mtime + seconds))


class TestReconcilerConstruction:
    def test_rejects_non_positive_interval(self, store: RecordStore) -> None:
        with pytest.raises(ValueError, match="interval must be positive"):
            Reconciler(store, 0)
        with pytest.raises(ValueError):
            Reconciler(store, -1)


class TestRunOnce:
    async def test_unchanged_file_is_not_written(
        self, store: RecordStore, reconciler: Reconciler, tracked_file: Path
    ) -> None:
        before = await register(store, tracked_file)
        stats = await reconciler.run_once()
        after = await store.get(str(tracked_file))
        assert stats.checked == 1
        assert stats.unchanged == 1
        assert after is not None
        assert as_utc(after.scan_time) == as_utc(before.scan_time)

    async def test_modified_file_is_rehashed(
        self, store: RecordStore, reconciler: Reconciler, tracked_file: Path
    ) -> None:
        before = await register(store, tracked_file)
        tracked_file.write_bytes(b"goodbye")
        bump_mtime(tracked_file)

        stats = await reconciler.run_once()

        after = await store.get(str(tracked_file))
        assert stats.modified == 1
        assert after is not None
        assert after.original_md5 == HELLO_MD5
        assert after.latest_md5 == fingerprint(str(tracked_file))
        assert as_utc(after.last_update) == from_timestamp(tracked_file.stat().st_mtime)
        assert as_utc(after.scan_time) >= as_utc(before.scan_time)

    async def test_touched_file_keeps_fingerprint(
        self, store: RecordStore, reconciler: Reconciler, tracked_file: Path
    ) -> None:
        await register(store, tracked_file)
        bump_mtime(tracked_file)
        stats = await reconciler.run_once()
        after = await store.get(str(tracked_file))
        assert stats.modified == 1
        assert after is not None
        assert after.latest_md5 == HELLO_MD5

    async def test_missing_file_is_soft_deleted(
        self, store: RecordStore, reconciler: Reconciler, tracked_file: Path
    ) -> None:
        before = await register(store, tracked_file)
        tracked_file.unlink()

        stats = await reconciler.run_once()

        assert stats.deleted == 1
        assert await store.list_active() == []
        after = await store.get(str(tracked_file))
        assert after is not None
        assert after.is_deleted is True
        assert after.latest_md5 == before.latest_md5
        assert as_utc(after.scan_time) == as_utc(before.scan_time)

    async def test_deleted_records_are_not_rechecked(
        self, store: RecordStore, reconciler: Reconciler, tracked_file: Path
    ) -> None:
        await register(store, tracked_file)
        tracked_file.unlink()
        await reconciler.run_once()
        stats = await reconciler.run_once()
        assert stats == ReconcileStats(duration=stats.duration)

    async def test_read_failure_on_one_record_does_not_stop_sweep(
        self,
        store: RecordStore,
        reconciler: Reconciler,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        good = tmp_path / "good.txt"
        bad = tmp_path / "bad.txt"
        good.write_bytes(b"hello")
        bad.write_bytes(b"hello")
        await register(store, bad)
        await register(store, good)
        good.write_bytes(b"changed")
        bump_mtime(good)
        bump_mtime(bad)

        async def flaky_fingerprint(path: str, chunk_size: int = 0) -> str:
            if path == str(bad):
                raise ReadFailure(path, "Input/output error")
            return fingerprint(path)

        monkeypatch.setattr(
            "fimon.services.reconcile_service.fingerprint_async", flaky_fingerprint
        )
        stats = await reconciler.run_once()

        assert stats.checked == 2
        assert stats.failed == 1
        assert stats.modified == 1
        good_record = await store.get(str(good))
        assert good_record is not None
        assert good_record.latest_md5 == fingerprint(str(good))
        assert reconciler.last_stats is stats


class TestLifecycle:
    async def test_start_runs_first_sweep_immediately(
        self, store: RecordStore, tracked_file: Path
    ) -> None:
        await register(store, tracked_file)
        tracked_file.unlink()
        reconciler = Reconciler(store, 3600)
        await reconciler.start()
        try:
            for _ in range(100):
                if reconciler.last_stats is not None:
                    break
                await asyncio.sleep(0.01)
            assert reconciler.is_running
            assert reconciler.last_stats is not None
            assert reconciler.last_stats.deleted == 1
        finally:
            await reconciler.stop()
        assert not reconciler.is_running

    async def test_repeats_on_interval(self, store: RecordStore) -> None:
        reconciler = Reconciler(store, 0.01)
        sweeps = 0
        original = reconciler.run_once

        async def counting_run_once() -> ReconcileStats:
            nonlocal sweeps
            sweeps += 1
            return await original()

        reconciler.run_once = counting_run_once  # type: ignore[method-assign]
        await reconciler.start()
        await asyncio.sleep(0.2)
        await reconciler.stop()
        assert sweeps >= 2

    async def test_stop_is_idempotent(self, store: RecordStore) -> None:
        reconciler = Reconciler(store, 3600)
        await reconciler.stop()
        await reconciler.start()
        await reconciler.stop()
        await reconciler.stop()
        assert not reconciler.is_running

    async def test_loop_survives_store_failure(
        self, store: RecordStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from fimon.exceptions import StoreFailure

        calls = 0

        async def failing_list_active() -> list[FileRecord]:
            nonlocal calls
            calls += 1
            raise StoreFailure("list", "database is locked")

        monkeypatch.setattr(store, "list_active", failing_list_active)
        reconciler = Reconciler(store, 0.01)
        await reconciler.start()
        await asyncio.sleep(0.1)
        assert reconciler.is_running
        await reconciler.stop()
        assert calls >= 2


class TestDeregisterDuringSweep:
    async def test_rehash_does_not_reactivate_deregistered_path(
        self,
        monitor: IntegrityMonitor,
        tracked_file: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await monitor.register(str(tracked_file))
        tracked_file.write_bytes(b"changed")
        bump_mtime(tracked_file)

        async def deregister_while_hashing(path: str, chunk_size: int = 0) -> str:
            # The sweep already holds the active snapshot at this point.
            await monitor.deregister(path)
            return fingerprint(path)

        monkeypatch.setattr(
            "fimon.services.reconcile_service.fingerprint_async", deregister_while_hashing
        )
        await monitor.reconcile_now()

        record = await monitor.get(str(tracked_file))
        assert record is not None
        assert record.is_deleted is True
        assert await monitor.list_active() == []
        stats = await monitor.reconcile_now()
        assert stats.checked == 0

    async def test_stale_snapshot_rehash_after_deregister(
        self, monitor: IntegrityMonitor, tracked_file: Path
    ) -> None:
        await monitor.register(str(tracked_file))
        snapshot = await monitor.store.list_active()
        tracked_file.write_bytes(b"changed")
        bump_mtime(tracked_file)
        await monitor.deregister(str(tracked_file))

        await monitor.reconciler._reconcile_record(snapshot[0])

        record = await monitor.get(str(tracked_file))
        assert record is not None
        assert record.is_deleted is True
        assert record.latest_md5 == HELLO_MD5
        assert await monitor.list_active() == []
