"""Periodic reconciliation of stored records against the filesystem."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from fimon.exceptions import ReadFailure, StoreFailure
from fimon.models.file_record import FileRecord
from fimon.services.datetime_service import as_utc, now_utc
from fimon.services.hash_service import DEFAULT_CHUNK_SIZE, fingerprint_async, stat_mtime

if TYPE_CHECKING:
    from datetime import datetime

    from fimon.services.record_store import RecordStore

logger = logging.getLogger(__name__)


class ReconcileAction(StrEnum):
    """What a sweep does with one active record."""

    SKIP = "skip"
    REHASH = "rehash"
    MARK_DELETED = "mark_deleted"


@dataclass
class ReconcileStats:
    """Outcome of one sweep."""

    checked: int = 0
    modified: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: int = 0
    duration: float = 0.0


def plan_action(recorded_mtime: datetime, observed_mtime: datetime | None) -> ReconcileAction:
    """Decide the action for a record given the file's current modification time.

    ``observed_mtime`` is None when the path no longer exists. An unchanged
    modification time means no write at all, so ``scan_time`` keeps meaning
    "last time the content was hashed".
    """
    if observed_mtime is None:
        return ReconcileAction.MARK_DELETED
    if as_utc(observed_mtime) != as_utc(recorded_mtime):
        return ReconcileAction.REHASH
    return ReconcileAction.SKIP


class Reconciler:
    """Re-checks every active record on a fixed interval.

    The background task owns a stop event: ``stop()`` prevents new sweeps and
    waits for a sweep in progress to finish. Every write is a self-contained
    upsert, so an abandoned sweep is safe to redo.
    """

    def __init__(
        self,
        store: RecordStore,
        interval: float,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)
        self._store = store
        self._interval = interval
        self._chunk_size = chunk_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.last_stats: ReconcileStats | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        """Whether the timer task is alive."""
        return self._task is not None and not self._task.done()

    async def run_once(self) -> ReconcileStats:
        """Run one sweep over all active records.

        A failure on one record is logged and counted; the sweep continues.

        Raises:
            StoreFailure: If the active records cannot be read.
        """
        start = time.monotonic()
        stats = ReconcileStats()
        records = await self._store.list_active()
        for record in records:
            stats.checked += 1
            try:
                action = await self._reconcile_record(record)
            except (OSError, ReadFailure, StoreFailure) as exc:
                stats.failed += 1
                logger.error("Reconciliation failed for %s: %s", record.file_path, exc)
                continue
            if action is ReconcileAction.MARK_DELETED:
                stats.deleted += 1
            elif action is ReconcileAction.REHASH:
                stats.modified += 1
            else:
                stats.unchanged += 1
        stats.duration = time.monotonic() - start
        self.last_stats = stats
        logger.info(
            "Reconciled %d files: ~%d modified, -%d deleted, %d unchanged, %d failed in %.2fs",
            stats.checked,
            stats.modified,
            stats.deleted,
            stats.unchanged,
            stats.failed,
            stats.duration,
        )
        return stats

    async def _reconcile_record(self, record: FileRecord) -> ReconcileAction:
        observed_mtime = stat_mtime(record.file_path)
        action = plan_action(record.last_update, observed_mtime)

        if action is ReconcileAction.MARK_DELETED:
            # Only the existence flag changes; scan_time stays as stored.
            await self._store.upsert(
                FileRecord(
                    host_ip=record.host_ip,
                    file_name=record.file_name,
                    file_path=record.file_path,
                    last_update=record.last_update,
                    original_md5=record.original_md5,
                    latest_md5=record.latest_md5,
                    scan_time=record.scan_time,
                    is_deleted=True,
                )
            )
            logger.warning("File missing, marked deleted: %s", record.file_path)
        elif action is ReconcileAction.REHASH:
            assert observed_mtime is not None
            latest_md5 = await fingerprint_async(record.file_path, self._chunk_size)
            await self._store.upsert(
                FileRecord(
                    host_ip=record.host_ip,
                    file_name=record.file_name,
                    file_path=record.file_path,
                    last_update=observed_mtime,
                    original_md5=record.original_md5,
                    latest_md5=latest_md5,
                    scan_time=now_utc(),
                    is_deleted=False,
                )
            )
            if latest_md5 != record.latest_md5:
                logger.warning("File content changed: %s (md5 %s)", record.file_path, latest_md5)
            else:
                logger.info("File touched, content unchanged: %s", record.file_path)
        return action

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except StoreFailure as exc:
                logger.error("Reconciliation sweep failed: %s", exc)
            except Exception:
                logger.exception("Unexpected error during reconciliation sweep")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def start(self) -> None:
        """Start the timer task. The first sweep runs immediately."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="reconciler")
        logger.info("Reconciler started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        """Stop issuing sweeps and wait for one in progress to finish. Idempotent."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Reconciler stopped")
