"""Registration façade composing the record store, change watcher and reconciler."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from watchdog.observers import Observer

from fimon.exceptions import PathNotFoundError, ReadFailure, WatchSubscriptionFailure
from fimon.models.file_record import FileRecord
from fimon.services.datetime_service import now_utc
from fimon.services.hash_service import DEFAULT_CHUNK_SIZE, fingerprint_async, stat_mtime
from fimon.services.reconcile_service import Reconciler, ReconcileStats
from fimon.services.record_store import RecordStore
from fimon.services.watcher_service import ChangeWatcher

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from watchdog.observers.api import BaseObserver

    from fimon.config import Settings

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Return the absolute, normalized form used as a record's key.

    Raises:
        ValueError: If ``path`` is empty or blank.
    """
    if not path or not path.strip():
        msg = "File path must not be empty"
        raise ValueError(msg)
    return os.path.abspath(os.path.expanduser(path))


class IntegrityMonitor:
    """The operations the API layer calls to add, remove and list tracked paths."""

    def __init__(
        self,
        store: RecordStore,
        watcher: ChangeWatcher,
        reconciler: Reconciler,
        *,
        host_ip: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.store = store
        self.watcher = watcher
        self.reconciler = reconciler
        self._host_ip = host_ip
        self._chunk_size = chunk_size

    async def register(self, path: str, host: str | None = None) -> FileRecord:
        """Start tracking ``path`` and return its stored record.

        Registering an already tracked path refreshes its latest fingerprint and
        reactivates it if it was soft-deleted; the original fingerprint and host
        recorded at first registration are kept.

        Raises:
            ValueError: If the path is empty or a directory.
            PathNotFoundError: If the path does not exist.
            ReadFailure: If the file cannot be read.
            StoreFailure: If the record cannot be persisted.
        """
        path = normalize_path(path)
        try:
            mtime = stat_mtime(path)
        except OSError as exc:
            raise ReadFailure(path, exc.strerror or str(exc)) from exc
        if mtime is None:
            raise PathNotFoundError(path)
        if os.path.isdir(path):
            msg = f"Not a regular file: {path}"
            raise ValueError(msg)

        md5 = await fingerprint_async(path, self._chunk_size)
        record = FileRecord(
            host_ip=host or self._host_ip,
            file_name=os.path.basename(path),
            file_path=path,
            last_update=mtime,
            original_md5=md5,
            latest_md5=md5,
            scan_time=now_utc(),
            is_deleted=False,
        )
        stored = await self.store.upsert(record, reactivate=True)

        try:
            self.watcher.subscribe(path)
        except WatchSubscriptionFailure as exc:
            logger.warning("%s; relying on periodic reconciliation", exc)

        logger.info("Registered %s (md5 %s)", path, md5)
        return stored

    async def deregister(self, path: str) -> bool:
        """Stop tracking ``path``. Returns False if no record existed; never raises for that."""
        path = normalize_path(path)
        found = await self.store.soft_delete(path)
        self.watcher.unsubscribe(path)
        if found:
            logger.info("Deregistered %s", path)
        else:
            logger.debug("Deregister of untracked path %s ignored", path)
        return found

    async def list_active(self) -> list[FileRecord]:
        """Return the active set."""
        return await self.store.list_active()

    async def list_all(self) -> list[FileRecord]:
        """Return every record including soft-deleted ones."""
        return await self.store.list_all()

    async def get(self, path: str) -> FileRecord | None:
        """Return the record for ``path``, active or soft-deleted."""
        return await self.store.get(normalize_path(path))

    async def purge(self, record_id: int) -> FileRecord | None:
        """Physically remove a record (administrative operation)."""
        record = await self.store.purge(record_id)
        if record is not None:
            self.watcher.unsubscribe(record.file_path)
        return record

    async def reconcile_now(self) -> ReconcileStats:
        """Run one reconciliation sweep immediately."""
        return await self.reconciler.run_once()

    async def start(self) -> None:
        """Rebuild subscriptions from the store and start the background tasks."""
        await self.watcher.reload_from_store()
        await self.watcher.start()
        await self.reconciler.start()

    async def stop(self) -> None:
        """Stop the background tasks."""
        await self.reconciler.stop()
        await self.watcher.stop()


def build_monitor(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    observer_factory: Callable[[], BaseObserver] = Observer,
) -> IntegrityMonitor:
    """Wire an :class:`IntegrityMonitor` from settings."""
    store = RecordStore(session_factory)
    watcher = ChangeWatcher(
        store,
        settings.host_ip,
        queue_size=settings.watch_queue_size,
        chunk_size=settings.hash_chunk_size,
        observer_factory=observer_factory,
    )
    reconciler = Reconciler(store, settings.check_interval, chunk_size=settings.hash_chunk_size)
    return IntegrityMonitor(
        store,
        watcher,
        reconciler,
        host_ip=settings.host_ip,
        chunk_size=settings.hash_chunk_size,
    )
