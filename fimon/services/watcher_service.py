"""Change watcher: real-time filesystem notifications for registered paths.

watchdog observes directories, so each subscribed file is covered by a
non-recursive watch on its parent directory. The directory watch lives as long
as at least one subscribed path is inside it. Notifications arrive on the
observer thread and cross into asyncio through ``loop.call_soon_threadsafe``.

Events and watcher-subsystem errors travel on two separate queues. The event
queue is bounded; an event that does not fit is reported on the error queue and
the periodic sweep catches up on whatever change it described.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from fimon.exceptions import ReadFailure, StoreFailure, WatchSubscriptionFailure
from fimon.models.file_record import FileRecord
from fimon.services.datetime_service import now_utc
from fimon.services.hash_service import DEFAULT_CHUNK_SIZE, fingerprint_async, stat_mtime

if TYPE_CHECKING:
    from collections.abc import Callable

    from watchdog.events import FileSystemEvent
    from watchdog.observers.api import BaseObserver, ObservedWatch

    from fimon.services.record_store import RecordStore

logger = logging.getLogger(__name__)

_OBSERVER_JOIN_TIMEOUT = 5.0


class ChangeKind(StrEnum):
    """Kind of filesystem change delivered to the event loop."""

    CREATED = "created"
    WRITTEN = "written"
    REMOVED = "removed"


@dataclass(frozen=True)
class FileChangeEvent:
    """A change notification for one absolute path."""

    kind: ChangeKind
    path: str


class WatchQueueOverflow(RuntimeError):
    """The event queue was full and a notification had to be dropped."""

    def __init__(self, event: FileChangeEvent) -> None:
        super().__init__(f"Event queue full; dropped {event.kind} for {event.path}")
        self.event = event


_WATCHDOG_KINDS = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.WRITTEN,
    "deleted": ChangeKind.REMOVED,
}


def _normalize(path: str | bytes) -> str:
    return os.path.abspath(os.fsdecode(path))


class _EventBridge(FileSystemEventHandler):
    """Translate watchdog events into :class:`FileChangeEvent` on the asyncio loop."""

    def __init__(
        self,
        publish: Callable[[FileChangeEvent], None],
        report: Callable[[BaseException], None],
    ) -> None:
        self._publish = publish
        self._report = report

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        try:
            self._translate(event)
        except (OSError, ValueError) as exc:
            self._report(exc)

    def _translate(self, event: FileSystemEvent) -> None:
        if event.event_type == "moved":
            # Editors that save through a temp file + rename show up here.
            self._publish(FileChangeEvent(ChangeKind.REMOVED, _normalize(event.src_path)))
            dest_path = getattr(event, "dest_path", "")
            if dest_path:
                self._publish(FileChangeEvent(ChangeKind.CREATED, _normalize(dest_path)))
            return
        kind = _WATCHDOG_KINDS.get(event.event_type)
        if kind is not None:
            self._publish(FileChangeEvent(kind, _normalize(event.src_path)))


class ChangeWatcher:
    """Keeps OS subscriptions for registered paths and persists fingerprints on change.

    Args:
        store: Record store that receives updated fingerprints.
        host_ip: Host identifier written into records built from events.
        queue_size: Capacity of the event queue.
        chunk_size: Read size used when hashing.
        observer_factory: Builds the watchdog observer (tests inject fakes).
    """

    def __init__(
        self,
        store: RecordStore,
        host_ip: str,
        *,
        queue_size: int = 1000,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self._store = store
        self._host_ip = host_ip
        self._chunk_size = chunk_size
        self._observer = observer_factory()
        self._handler = _EventBridge(self.notify, self.report_error)
        self._subscribed: set[str] = set()
        self._dir_watches: dict[str, ObservedWatch] = {}
        self._events: asyncio.Queue[FileChangeEvent] = asyncio.Queue(maxsize=queue_size)
        self._errors: asyncio.Queue[BaseException] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._observer_started = False

    @property
    def subscribed_paths(self) -> frozenset[str]:
        """Paths currently covered by an OS watch."""
        return frozenset(self._subscribed)

    @property
    def is_running(self) -> bool:
        """Whether the consumer task is alive."""
        return self._task is not None and not self._task.done()

    # ── Subscriptions ──────────────────────────────────

    async def reload_from_store(self) -> int:
        """Subscribe every active path in the store that still exists.

        Missing paths are logged and skipped without touching their records;
        the reconciler soft-deletes them on its next sweep.

        Returns the number of subscribed paths.
        """
        paths = await self._store.list_all_paths_active()
        for path in paths:
            try:
                exists = stat_mtime(path) is not None
            except OSError as exc:
                logger.warning("Cannot stat %s, not watching: %s", path, exc)
                continue
            if not exists:
                logger.warning("File does not exist, not watching: %s", path)
                continue
            try:
                self.subscribe(path)
            except WatchSubscriptionFailure as exc:
                logger.warning("%s; relying on periodic reconciliation", exc)
        logger.info("Watching %d of %d active files", len(self._subscribed), len(paths))
        return len(self._subscribed)

    def subscribe(self, path: str) -> None:
        """Start delivering change events for ``path``. No-op if already subscribed.

        Raises:
            WatchSubscriptionFailure: If the OS watch on the parent directory
                cannot be established.
        """
        path = os.path.abspath(path)
        if path in self._subscribed:
            return
        directory = os.path.dirname(path)
        if directory not in self._dir_watches:
            try:
                self._dir_watches[directory] = self._observer.schedule(
                    self._handler, directory, recursive=False
                )
            except OSError as exc:
                raise WatchSubscriptionFailure(path, exc.strerror or str(exc)) from exc
        self._subscribed.add(path)
        logger.info("Started watching %s", path)

    def unsubscribe(self, path: str) -> bool:
        """Stop delivering change events for ``path``. Returns False if it was not watched."""
        path = os.path.abspath(path)
        if path not in self._subscribed:
            return False
        self._subscribed.discard(path)
        directory = os.path.dirname(path)
        if any(os.path.dirname(other) == directory for other in self._subscribed):
            logger.info("Stopped watching %s", path)
            return True
        watch = self._dir_watches.pop(directory, None)
        if watch is not None:
            try:
                self._observer.unschedule(watch)
            except (KeyError, OSError) as exc:
                logger.warning("Failed to remove directory watch on %s: %s", directory, exc)
        logger.info("Stopped watching %s", path)
        return True

    # ── Channels ───────────────────────────────────────

    def notify(self, event: FileChangeEvent) -> None:
        """Publish an event from any thread."""
        self._call_in_loop(self._enqueue_event, event)

    def report_error(self, error: BaseException) -> None:
        """Publish a watcher-subsystem failure from any thread."""
        self._call_in_loop(self._errors.put_nowait, error)

    def _call_in_loop(self, callback: Callable[[Any], None], arg: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Watcher not running; discarding %r", arg)
            return
        try:
            loop.call_soon_threadsafe(callback, arg)
        except RuntimeError:
            logger.debug("Event loop closed; discarding %r", arg)

    def _enqueue_event(self, event: FileChangeEvent) -> None:
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            self._errors.put_nowait(WatchQueueOverflow(event))

    # ── Event handling ─────────────────────────────────

    async def handle_event(self, event: FileChangeEvent) -> FileRecord | None:
        """Re-fingerprint a subscribed path after a write or create event.

        Returns the stored record, or None when the event was ignored. Removal
        events and stat failures are only logged: marking a record deleted is
        the reconciler's job.

        Raises:
            ReadFailure: If the file cannot be hashed.
            StoreFailure: If the update cannot be persisted.
        """
        if event.path not in self._subscribed:
            return None
        if event.kind is ChangeKind.REMOVED:
            logger.info("Watched file removed: %s", event.path)
            return None

        try:
            mtime = stat_mtime(event.path)
        except OSError as exc:
            logger.warning("Cannot stat %s after %s event: %s", event.path, event.kind, exc)
            return None
        if mtime is None:
            logger.warning("File vanished before %s event was handled: %s", event.kind, event.path)
            return None

        latest_md5 = await fingerprint_async(event.path, self._chunk_size)
        if event.path not in self._subscribed:
            logger.debug(
                "Unsubscribed while hashing; dropped %s event for %s", event.kind, event.path
            )
            return None
        record = FileRecord(
            host_ip=self._host_ip,
            file_name=os.path.basename(event.path),
            file_path=event.path,
            last_update=mtime,
            latest_md5=latest_md5,
            scan_time=now_utc(),
            is_deleted=False,
        )
        stored = await self._store.upsert(record)
        logger.info("File %s: %s (md5 %s)", event.kind, event.path, latest_md5)
        return stored

    async def run(self) -> None:
        """Drain the event and error queues until cancelled."""
        await asyncio.gather(self._drain_events(), self._drain_errors())

    async def _drain_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.handle_event(event)
            except (ReadFailure, StoreFailure) as exc:
                logger.error("Failed to process %s event for %s: %s", event.kind, event.path, exc)
            except Exception:
                logger.exception(
                    "Unexpected error processing %s event for %s", event.kind, event.path
                )
            finally:
                self._events.task_done()

    async def _drain_errors(self) -> None:
        while True:
            error = await self._errors.get()
            try:
                logger.error("File watcher error: %s", error)
            finally:
                self._errors.task_done()

    async def wait_idle(self) -> None:
        """Wait until every queued event and error has been handled."""
        await self._events.join()
        await self._errors.join()

    # ── Lifecycle ──────────────────────────────────────

    async def start(self) -> None:
        """Start the observer thread and the consumer task."""
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        if not self._observer_started:
            self._observer.start()
            self._observer_started = True
        self._task = asyncio.create_task(self.run(), name="change_watcher")
        logger.info("File watcher started (%d paths)", len(self._subscribed))

    async def stop(self) -> None:
        """Stop the consumer task and the observer thread. Idempotent."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._loop = None
        if self._observer_started:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, _OBSERVER_JOIN_TIMEOUT)
            self._observer_started = False
            logger.info("File watcher stopped")
