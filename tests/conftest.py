"""Shared test fixtures for fimon."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fimon.config import Settings
from fimon.database import create_engine, create_schema
from fimon.main import create_app
from fimon.services.monitor_service import IntegrityMonitor, build_monitor
from fimon.services.reconcile_service import Reconciler
from fimon.services.record_store import RecordStore
from fimon.services.watcher_service import ChangeWatcher

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FakeWatch:
    path: str


class FakeObserver:
    """Stands in for a watchdog observer: records scheduled directories, starts no thread."""

    def __init__(self) -> None:
        self.watches: dict[str, Any] = {}
        self.fail_paths: set[str] = set()
        self.started = False
        self.stopped = False

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> FakeWatch:
        if path in self.fail_paths:
            raise OSError(28, "inotify watch limit reached")
        self.watches[path] = handler
        return FakeWatch(path)

    def unschedule(self, watch: FakeWatch) -> None:
        del self.watches[watch.path]

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        return None


@asynccontextmanager
async def create_test_client(
    settings: Settings, observer: FakeObserver | None = None
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema, monitor
    start) because ASGITransport does not trigger it.
    """
    fake_observer = observer if observer is not None else FakeObserver()
    app = create_app(settings)

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings
    await create_schema(engine)

    monitor = build_monitor(settings, session_factory, observer_factory=lambda: fake_observer)
    await monitor.start()
    app.state.monitor = monitor

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await monitor.stop()
    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        check_interval=3600,
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine, _ = create_engine(test_settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> RecordStore:
    return RecordStore(session_factory)


@pytest.fixture
def fake_observer() -> FakeObserver:
    return FakeObserver()


@pytest.fixture
async def watcher(store: RecordStore, fake_observer: FakeObserver) -> AsyncGenerator[ChangeWatcher]:
    """A change watcher backed by the fake observer. Not started."""
    w = ChangeWatcher(store, "10.0.0.1", observer_factory=lambda: fake_observer)
    yield w
    await w.stop()


@pytest.fixture
async def reconciler(store: RecordStore) -> AsyncGenerator[Reconciler]:
    r = Reconciler(store, 3600)
    yield r
    await r.stop()


@pytest.fixture
async def monitor(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    fake_observer: FakeObserver,
) -> AsyncGenerator[IntegrityMonitor]:
    """An integrity monitor wired to the test database. Background tasks not started."""
    m = build_monitor(test_settings, session_factory, observer_factory=lambda: fake_observer)
    yield m
    await m.stop()


@pytest.fixture
def tracked_file(tmp_path: Path) -> Path:
    """A small regular file to register."""
    path = tmp_path / "watched" / "a.txt"
    path.parent.mkdir()
    path.write_bytes(b"hello")
    return path
