"""Record store: the single mutation gateway for tracked file records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import and_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from fimon.exceptions import StoreFailure
from fimon.models.file_record import FileRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

# Columns an upsert may change on an existing row.
MUTABLE_COLUMNS = ("latest_md5", "last_update", "scan_time", "is_deleted")


class RecordStore:
    """Durable table of tracked paths and their fingerprints.

    Every write is a single SQL statement, so updates to one path are atomic
    and updates to different paths never block each other beyond SQLite's own
    write lock. Storage errors are raised as :class:`StoreFailure`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, record: FileRecord, *, reactivate: bool = False) -> FileRecord:
        """Insert ``record`` as a first registration or update the mutable fields.

        On insert, ``original_md5`` defaults to ``latest_md5``. On conflict only
        ``MUTABLE_COLUMNS`` are written; ``id``, ``host_ip``, ``file_name`` and
        ``original_md5`` are preserved. An update whose ``scan_time`` is older than
        the stored one is dropped whole, so ``scan_time`` never decreases and a
        stale write cannot be mixed into a newer one.

        Only a registration (``reactivate=True``) may update a soft-deleted row.
        Any other write to such a row is dropped, so a sweep or change event that
        started before a deregistration cannot make the record active again.

        Returns the stored row as of this write.
        """
        stmt = sqlite_insert(FileRecord).values(
            host_ip=record.host_ip,
            file_name=record.file_name,
            file_path=record.file_path,
            last_update=record.last_update,
            original_md5=record.original_md5 or record.latest_md5,
            latest_md5=record.latest_md5,
            scan_time=record.scan_time,
            is_deleted=bool(record.is_deleted),
        )
        guard = stmt.excluded.scan_time >= FileRecord.scan_time
        if not reactivate:
            guard = and_(guard, FileRecord.is_deleted.is_(False))
        stmt = stmt.on_conflict_do_update(
            index_elements=[FileRecord.file_path],
            set_={column: stmt.excluded[column] for column in MUTABLE_COLUMNS},
            where=guard,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    logger.debug("Dropped stale or inactive update for %s", record.file_path)
                stored = await session.scalar(
                    select(FileRecord).where(FileRecord.file_path == record.file_path)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreFailure("upsert", str(exc)) from exc
        if stored is None:
            raise StoreFailure("upsert", f"record for {record.file_path} vanished during write")
        return stored

    async def get(self, path: str) -> FileRecord | None:
        """Return the record for ``path``, active or soft-deleted."""
        try:
            async with self._session_factory() as session:
                return await session.scalar(select(FileRecord).where(FileRecord.file_path == path))
        except SQLAlchemyError as exc:
            raise StoreFailure("get", str(exc)) from exc

    async def list_active(self) -> list[FileRecord]:
        """Return all records that are not soft-deleted, ordered by id."""
        return await self._list(active_only=True)

    async def list_all(self) -> list[FileRecord]:
        """Return every record including soft-deleted ones, ordered by id."""
        return await self._list(active_only=False)

    async def _list(self, *, active_only: bool) -> list[FileRecord]:
        stmt = select(FileRecord).order_by(FileRecord.id)
        if active_only:
            stmt = stmt.where(FileRecord.is_deleted.is_(False))
        try:
            async with self._session_factory() as session:
                result = await session.scalars(stmt)
                return list(result.all())
        except SQLAlchemyError as exc:
            raise StoreFailure("list", str(exc)) from exc

    async def list_all_paths_active(self) -> list[str]:
        """Return just the paths of active records."""
        stmt = (
            select(FileRecord.file_path)
            .where(FileRecord.is_deleted.is_(False))
            .order_by(FileRecord.id)
        )
        try:
            async with self._session_factory() as session:
                result = await session.scalars(stmt)
                return list(result.all())
        except SQLAlchemyError as exc:
            raise StoreFailure("list_paths", str(exc)) from exc

    async def soft_delete(self, path: str) -> bool:
        """Flag the record for ``path`` as deleted. Returns False if there is none."""
        stmt = update(FileRecord).where(FileRecord.file_path == path).values(is_deleted=True)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreFailure("soft_delete", str(exc)) from exc
        return bool(result.rowcount)

    async def purge(self, record_id: int) -> FileRecord | None:
        """Physically remove a record by id. Returns the removed record, if any."""
        try:
            async with self._session_factory() as session:
                record = await session.get(FileRecord, record_id)
                if record is None:
                    return None
                await session.delete(record)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreFailure("purge", str(exc)) from exc
        logger.info("Purged record %d for %s", record_id, record.file_path)
        return record
