"""Persisted upload queue."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Iterable, List, Optional, Set

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.sqlite import insert

from ..models import (
    ACTIVE_STATUSES,
    CLEARABLE_STATUSES,
    QueueItem,
    QueueItemStatus,
    QueueStatistics,
    utc_now,
)
from .db import Database
from .models import SyncQueueRow

logger = logging.getLogger("photo_sync.storage.queue")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class UploadQueueStore:
    """Durable queue of upload items keyed by item id.

    Writers are serialised by a single lock so a batch upsert is never
    interleaved with a status update; reads go straight to the database.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._write_lock = Lock()

    def enqueue(self, items: Iterable[QueueItem]) -> int:
        """Insert items, or refresh the progress fields of ids already queued.

        Content fields (hash, size, MIME type, dimensions...) of an existing
        row are never overwritten by a duplicate submission.
        """
        rows = [self._to_values(item) for item in items]
        if not rows:
            return 0

        with self._write_lock, self._db.session() as session:
            for values in rows:
                statement = insert(SyncQueueRow).values(**values)
                statement = statement.on_conflict_do_update(
                    index_elements=[SyncQueueRow.id],
                    set_={
                        "status": statement.excluded.status,
                        "retry_count": statement.excluded.retry_count,
                        "error_message": statement.excluded.error_message,
                        "last_attempt_at": statement.excluded.last_attempt_at,
                    },
                )
                session.execute(statement)

        logger.debug({"event": "queue.enqueued", "count": len(rows)})
        return len(rows)

    def get_pending(self) -> List[QueueItem]:
        """Items still to process, oldest first."""
        statement = (
            select(SyncQueueRow)
            .where(SyncQueueRow.status.in_([status.value for status in ACTIVE_STATUSES]))
            .order_by(SyncQueueRow.created_at.asc(), SyncQueueRow.id.asc())
        )
        with self._db.session() as session:
            return [self._to_item(row) for row in session.scalars(statement)]

    def get(self, item_id: str) -> Optional[QueueItem]:
        with self._db.session() as session:
            row = session.get(SyncQueueRow, item_id)
            return self._to_item(row) if row is not None else None

    def active_photo_ids(self) -> Set[str]:
        """Device photo ids with a row still waiting to be processed."""
        statement = select(SyncQueueRow.local_photo_id).where(
            SyncQueueRow.status.in_([status.value for status in ACTIVE_STATUSES])
        )
        with self._db.session() as session:
            return set(session.scalars(statement))

    def update_status(
        self,
        item_id: str,
        status: QueueItemStatus,
        error_message: Optional[str] = None,
        *,
        retry_count: Optional[int] = None,
    ) -> None:
        values = {
            "status": status.value,
            "error_message": error_message,
            "last_attempt_at": utc_now(),
        }
        if retry_count is not None:
            values["retry_count"] = retry_count

        with self._write_lock, self._db.session() as session:
            session.execute(update(SyncQueueRow).where(SyncQueueRow.id == item_id).values(**values))

    def update_metadata(self, item: QueueItem) -> None:
        """Persist the hash and metadata collected for an item while draining."""
        values = {
            "hash": item.hash,
            "size_bytes": item.size_bytes,
            "mime_type": item.mime_type,
            "width": item.width,
            "height": item.height,
        }
        with self._write_lock, self._db.session() as session:
            session.execute(update(SyncQueueRow).where(SyncQueueRow.id == item.id).values(**values))

    def mark_uploaded(self, item_id: str) -> None:
        self.update_status(item_id, QueueItemStatus.UPLOADED)

    def clear_completed(self) -> int:
        """Delete every row in a finished state (uploaded, failed, skipped, cancelled)."""
        statement = delete(SyncQueueRow).where(
            SyncQueueRow.status.in_([status.value for status in CLEARABLE_STATUSES])
        )
        with self._write_lock, self._db.session() as session:
            removed = session.execute(statement).rowcount or 0

        logger.debug({"event": "queue.cleared", "removed": removed})
        return removed

    def statistics(self) -> QueueStatistics:
        def count_of(*statuses: QueueItemStatus):
            return func.coalesce(
                func.sum(case((SyncQueueRow.status.in_([s.value for s in statuses]), 1), else_=0)),
                0,
            )

        statement = select(
            func.count(),
            count_of(QueueItemStatus.PENDING),
            count_of(QueueItemStatus.UPLOADING),
            count_of(QueueItemStatus.UPLOADED, QueueItemStatus.SKIPPED),
            count_of(QueueItemStatus.FAILED),
        ).select_from(SyncQueueRow)

        with self._db.session() as session:
            total, pending, uploading, completed, failed = session.execute(statement).one()

        return QueueStatistics(
            total=int(total),
            pending=int(pending),
            uploading=int(uploading),
            completed=int(completed),
            failed=int(failed),
        )

    @staticmethod
    def _to_values(item: QueueItem) -> dict:
        return {
            "id": item.id,
            "local_photo_id": item.local_photo_id,
            "hash": item.hash,
            "local_path": item.local_path,
            "file_name": item.file_name,
            "size_bytes": item.size_bytes,
            "mime_type": item.mime_type,
            "captured_at": item.captured_at,
            "width": item.width,
            "height": item.height,
            "location_lat": item.location_lat,
            "location_lon": item.location_lon,
            "status": item.status.value,
            "retry_count": item.retry_count,
            "error_message": item.error_message,
            "created_at": item.created_at,
            "last_attempt_at": item.last_attempt_at,
        }

    @staticmethod
    def _to_item(row: SyncQueueRow) -> QueueItem:
        return QueueItem(
            id=row.id,
            local_photo_id=row.local_photo_id,
            hash=row.hash,
            local_path=row.local_path,
            file_name=row.file_name,
            size_bytes=row.size_bytes,
            mime_type=row.mime_type,
            captured_at=as_utc(row.captured_at),
            width=row.width,
            height=row.height,
            location_lat=row.location_lat,
            location_lon=row.location_lon,
            status=QueueItemStatus(row.status),
            retry_count=row.retry_count,
            error_message=row.error_message,
            created_at=as_utc(row.created_at),
            last_attempt_at=as_utc(row.last_attempt_at),
        )
