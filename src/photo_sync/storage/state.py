"""Checkpoint persistence for the singleton sync run state."""
from __future__ import annotations

from threading import Lock
from typing import Optional

from sqlalchemy import delete

from ..models import SyncState, SyncStatus
from .db import Database
from .models import SyncStateRow
from .queue import as_utc

STATE_ROW_ID = 1


class SyncStateRepository:
    def __init__(self, database: Database) -> None:
        self._db = database
        self._write_lock = Lock()

    def save(self, state: SyncState) -> None:
        """Overwrite the single checkpoint row with the aggregate run fields."""
        row = SyncStateRow(
            id=STATE_ROW_ID,
            status=state.status.value,
            total_items=state.total_items,
            completed_items=state.completed_items,
            failed_items=state.failed_items,
            current_item_name=state.current_item_name,
            progress_percentage=state.progress_percentage,
            error_message=state.error_message,
            started_at=state.started_at,
            completed_at=state.completed_at,
        )
        with self._write_lock, self._db.session() as session:
            session.merge(row)

    def load(self) -> Optional[SyncState]:
        with self._db.session() as session:
            row = session.get(SyncStateRow, STATE_ROW_ID)
            if row is None:
                return None
            return SyncState(
                status=SyncStatus(row.status),
                total_items=row.total_items,
                completed_items=row.completed_items,
                failed_items=row.failed_items,
                current_item_name=row.current_item_name,
                error_message=row.error_message,
                started_at=as_utc(row.started_at),
                completed_at=as_utc(row.completed_at),
            )

    def clear(self) -> None:
        with self._write_lock, self._db.session() as session:
            session.execute(delete(SyncStateRow).where(SyncStateRow.id == STATE_ROW_ID))
