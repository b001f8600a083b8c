from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Float, Index, Integer, String, Text, text
from sqlalchemy import DateTime as _DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SyncQueueRow(Base):
    __tablename__ = "sync_queue"
    __table_args__ = (
        Index("ix_sync_queue_status", "status"),
        Index("ix_sync_queue_hash", "hash", sqlite_where=text("hash IS NOT NULL")),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    local_photo_id: Mapped[str] = mapped_column(String(512), nullable=False)
    hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    local_path: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mime_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    captured_at: Mapped[Optional[datetime]] = mapped_column(_DateTime(timezone=True), nullable=True)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    location_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(_DateTime(timezone=True), nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(_DateTime(timezone=True), nullable=True)


class SyncStateRow(Base):
    __tablename__ = "sync_state"
    __table_args__ = (CheckConstraint("id = 1", name="ck_sync_state_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_item_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    progress_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(_DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(_DateTime(timezone=True), nullable=True)


class CachedPhotoRow(Base):
    __tablename__ = "cached_photos"

    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    is_synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    synced_at: Mapped[Optional[datetime]] = mapped_column(_DateTime(timezone=True), nullable=True)
