from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueueItemStatus(str, Enum):
    PENDING = "pending"
    HASHING = "hashing"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (QueueItemStatus.PENDING, QueueItemStatus.HASHING, QueueItemStatus.UPLOADING)
TERMINAL_STATUSES = (QueueItemStatus.UPLOADED, QueueItemStatus.SKIPPED, QueueItemStatus.CANCELLED)
CLEARABLE_STATUSES = TERMINAL_STATUSES + (QueueItemStatus.FAILED,)


class SyncStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(slots=True)
class QueueItem:
    local_photo_id: str
    file_name: str
    id: str = field(default_factory=lambda: str(uuid4()))
    hash: str | None = None
    local_path: str = ""
    size_bytes: int = 0
    mime_type: str | None = None
    captured_at: datetime | None = None
    width: int | None = None
    height: int | None = None
    location_lat: float | None = None
    location_lon: float | None = None
    status: QueueItemStatus = QueueItemStatus.PENDING
    retry_count: int = 0
    error_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    last_attempt_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class SyncState:
    """Aggregate state of the current sync run, shared by the engine and its observers."""

    status: SyncStatus = SyncStatus.IDLE
    total_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    current_item_name: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    current_file_uploaded_bytes: int = 0
    current_file_total_bytes: int = 0
    total_bytes_uploaded: int = 0

    @property
    def pending_items(self) -> int:
        return self.total_items - self.completed_items - self.failed_items

    @property
    def progress_percentage(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return self.completed_items / self.total_items

    @property
    def current_file_progress_percentage(self) -> float:
        if self.current_file_total_bytes <= 0:
            return 0.0
        return self.current_file_uploaded_bytes / self.current_file_total_bytes

    def reset_counters(self) -> None:
        self.total_items = 0
        self.completed_items = 0
        self.failed_items = 0
        self.current_item_name = None
        self.current_file_uploaded_bytes = 0
        self.current_file_total_bytes = 0
        self.total_bytes_uploaded = 0


@dataclass(slots=True, frozen=True)
class QueueStatistics:
    total: int = 0
    pending: int = 0
    uploading: int = 0
    completed: int = 0
    failed: int = 0


@dataclass(slots=True, frozen=True)
class UploadSession:
    id: str
    hash: str
    size_bytes: int
    mime_type: str
    chunk_size: int
    already_exists: bool = False


@dataclass(slots=True, frozen=True)
class UploadOutcome:
    status: QueueItemStatus
    session_id: str
    photo_id: str | None = None
    bytes_sent: int = 0


@dataclass(slots=True)
class DevicePhoto:
    id: str
    display_name: str | None = None
    taken_at: datetime | None = None
    hash: str | None = None
    is_synced: bool = False


@dataclass(slots=True)
class CachedPhoto:
    id: str
    hash: str | None = None
    is_synced: bool = False


@dataclass(slots=True, frozen=True)
class PrepareResult:
    success: bool
    queued_count: int = 0
    error_message: str | None = None
