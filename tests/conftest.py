import asyncio
import hashlib
import io
import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, NamedTuple, Optional, Set, Tuple

import pytest

from photo_sync.errors import UploadProtocolError
from photo_sync.models import DevicePhoto, QueueItem, QueueItemStatus
from photo_sync.schemas import (
    UploadCompleteRequest,
    UploadCompleteResponse,
    UploadSessionRequest,
    UploadSessionResponse,
)
from photo_sync.services import (
    CancellationToken,
    ChunkedUploadClient,
    HashCollector,
    RetryPolicy,
    SyncOrchestrator,
)
from photo_sync.storage import Database, SqlPhotoCache, SyncStateRepository, UploadQueueStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class SlowStream(io.BytesIO):
    """Content stream that blocks the calling thread on every read and yields one byte."""

    def __init__(self, content: bytes, delay: float, started: threading.Event) -> None:
        super().__init__(content)
        self._delay = delay
        self._started = started

    def read(self, size: Optional[int] = -1) -> bytes:
        self._started.set()
        time.sleep(self._delay)
        return super().read(1)


class FakeLibrary:
    """In-memory device library keyed by photo id."""

    def __init__(self) -> None:
        self.contents: Dict[str, bytes] = {}
        self.photos: Dict[str, DevicePhoto] = {}
        self.unreadable: Set[str] = set()
        self.metadata_errors: Set[str] = set()
        self.slow: Dict[str, float] = {}
        self.read_started = threading.Event()

    def add(self, photo_id: str, content: bytes, *, name: Optional[str] = None, known_hash: Optional[str] = None) -> DevicePhoto:
        photo = DevicePhoto(
            id=photo_id,
            display_name=name or f"{photo_id}.jpg",
            taken_at=BASE_TIME - timedelta(minutes=len(self.photos)),
            hash=known_hash,
        )
        self.contents[photo_id] = content
        self.photos[photo_id] = photo
        return photo

    def get_recent_photos(self, max_count: int) -> List[DevicePhoto]:
        return list(self.photos.values())[:max_count]

    def open_content_stream(self, photo_id: str):
        if photo_id in self.unreadable:
            raise OSError(f"{photo_id} is not readable")
        if photo_id in self.slow:
            return SlowStream(self.contents[photo_id], self.slow[photo_id], self.read_started)
        return io.BytesIO(self.contents[photo_id])

    def get_size(self, photo_id: str) -> int:
        if photo_id in self.metadata_errors:
            raise OSError("size unavailable")
        return len(self.contents[photo_id])

    def get_mime_type(self, photo_id: str) -> str:
        if photo_id in self.metadata_errors:
            raise OSError("mime type unavailable")
        return "image/jpeg"

    def get_dimensions(self, photo_id: str) -> Optional[Tuple[int, int]]:
        if photo_id in self.metadata_errors:
            raise OSError("dimensions unavailable")
        return (640, 480)

    def compute_hash(self, photo_id: str) -> Optional[str]:
        return None


class FakeRemoteApi:
    """Records every protocol call; the server remembers hashes it has completed."""

    def __init__(self, chunk_size: int = 4) -> None:
        self.chunk_size = chunk_size
        self.existing_hashes: Set[str] = set()
        self.failures: Dict[str, int] = {}
        self.sessions: Dict[str, UploadSessionRequest] = {}
        self.session_requests: List[UploadSessionRequest] = []
        self.chunks: List[Tuple[str, int, int]] = []
        self.completed: List[Tuple[str, str]] = []
        self._milestones: Dict[int, asyncio.Event] = {}

    def fail(self, content_hash: str, times: int) -> None:
        self.failures[content_hash] = times

    def completions_reached(self, count: int) -> asyncio.Event:
        return self._milestones.setdefault(count, asyncio.Event())

    async def create_session(self, request: UploadSessionRequest) -> UploadSessionResponse:
        await asyncio.sleep(0)
        self.session_requests.append(request)
        if self.failures.get(request.hash, 0) > 0:
            self.failures[request.hash] -= 1
            raise UploadProtocolError("HTTP 503: unavailable", status_code=503)

        session_id = f"session-{len(self.session_requests)}"
        self.sessions[session_id] = request
        return UploadSessionResponse(
            upload_session_id=session_id,
            upload_url=f"/api/upload-sessions/{session_id}",
            chunk_size=self.chunk_size,
            already_exists=request.hash in self.existing_hashes,
        )

    async def upload_chunk(self, session_id: str, offset: int, data: bytes) -> None:
        await asyncio.sleep(0)
        self.chunks.append((session_id, offset, len(data)))

    async def complete_session(self, session_id: str, request: UploadCompleteRequest) -> UploadCompleteResponse:
        content_hash = self.sessions[session_id].hash
        self.existing_hashes.add(content_hash)
        self.completed.append((session_id, content_hash))
        for count, event in self._milestones.items():
            if len(self.completed) >= count:
                event.set()
        await asyncio.sleep(0)
        return UploadCompleteResponse(photo_id=str(len(self.completed)))

    def completed_hashes(self) -> List[str]:
        return [content_hash for _, content_hash in self.completed]


class RecordingSleeper:
    """Backoff sleeper that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float, token: CancellationToken) -> None:
        self.delays.append(seconds)
        token.raise_if_cancelled()
        await asyncio.sleep(0)


def make_item(library: FakeLibrary, photo_id: str, content: bytes, offset_seconds: int = 0) -> QueueItem:
    library.add(photo_id, content)
    return QueueItem(
        id=f"item-{photo_id}",
        local_photo_id=photo_id,
        file_name=f"{photo_id}.jpg",
        local_path=photo_id,
        size_bytes=len(content),
        created_at=BASE_TIME + timedelta(seconds=offset_seconds),
    )


@pytest.fixture
def database(tmp_path):
    db = Database.open(tmp_path / "sync.db")
    yield db
    db.dispose()


@pytest.fixture
def queue(database):
    return UploadQueueStore(database)


@pytest.fixture
def state_repository(database):
    return SyncStateRepository(database)


@pytest.fixture
def cache(database):
    return SqlPhotoCache(database)


@pytest.fixture
def library():
    return FakeLibrary()


@pytest.fixture
def api():
    return FakeRemoteApi()


@pytest.fixture
def sleeper():
    return RecordingSleeper()


@pytest.fixture
def orchestrator(queue, state_repository, cache, library, api, sleeper):
    return SyncOrchestrator(
        queue,
        state_repository,
        ChunkedUploadClient(api, library),
        HashCollector(library),
        cache=cache,
        retry_policy=RetryPolicy(sleep=sleeper),
    )


@pytest.fixture
def saved_states(mocker, state_repository):
    """Copies of every state handed to the repository, in order."""
    saved = []
    original = state_repository.save

    def record(state):
        saved.append(replace(state))
        original(state)

    mocker.patch.object(state_repository, "save", side_effect=record)
    return saved


class StatusUpdate(NamedTuple):
    status: QueueItemStatus
    error_message: Optional[str]
    retry_count: Optional[int]


@pytest.fixture
def status_log(mocker, queue):
    """Last status written for each item id; finished rows are cleared once a run completes."""
    spy = mocker.spy(queue, "update_status")

    def latest() -> Dict[str, StatusUpdate]:
        updates = {}
        for call in spy.call_args_list:
            item_id, status, *rest = call.args
            error_message = rest[0] if rest else call.kwargs.get("error_message")
            updates[item_id] = StatusUpdate(status, error_message, call.kwargs.get("retry_count"))
        return updates

    return latest
