from __future__ import annotations

from typing import BinaryIO, Callable, Iterable, Optional, Protocol, Tuple, runtime_checkable

from ..models import CachedPhoto, DevicePhoto
from ..schemas import (
    UploadCompleteRequest,
    UploadCompleteResponse,
    UploadSessionRequest,
    UploadSessionResponse,
)

ProgressCallback = Callable[[int, int], None]


@runtime_checkable
class DeviceLibrary(Protocol):
    def get_recent_photos(self, max_count: int) -> list[DevicePhoto]: ...

    def open_content_stream(self, photo_id: str) -> BinaryIO: ...

    def get_size(self, photo_id: str) -> int: ...

    def get_mime_type(self, photo_id: str) -> str: ...

    def get_dimensions(self, photo_id: str) -> Optional[Tuple[int, int]]: ...

    def compute_hash(self, photo_id: str) -> Optional[str]: ...


@runtime_checkable
class RemoteApi(Protocol):
    async def create_session(self, request: UploadSessionRequest) -> UploadSessionResponse: ...

    async def upload_chunk(self, session_id: str, offset: int, data: bytes) -> None: ...

    async def complete_session(self, session_id: str, request: UploadCompleteRequest) -> UploadCompleteResponse: ...


@runtime_checkable
class PhotoCache(Protocol):
    def get_cached_photos(self) -> Iterable[CachedPhoto]: ...

    def mark_synced(self, photo_id: str, content_hash: Optional[str]) -> bool: ...
