from __future__ import annotations

import hashlib
from pathlib import PurePath
from typing import Callable, Optional, TypeVar

from ..errors import HashComputationFailed, MetadataUnavailable
from ..models import QueueItem
from ..telemetry import SyncLogger
from .cancellation import CancellationToken
from .interfaces import DeviceLibrary

T = TypeVar("T")

HASH_READ_SIZE = 1024 * 1024
DEFAULT_MIME_TYPE = "image/jpeg"

MIME_TYPES_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".heic": "image/heic",
    ".heif": "image/heic",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
}


def guess_mime_type(file_name: Optional[str]) -> str:
    if not file_name:
        return DEFAULT_MIME_TYPE
    return MIME_TYPES_BY_EXTENSION.get(PurePath(file_name).suffix.lower(), DEFAULT_MIME_TYPE)


class HashCollector:
    """Fills in the content hash and upload metadata of queue items."""

    def __init__(self, library: DeviceLibrary, log: Optional[SyncLogger] = None) -> None:
        self._library = library
        self._log = log or SyncLogger()

    def ensure_hash(self, item: QueueItem, token: Optional[CancellationToken] = None) -> str:
        if item.hash:
            return item.hash

        digest = None
        try:
            digest = self._library.compute_hash(item.local_photo_id)
        except Exception as exc:
            self._log.warning("Hash", f"Library hash failed for {item.file_name}, hashing content", error=str(exc))

        item.hash = digest or self.hash_content(item, token)
        return item.hash

    def hash_content(self, item: QueueItem, token: Optional[CancellationToken] = None) -> str:
        """SHA-256 of the complete content stream.

        Raises:
            HashComputationFailed: if the stream cannot be opened or is cut short
            SyncCancelled: between blocks, once the token fires
        """
        sha = hashlib.sha256()
        read_total = 0
        try:
            with self._library.open_content_stream(item.local_photo_id) as stream:
                while True:
                    if token is not None:
                        token.raise_if_cancelled()
                    block = stream.read(HASH_READ_SIZE)
                    if not block:
                        break
                    sha.update(block)
                    read_total += len(block)
        except (OSError, ValueError) as exc:
            raise HashComputationFailed(f"Could not read {item.file_name}: {exc}") from exc

        if item.size_bytes and read_total != item.size_bytes:
            raise HashComputationFailed(
                f"Read {read_total} of {item.size_bytes} bytes from {item.file_name}"
            )
        return sha.hexdigest()

    def ensure_metadata(self, item: QueueItem) -> QueueItem:
        """Best-effort metadata; missing optional fields never fail the item."""
        if not item.size_bytes:
            size = self._read_optional(item, "size", self._library.get_size)
            if size:
                item.size_bytes = int(size)

        if not item.mime_type:
            item.mime_type = self._read_optional(item, "mime_type", self._library.get_mime_type) or guess_mime_type(
                item.file_name
            )

        if item.width is None or item.height is None:
            dimensions = self._read_optional(item, "dimensions", self._library.get_dimensions)
            if dimensions:
                item.width, item.height = dimensions

        return item

    def _read_optional(self, item: QueueItem, field_name: str, reader: Callable[[str], T]) -> Optional[T]:
        try:
            return reader(item.local_photo_id)
        except Exception as exc:
            unavailable = MetadataUnavailable(f"{field_name} unavailable for {item.file_name}: {exc}")
            self._log.warning("Metadata", unavailable.message, field=field_name)
            return None
