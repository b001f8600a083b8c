"""Select device photos that still need uploading and start a run."""
from __future__ import annotations

import asyncio
from typing import List, Optional, Set

from ..models import DevicePhoto, PrepareResult, QueueItem
from ..storage.queue import UploadQueueStore
from ..telemetry import SyncLogger
from .hashing import guess_mime_type
from .interfaces import DeviceLibrary, PhotoCache
from .orchestrator import SyncOrchestrator

MAX_PHOTOS_TO_SYNC = 1000
UNKNOWN_FILE_NAME = "unknown.jpg"


class SyncPreparation:
    def __init__(
        self,
        library: DeviceLibrary,
        cache: PhotoCache,
        queue: UploadQueueStore,
        orchestrator: SyncOrchestrator,
        *,
        log: Optional[SyncLogger] = None,
        max_photos: int = MAX_PHOTOS_TO_SYNC,
    ) -> None:
        self._library = library
        self._cache = cache
        self._queue = queue
        self._orchestrator = orchestrator
        self._log = log or SyncLogger()
        self._max_photos = max_photos

    async def prepare_and_start(self) -> PrepareResult:
        """Queue every recent photo not yet on the server, then start the orchestrator.

        Never raises: unexpected errors come back as an unsuccessful result.
        """
        try:
            self._log.info("Sync", "Starting sync preparation")
            items = await asyncio.to_thread(self.collect_items)
            if not items:
                self._log.info("Sync", "No new photos to sync")
                return PrepareResult(success=True, queued_count=0)

            self._queue.enqueue(items)
            self._log.info("Sync", f"Queued {len(items)} photos for upload")

            await self._orchestrator.start()
            return PrepareResult(success=True, queued_count=len(items))
        except Exception as exc:
            self._log.error("Sync", "Failed to prepare sync", exc=exc)
            return PrepareResult(success=False, queued_count=0, error_message=str(exc))

    def collect_items(self) -> List[QueueItem]:
        photos = self._library.get_recent_photos(self._max_photos)
        self._log.info("Sync", f"Found {len(photos)} photos on device")

        cached = list(self._cache.get_cached_photos())
        cached_ids: Set[str] = {photo.id for photo in cached if photo.id}
        synced_ids: Set[str] = {photo.id for photo in cached if photo.id and photo.is_synced}
        synced_hashes: Set[str] = {photo.hash for photo in cached if photo.hash and photo.is_synced}

        # A photo counts as synced only when the cache knows it.
        candidates = [
            photo
            for photo in photos
            if photo.id and (photo.id not in cached_ids or not (photo.is_synced or photo.id in synced_ids))
        ]
        self._log.info("Sync", f"Identified {len(candidates)} new photos to upload")

        queued = self._queue.active_photo_ids()
        items = []
        for photo in candidates:
            if photo.id in queued:
                self._log.info("Sync", f"Skipping {photo.display_name} - already queued")
                continue
            if photo.hash and photo.hash in synced_hashes:
                self._log.info("Sync", f"Skipping {photo.display_name} - already synced", hash=photo.hash)
                continue
            items.append(self._to_queue_item(photo))
        return items

    def _to_queue_item(self, photo: DevicePhoto) -> QueueItem:
        file_name = photo.display_name or UNKNOWN_FILE_NAME
        size_bytes = 0
        mime_type = None
        width = height = None
        try:
            size_bytes = self._library.get_size(photo.id)
            mime_type = self._library.get_mime_type(photo.id)
            dimensions = self._library.get_dimensions(photo.id)
            if dimensions:
                width, height = dimensions
        except Exception as exc:
            self._log.warning("Sync", f"Failed to get metadata for {file_name}", error=str(exc))

        return QueueItem(
            local_photo_id=photo.id,
            file_name=file_name,
            hash=photo.hash,
            local_path=photo.id,
            size_bytes=size_bytes,
            mime_type=mime_type or guess_mime_type(file_name),
            captured_at=photo.taken_at,
            width=width,
            height=height,
        )
