"""Client side of the chunked upload protocol."""
from __future__ import annotations

import asyncio
from typing import Optional

from ..models import QueueItem, QueueItemStatus, UploadOutcome, UploadSession
from ..schemas import UploadCompleteRequest, UploadSessionRequest
from ..telemetry import SyncLogger
from .cancellation import CancellationToken
from .hashing import guess_mime_type
from .interfaces import DeviceLibrary, ProgressCallback, RemoteApi


def storage_key_for(content_hash: str) -> str:
    return f"uploads/{content_hash}"


class ChunkedUploadClient:
    """Drives create-session, chunk puts and complete for one queue item.

    Errors from any step propagate unchanged; retrying is the caller's job.
    """

    def __init__(self, api: RemoteApi, library: DeviceLibrary, log: Optional[SyncLogger] = None) -> None:
        self._api = api
        self._library = library
        self._log = log or SyncLogger()

    async def upload(
        self,
        item: QueueItem,
        token: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> UploadOutcome:
        if not item.hash:
            raise ValueError(f"Queue item {item.id} has no content hash")

        session = await self.create_session(item)
        if session.already_exists:
            self._log.info("Upload", f"Photo {item.file_name} already exists on server", hash=item.hash)
            return UploadOutcome(status=QueueItemStatus.SKIPPED, session_id=session.id)

        sent = await self.send_chunks(item, session, token=token, progress=progress)

        self._log.info("Upload", f"Completing upload session {session.id}")
        completed = await self._api.complete_session(
            session.id, UploadCompleteRequest(storage_key=storage_key_for(item.hash))
        )
        self._log.info("Upload", f"Successfully uploaded {item.file_name}", bytes=sent, photo_id=completed.photo_id)
        return UploadOutcome(
            status=QueueItemStatus.UPLOADED,
            session_id=session.id,
            photo_id=completed.photo_id,
            bytes_sent=sent,
        )

    async def create_session(self, item: QueueItem) -> UploadSession:
        mime_type = item.mime_type or guess_mime_type(item.file_name)
        request = UploadSessionRequest(
            hash=item.hash,
            size_bytes=item.size_bytes,
            mime_type=mime_type,
            captured_at=item.captured_at,
            width=item.width,
            height=item.height,
            location_lat=item.location_lat,
            location_lon=item.location_lon,
        )
        self._log.info(
            "Upload",
            f"Creating upload session for {item.file_name}",
            hash=item.hash,
            size=item.size_bytes,
        )
        response = await self._api.create_session(request)
        return UploadSession(
            id=response.upload_session_id,
            hash=item.hash,
            size_bytes=item.size_bytes,
            mime_type=mime_type,
            chunk_size=response.chunk_size,
            already_exists=response.already_exists,
        )

    async def send_chunks(
        self,
        item: QueueItem,
        session: UploadSession,
        *,
        token: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Stream the content from offset 0 in server-sized chunks; returns bytes sent.

        The token is only consulted between chunks, so a chunk already on the
        wire is allowed to finish.
        """
        offset = 0
        with self._library.open_content_stream(item.local_photo_id) as stream:
            while True:
                if token is not None:
                    token.raise_if_cancelled()
                data = await asyncio.to_thread(stream.read, session.chunk_size)
                if not data:
                    break
                await self._api.upload_chunk(session.id, offset, data)
                offset += len(data)
                if progress is not None:
                    progress(offset, item.size_bytes)
        return offset
