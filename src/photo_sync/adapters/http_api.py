"""httpx client for the photos server upload endpoints."""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import Settings
from ..errors import UploadProtocolError, raise_for_api_response
from ..schemas import (
    UploadCompleteRequest,
    UploadCompleteResponse,
    UploadSessionRequest,
    UploadSessionResponse,
)

logger = logging.getLogger("photo_sync.adapters.http_api")

SESSIONS_PATH = "/api/upload-sessions"


class HttpPhotosApi:
    """RemoteApi implementation speaking the chunked upload protocol over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        timeout: Optional[float] = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "HttpPhotosApi":
        return cls(settings.API_BASE_URL, settings.API_TOKEN, timeout=settings.HTTP_TIMEOUT_SECONDS, **kwargs)

    async def create_session(self, request: UploadSessionRequest) -> UploadSessionResponse:
        """
        Open an upload session for one photo.

        Args:
            request: Content hash and metadata of the photo

        Returns:
            Session id, chunk size, and whether the server already has the content

        Raises:
            UploadProtocolError: For transport failures and error responses
        """
        payload = request.model_dump(mode="json", by_alias=True)
        response = await self._send("POST", SESSIONS_PATH, json=payload)
        try:
            return UploadSessionResponse.model_validate(response.json())
        except ValueError as exc:
            raise UploadProtocolError(f"Invalid upload session response: {exc}") from exc

    async def upload_chunk(self, session_id: str, offset: int, data: bytes) -> None:
        await self._send(
            "PUT",
            f"{SESSIONS_PATH}/{session_id}/chunks",
            params={"offset": offset},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        logger.debug({"event": "upload.chunk_sent", "session_id": session_id, "offset": offset, "size": len(data)})

    async def complete_session(self, session_id: str, request: UploadCompleteRequest) -> UploadCompleteResponse:
        payload = request.model_dump(mode="json", by_alias=True)
        response = await self._send("POST", f"{SESSIONS_PATH}/{session_id}/complete", json=payload)
        try:
            return UploadCompleteResponse.from_payload(response.json())
        except ValueError as exc:
            raise UploadProtocolError(f"Invalid upload complete response: {exc}") from exc

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpPhotosApi":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise UploadProtocolError(f"{method} {path} failed: {exc}") from exc
        raise_for_api_response(response)
        return response
