"""Error types raised by the sync engine and its adapters."""
from typing import Optional

import httpx


class SyncError(Exception):
    """Base exception for sync engine errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class HashComputationFailed(SyncError):
    """The content hash of a photo could not be computed."""


class MetadataUnavailable(SyncError):
    """Optional photo metadata could not be read."""


class UploadProtocolError(SyncError):
    """A create-session, chunk or complete call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StorageUnavailable(SyncError):
    """The backing store of the queue or the run state cannot be used."""


class SyncCancelled(Exception):
    """Raised inside the drain when pause or cancel was requested."""


def raise_for_api_response(response: httpx.Response) -> None:
    """
    Translate an error response from the photos API.

    Args:
        response: The httpx response to check

    Raises:
        UploadProtocolError: For any non-success status code
    """
    if not response.is_error:
        return

    message = f"HTTP {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        if error:
            message = f"{message}: {error}"

    raise UploadProtocolError(message, status_code=response.status_code)
