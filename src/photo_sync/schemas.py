from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Wire model serialised with the camelCase names the photos API uses."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadSessionRequest(ApiModel):
    hash: str
    size_bytes: int = Field(ge=0)
    mime_type: str
    captured_at: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
    location_lat: Optional[float] = None
    location_lon: Optional[float] = None


class UploadSessionResponse(ApiModel):
    upload_session_id: str
    upload_url: Optional[str] = None
    chunk_size: int = Field(gt=0)
    already_exists: bool = False


class UploadCompleteRequest(ApiModel):
    storage_key: str


class UploadCompleteResponse(ApiModel):
    photo_id: str

    @classmethod
    def from_payload(cls, payload: dict) -> "UploadCompleteResponse":
        # The server reports integer photo ids.
        photo_id = payload.get("photoId", payload.get("photo_id"))
        if photo_id is None:
            raise ValueError("photoId missing from upload complete response")
        return cls(photo_id=str(photo_id))


class HealthResponse(BaseModel):
    ok: bool
    version: str
    service: str


class SyncStateResponse(BaseModel):
    status: str
    total_items: int
    completed_items: int
    failed_items: int
    pending_items: int
    progress_percentage: float
    current_item_name: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class QueueStatisticsResponse(BaseModel):
    total: int
    pending: int
    uploading: int
    completed: int
    failed: int


class PrepareResponse(BaseModel):
    success: bool
    queued_count: int
    error_message: Optional[str] = None
    state: SyncStateResponse
