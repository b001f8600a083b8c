import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request

from .adapters.filesystem import FileSystemPhotoLibrary
from .adapters.http_api import HttpPhotosApi
from .config import Settings, settings as default_settings
from .models import SyncState
from .schemas import HealthResponse, PrepareResponse, QueueStatisticsResponse, SyncStateResponse
from .services import (
    ChunkedUploadClient,
    HashCollector,
    RetryPolicy,
    SyncOrchestrator,
    SyncPreparation,
)
from .services.interfaces import DeviceLibrary, RemoteApi
from .storage import Database, SqlPhotoCache, SyncStateRepository, UploadQueueStore
from .telemetry import SyncLogger, setup_logging, shutdown_logging

logger = logging.getLogger("photo_sync")


@dataclass
class SyncServices:
    """Everything one sync engine instance is made of, wired together."""

    database: Database
    queue: UploadQueueStore
    state_repository: SyncStateRepository
    cache: SqlPhotoCache
    orchestrator: SyncOrchestrator
    preparation: SyncPreparation
    api: Optional[RemoteApi] = None

    async def aclose(self) -> None:
        if self.orchestrator.can_pause:
            await self.orchestrator.pause()
        close = getattr(self.api, "aclose", None)
        if close is not None:
            await close()
        self.database.dispose()


def build_services(
    settings: Settings,
    *,
    database: Optional[Database] = None,
    api: Optional[RemoteApi] = None,
    library: Optional[DeviceLibrary] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> SyncServices:
    database = database or Database.open(settings.DB_PATH)
    api = api or HttpPhotosApi.from_settings(settings)
    library = library or FileSystemPhotoLibrary(settings.LIBRARY_ROOT)
    log = SyncLogger()

    queue = UploadQueueStore(database)
    state_repository = SyncStateRepository(database)
    cache = SqlPhotoCache(database)
    orchestrator = SyncOrchestrator(
        queue,
        state_repository,
        ChunkedUploadClient(api, library, log),
        HashCollector(library, log),
        cache=cache,
        log=log,
        retry_policy=retry_policy
        or RetryPolicy(max_retries=settings.MAX_RETRIES, backoff_base=settings.BACKOFF_BASE_SECONDS),
        batch_size=settings.BATCH_SIZE,
    )
    preparation = SyncPreparation(
        library,
        cache,
        queue,
        orchestrator,
        log=log,
        max_photos=settings.MAX_PHOTOS_TO_SYNC,
    )
    return SyncServices(
        database=database,
        queue=queue,
        state_repository=state_repository,
        cache=cache,
        orchestrator=orchestrator,
        preparation=preparation,
        api=api,
    )


def state_response(state: SyncState) -> SyncStateResponse:
    return SyncStateResponse(
        status=state.status.value,
        total_items=state.total_items,
        completed_items=state.completed_items,
        failed_items=state.failed_items,
        pending_items=state.pending_items,
        progress_percentage=state.progress_percentage,
        current_item_name=state.current_item_name,
        error_message=state.error_message,
        started_at=state.started_at,
        completed_at=state.completed_at,
    )


def statistics_response(queue: UploadQueueStore) -> QueueStatisticsResponse:
    stats = queue.statistics()
    return QueueStatisticsResponse(
        total=stats.total,
        pending=stats.pending,
        uploading=stats.uploading,
        completed=stats.completed,
        failed=stats.failed,
    )


def create_app(services: Optional[SyncServices] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the control API; without injected services they are wired from settings on startup."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = services is None
        if owned:
            setup_logging(settings)
        app.state.services = services or build_services(settings)
        logger.info(
            {
                "event": "boot",
                "service": settings.APP_NAME,
                "version": settings.VERSION,
                "env": settings.ENV,
            }
        )
        app.state.services.orchestrator.restore()
        try:
            yield
        finally:
            if owned:
                await app.state.services.aclose()
                shutdown_logging()

    app = FastAPI(title="Photo Sync", lifespan=lifespan)

    def engine(request: Request) -> SyncServices:
        return request.app.state.services

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        logger.debug({"event": "health.check"})
        return HealthResponse(ok=True, version=settings.VERSION, service=settings.APP_NAME)

    @app.get("/api/sync/status", response_model=SyncStateResponse)
    def sync_status(request: Request) -> SyncStateResponse:
        return state_response(engine(request).orchestrator.snapshot())

    @app.get("/api/sync/queue", response_model=QueueStatisticsResponse)
    def queue_statistics(request: Request) -> QueueStatisticsResponse:
        return statistics_response(engine(request).queue)

    @app.post("/api/sync/queue/clear", response_model=QueueStatisticsResponse)
    def clear_queue(request: Request) -> QueueStatisticsResponse:
        queue = engine(request).queue
        removed = queue.clear_completed()
        logger.info({"event": "queue.cleared_by_user", "removed": removed})
        return statistics_response(queue)

    @app.post("/api/sync/start", response_model=PrepareResponse)
    async def start_sync(request: Request) -> PrepareResponse:
        orchestrator = engine(request).orchestrator
        if not orchestrator.can_start:
            snapshot = orchestrator.snapshot()
            return PrepareResponse(
                success=False,
                queued_count=0,
                error_message=f"Cannot start sync from state {snapshot.status.value}",
                state=state_response(snapshot),
            )

        result = await engine(request).preparation.prepare_and_start()
        return PrepareResponse(
            success=result.success,
            queued_count=result.queued_count,
            error_message=result.error_message,
            state=state_response(orchestrator.snapshot()),
        )

    @app.post("/api/sync/pause", response_model=SyncStateResponse)
    async def pause_sync(request: Request) -> SyncStateResponse:
        orchestrator = engine(request).orchestrator
        await orchestrator.pause()
        return state_response(orchestrator.snapshot())

    @app.post("/api/sync/resume", response_model=SyncStateResponse)
    async def resume_sync(request: Request) -> SyncStateResponse:
        orchestrator = engine(request).orchestrator
        await orchestrator.resume()
        return state_response(orchestrator.snapshot())

    @app.post("/api/sync/cancel", response_model=SyncStateResponse)
    async def cancel_sync(request: Request) -> SyncStateResponse:
        orchestrator = engine(request).orchestrator
        await orchestrator.cancel()
        return state_response(orchestrator.snapshot())

    return app
