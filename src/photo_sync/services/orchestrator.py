"""Sync run lifecycle and queue draining."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Iterator, List, Optional, Sequence

from ..errors import HashComputationFailed, StorageUnavailable, SyncCancelled, SyncError
from ..models import QueueItem, QueueItemStatus, SyncState, SyncStatus, UploadOutcome, utc_now
from ..storage.queue import UploadQueueStore
from ..storage.state import SyncStateRepository
from ..telemetry import SyncLogger
from .cancellation import CancellationToken
from .hashing import HashCollector
from .interfaces import PhotoCache
from .retry import RetryPolicy
from .uploader import ChunkedUploadClient

BATCH_SIZE = 6

StateListener = Callable[[SyncState], None]

_STARTABLE = (SyncStatus.IDLE, SyncStatus.COMPLETED, SyncStatus.ERROR, SyncStatus.CANCELLED)
_ACTIVE = (SyncStatus.RUNNING, SyncStatus.PREPARING)
_INTERRUPTED = (SyncStatus.RUNNING, SyncStatus.PREPARING, SyncStatus.CANCELLING)


def _batched(items: Sequence[QueueItem], size: int) -> Iterator[Sequence[QueueItem]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SyncOrchestrator:
    """Owns the single SyncState of the process and the background drain task.

    Lifecycle calls (start, pause, resume, cancel) run on the same event loop
    as the drain. Pause and cancel signal the drain through a cancellation
    token and wait for it to stop before changing state, so a stale drain can
    never overwrite a paused or cancelled run.
    """

    def __init__(
        self,
        queue: UploadQueueStore,
        state_repository: SyncStateRepository,
        uploader: ChunkedUploadClient,
        collector: HashCollector,
        *,
        cache: Optional[PhotoCache] = None,
        log: Optional[SyncLogger] = None,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: int = BATCH_SIZE,
        state: Optional[SyncState] = None,
    ) -> None:
        self._queue = queue
        self._state_repository = state_repository
        self._uploader = uploader
        self._collector = collector
        self._cache = cache
        self._log = log or SyncLogger()
        self._retry = retry_policy or RetryPolicy()
        self._batch_size = max(1, batch_size)
        self._state = state or SyncState()
        self._listeners: List[StateListener] = []
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._current_item_id: Optional[str] = None

    # State access -----------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def can_start(self) -> bool:
        return self._state.status in _STARTABLE

    @property
    def can_pause(self) -> bool:
        return self._state.status in _ACTIVE

    @property
    def can_resume(self) -> bool:
        return self._state.status == SyncStatus.PAUSED

    @property
    def can_cancel(self) -> bool:
        return self._state.status in _ACTIVE or self._state.status == SyncStatus.PAUSED

    @property
    def is_draining(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> SyncState:
        return replace(self._state)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called with a snapshot after every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def restore(self) -> Optional[SyncState]:
        """Load the last checkpoint; an interrupted run comes back as paused."""
        saved = self._state_repository.load()
        if saved is None:
            return None

        if saved.status in _INTERRUPTED:
            saved.status = SyncStatus.PAUSED
            self._log.info("Sync", "Detected incomplete sync from previous session")

        state = self._state
        state.status = saved.status
        state.total_items = saved.total_items
        state.completed_items = saved.completed_items
        state.failed_items = saved.failed_items
        state.current_item_name = saved.current_item_name
        state.error_message = saved.error_message
        state.started_at = saved.started_at
        state.completed_at = saved.completed_at
        self._notify()
        return self.snapshot()

    # Lifecycle --------------------------------------------------------------

    async def start(self) -> bool:
        if self._state.status in _ACTIVE:
            self._log.info("Sync", "Sync already in progress")
            return False
        if not self.can_start:
            self._log.warning("Sync", f"Cannot start sync from state {self._state.status.value}")
            return False

        await self._await_previous_drain()

        state = self._state
        state.reset_counters()
        state.status = SyncStatus.PREPARING
        state.error_message = None
        state.started_at = utc_now()
        state.completed_at = None
        self._notify()

        self._log.info("Sync", "Sync started")
        self._launch(resume=False)
        return True

    async def pause(self) -> bool:
        if not self.can_pause:
            self._log.warning("Sync", "Cannot pause sync - not running")
            return False

        self._log.info("Sync", "Pausing sync")
        await self._stop_drain()

        self._state.status = SyncStatus.PAUSED
        self._clear_file_progress()
        self._state_repository.save(self._state)
        self._notify()
        self._log.info("Sync", "Sync paused")
        return True

    async def resume(self) -> bool:
        if not self.can_resume:
            self._log.warning("Sync", "Cannot resume sync - not paused")
            return False

        await self._await_previous_drain()

        self._state.status = SyncStatus.RUNNING
        self._state.error_message = None
        self._state.completed_at = None
        self._notify()

        self._log.info("Sync", "Resuming sync")
        self._launch(resume=True)
        return True

    async def cancel(self) -> bool:
        if not self.can_cancel:
            self._log.warning("Sync", "Cannot cancel sync - not running")
            return False

        self._log.info("Sync", "Cancelling sync")
        self._state.status = SyncStatus.CANCELLING
        self._notify()

        interrupted = await self._stop_drain()
        if interrupted is not None:
            self._queue.update_status(interrupted, QueueItemStatus.CANCELLED, "Cancelled by user")

        self._state.status = SyncStatus.CANCELLED
        self._state.completed_at = utc_now()
        self._clear_file_progress()
        self._state_repository.clear()
        removed = self._queue.clear_completed()
        self._notify()
        self._log.info("Sync", "Sync cancelled", cleared=removed)
        return True

    async def join(self) -> None:
        """Wait for the background drain, if any, to finish."""
        task = self._task
        if task is not None:
            await task

    # Drain ------------------------------------------------------------------

    def _launch(self, *, resume: bool) -> None:
        token = CancellationToken()
        self._token = token
        self._task = asyncio.create_task(self._drain(token, resume=resume), name="photo-sync-drain")

    async def _await_previous_drain(self) -> None:
        if self._task is not None and not self._task.done():
            await self._task
        self._task = None
        self._token = None

    async def _stop_drain(self) -> Optional[str]:
        """Signal the drain and wait for it; returns the id of an item left mid-flight."""
        if self._token is not None:
            self._token.cancel()
        if self._task is not None:
            await self._task
        self._task = None
        self._token = None

        interrupted = self._current_item_id
        self._current_item_id = None
        return interrupted

    async def _drain(self, token: CancellationToken, *, resume: bool) -> None:
        state = self._state
        try:
            token.raise_if_cancelled()
            pending = self._queue.get_pending()

            state.status = SyncStatus.RUNNING
            if resume:
                state.total_items = state.completed_items + state.failed_items + len(pending)
            else:
                state.total_items = len(pending)
            self._notify()
            self._log.info("Sync", f"Processing {len(pending)} items", batch_size=self._batch_size)

            for batch in _batched(pending, self._batch_size):
                try:
                    for item in batch:
                        token.raise_if_cancelled()
                        await self._process_item(item, token)
                except Exception:
                    # The interrupting error wins over a failed checkpoint.
                    self._try_checkpoint()
                    raise
                self._checkpoint()

            removed = self._queue.clear_completed()
            state.status = SyncStatus.COMPLETED
            state.completed_at = utc_now()
            self._log.info(
                "Sync",
                f"Sync completed: {state.completed_items} uploaded, {state.failed_items} failed",
                cleared=removed,
            )
        except SyncCancelled:
            self._log.info("Sync", "Sync drain stopped on request")
        except Exception as exc:
            state.status = SyncStatus.ERROR
            state.error_message = exc.message if isinstance(exc, SyncError) else str(exc)
            state.completed_at = utc_now()
            self._log.error("Sync", "Sync failed", exc=exc)
        finally:
            self._clear_file_progress()
            try:
                self._state_repository.save(state)
            except StorageUnavailable as exc:
                self._log.error("Sync", "Could not persist final sync state", exc=exc)
            self._notify()

    async def _process_item(self, item: QueueItem, token: CancellationToken) -> None:
        state = self._state
        state.current_item_name = item.file_name
        state.current_file_uploaded_bytes = 0
        state.current_file_total_bytes = item.size_bytes
        self._current_item_id = item.id
        self._notify()

        try:
            if await self._prepare_item(item, token):
                await self._upload_with_retry(item, token)
        except SyncCancelled:
            # Left in place so a cancel can mark the interrupted item.
            raise
        except StorageUnavailable:
            self._current_item_id = None
            raise
        except Exception as exc:
            self._log.error("Upload", f"Failed to upload {item.file_name}", exc=exc)
            self._queue.update_status(item.id, QueueItemStatus.FAILED, str(exc))
            self._record_failure()
        self._current_item_id = None

    async def _prepare_item(self, item: QueueItem, token: CancellationToken) -> bool:
        """Hash and collect metadata off the event loop; returns False when the item already failed."""
        if not item.hash:
            self._queue.update_status(item.id, QueueItemStatus.HASHING)
            try:
                await asyncio.to_thread(self._collector.ensure_hash, item, token)
            except HashComputationFailed as exc:
                self._log.warning("Upload", f"Failed to compute hash for {item.file_name}", error=exc.message)
                self._queue.update_status(item.id, QueueItemStatus.FAILED, "Hash computation failed")
                self._record_failure()
                return False

        await asyncio.to_thread(self._collector.ensure_metadata, item)
        self._queue.update_metadata(item)
        self._state.current_file_total_bytes = item.size_bytes
        return True

    async def _upload_with_retry(self, item: QueueItem, token: CancellationToken) -> None:
        policy = self._retry
        for attempt in range(policy.max_attempts):
            token.raise_if_cancelled()
            self._queue.update_status(item.id, QueueItemStatus.UPLOADING, retry_count=attempt)
            item.retry_count = attempt
            try:
                outcome = await self._uploader.upload(item, token, progress=self._on_chunk_sent)
            except (SyncCancelled, StorageUnavailable):
                raise
            except Exception as exc:
                if not policy.should_retry(attempt):
                    message = f"Failed after {policy.max_retries} retries: {exc}"
                    self._log.error("Upload", f"Failed to upload {item.file_name} after {policy.max_retries} retries", exc=exc)
                    self._queue.update_status(item.id, QueueItemStatus.FAILED, message, retry_count=attempt)
                    self._record_failure()
                    return

                delay = policy.delay_for(attempt)
                self._log.warning(
                    "Upload",
                    f"Upload attempt {attempt + 1} failed for {item.file_name}, retrying in {delay:g}s",
                    error=str(exc),
                )
                await policy.backoff(attempt, token)
                continue

            self._record_success(item, outcome)
            return

    def _record_success(self, item: QueueItem, outcome: UploadOutcome) -> None:
        if outcome.status == QueueItemStatus.UPLOADED:
            self._queue.mark_uploaded(item.id)
        else:
            self._queue.update_status(item.id, outcome.status)
        item.status = outcome.status
        self._state.completed_items += 1
        self._mark_cache_synced(item)
        self._notify()

    def _record_failure(self) -> None:
        self._state.failed_items += 1
        self._notify()

    def _mark_cache_synced(self, item: QueueItem) -> None:
        if self._cache is None:
            return
        try:
            self._cache.mark_synced(item.local_photo_id, item.hash)
        except Exception as exc:
            self._log.warning("Cache", f"Failed to update cache for {item.file_name}", error=str(exc))

    def _on_chunk_sent(self, uploaded: int, total: int) -> None:
        state = self._state
        state.total_bytes_uploaded += max(0, uploaded - state.current_file_uploaded_bytes)
        state.current_file_uploaded_bytes = uploaded
        state.current_file_total_bytes = total
        self._notify()

    def _checkpoint(self) -> None:
        self._state_repository.save(self._state)
        self._log.info(
            "Sync",
            "Checkpoint saved",
            completed=self._state.completed_items,
            failed=self._state.failed_items,
            total=self._state.total_items,
        )

    def _try_checkpoint(self) -> None:
        try:
            self._checkpoint()
        except StorageUnavailable as exc:
            self._log.error("Sync", "Could not save checkpoint", exc=exc)

    def _clear_file_progress(self) -> None:
        self._state.current_file_uploaded_bytes = 0
        self._state.current_file_total_bytes = 0

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                self._log.warning("Sync", "State listener failed", error=str(exc))
