import pytest

from photo_sync.models import CachedPhoto, SyncStatus
from photo_sync.services import SyncPreparation

from conftest import sha256_hex

pytestmark = pytest.mark.asyncio


@pytest.fixture
def preparation(library, cache, queue, orchestrator):
    return SyncPreparation(library, cache, queue, orchestrator)


async def test_new_photos_are_queued_and_uploaded(preparation, orchestrator, library, queue, api) -> None:
    library.add("a", b"alpha")
    library.add("b", b"bravo", name="b.png")

    result = await preparation.prepare_and_start()
    await orchestrator.join()

    assert result.success
    assert result.queued_count == 2
    assert orchestrator.snapshot().status == SyncStatus.COMPLETED
    assert sorted(api.completed_hashes()) == sorted([sha256_hex(b"alpha"), sha256_hex(b"bravo")])
    assert queue.statistics().total == 0

    request = api.session_requests[0]
    assert request.size_bytes == 5
    assert (request.width, request.height) == (640, 480)
    assert request.captured_at is not None


async def test_synced_photos_and_hashes_are_left_out(preparation, library, cache, queue, orchestrator) -> None:
    library.add("synced", b"one")
    library.add("same-content", b"two", known_hash="h-two")
    library.add("fresh", b"three")
    cache.save_photos(
        [
            CachedPhoto(id="synced", hash="h-one", is_synced=True),
            CachedPhoto(id="elsewhere", hash="h-two", is_synced=True),
        ]
    )

    items = preparation.collect_items()

    assert [item.local_photo_id for item in items] == ["fresh"]


async def test_second_start_finds_nothing_after_a_full_run(preparation, orchestrator, library, cache, api) -> None:
    """
    Scenario: uploaded photos are remembered between runs
    Given two device photos the cache has never seen
    When a sync runs to completion and is started again
    Then the second start queues nothing and every photo is cached as synced
    """
    library.add("a", b"alpha")
    library.add("b", b"bravo")

    first = await preparation.prepare_and_start()
    await orchestrator.join()
    second = await preparation.prepare_and_start()

    assert (first.queued_count, second.queued_count) == (2, 0)
    assert len(api.completed) == 2
    cached = {photo.id: photo for photo in cache.get_cached_photos()}
    assert set(cached) == {"a", "b"}
    assert all(photo.is_synced for photo in cached.values())
    assert cached["a"].hash == sha256_hex(b"alpha")


async def test_photo_flagged_synced_but_unknown_to_cache_is_queued(preparation, library) -> None:
    library.add("flagged", b"one").is_synced = True

    items = preparation.collect_items()

    assert [item.local_photo_id for item in items] == ["flagged"]


async def test_photos_already_waiting_in_queue_are_not_queued_again(preparation, library, queue) -> None:
    library.add("a", b"alpha")
    queue.enqueue(preparation.collect_items())
    library.add("b", b"bravo")

    items = preparation.collect_items()

    assert [item.local_photo_id for item in items] == ["b"]
    assert queue.statistics().pending == 1


async def test_nothing_to_sync_does_not_start(preparation, orchestrator, library, cache) -> None:
    library.add("synced", b"one")
    cache.save_photos([CachedPhoto(id="synced", is_synced=True)])

    result = await preparation.prepare_and_start()

    assert result.success
    assert result.queued_count == 0
    assert orchestrator.snapshot().status == SyncStatus.IDLE


async def test_metadata_failure_falls_back_to_extension_mime(preparation, library) -> None:
    library.add("clip", b"video", name="clip.mov")
    library.metadata_errors.add("clip")

    [item] = preparation.collect_items()

    assert item.mime_type == "video/quicktime"
    assert item.size_bytes == 0


async def test_respects_photo_limit(library, cache, queue, orchestrator) -> None:
    for index in range(5):
        library.add(f"p{index}", f"content-{index}".encode())

    items = SyncPreparation(library, cache, queue, orchestrator, max_photos=3).collect_items()

    assert len(items) == 3


async def test_unexpected_error_is_returned_not_raised(mocker, preparation, library) -> None:
    mocker.patch.object(library, "get_recent_photos", side_effect=RuntimeError("library offline"))

    result = await preparation.prepare_and_start()

    assert not result.success
    assert result.queued_count == 0
    assert result.error_message == "library offline"
