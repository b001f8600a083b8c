import time

import pytest
from fastapi.testclient import TestClient

from photo_sync.app import build_services, create_app
from photo_sync.config import Settings
from photo_sync.models import QueueItem, QueueItemStatus
from photo_sync.services import RetryPolicy

from conftest import FakeLibrary, FakeRemoteApi, RecordingSleeper


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(DB_PATH=tmp_path / "api.db", LIBRARY_ROOT=tmp_path / "photos", VERSION="9.9.9")


@pytest.fixture
def control_library() -> FakeLibrary:
    library = FakeLibrary()
    for index in range(3):
        library.add(f"p{index}", f"content-{index}".encode())
    return library


@pytest.fixture
def services(settings, control_library):
    services = build_services(
        settings,
        api=FakeRemoteApi(),
        library=control_library,
        retry_policy=RetryPolicy(sleep=RecordingSleeper()),
    )
    yield services
    services.database.dispose()


@pytest.fixture
def client(settings, services):
    with TestClient(create_app(services, settings)) as test_client:
        yield test_client


def _wait_for_status(client: TestClient, expected: str) -> dict:
    for _ in range(200):
        body = client.get("/api/sync/status").json()
        if body["status"] == expected:
            return body
        time.sleep(0.01)
    raise AssertionError(f"Sync did not reach {expected}")


def test_health_reports_version(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "version": "9.9.9", "service": "photo-sync"}


def test_status_starts_idle(client: TestClient) -> None:
    body = client.get("/api/sync/status").json()

    assert body["status"] == "idle"
    assert body["total_items"] == 0
    assert body["progress_percentage"] == 0.0


def test_start_queues_photos_and_runs_to_completion(client: TestClient) -> None:
    response = client.post("/api/sync/start")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["queued_count"] == 3

    final = _wait_for_status(client, "completed")
    assert final["completed_items"] == 3
    assert final["pending_items"] == 0

    stats = client.get("/api/sync/queue").json()
    assert stats == {"total": 0, "pending": 0, "uploading": 0, "completed": 0, "failed": 0}


def test_invalid_transitions_return_current_status(client: TestClient) -> None:
    for action in ("pause", "resume", "cancel"):
        response = client.post(f"/api/sync/{action}")
        assert response.status_code == 200
        assert response.json()["status"] == "idle"


def test_second_start_after_completion_queues_nothing(client: TestClient) -> None:
    first = client.post("/api/sync/start").json()
    _wait_for_status(client, "completed")

    second = client.post("/api/sync/start").json()

    assert first["queued_count"] == 3
    assert second["success"] is True
    assert second["queued_count"] == 0
    assert second["state"]["status"] == "completed"


def test_clear_queue_drops_finished_rows(client: TestClient, services) -> None:
    photos = [QueueItem(local_photo_id=f"p{index}", file_name=f"p{index}.jpg") for index in range(3)]
    services.queue.enqueue(photos)
    services.queue.mark_uploaded(photos[0].id)
    services.queue.update_status(photos[1].id, QueueItemStatus.FAILED, "HTTP 500")

    response = client.post("/api/sync/queue/clear")

    assert response.status_code == 200
    assert response.json() == {"total": 1, "pending": 1, "uploading": 0, "completed": 0, "failed": 0}
    assert services.queue.get(photos[2].id) is not None
