from __future__ import annotations

import logging
from typing import Any

import pytest
from fastapi.testclient import TestClient

from storescout.core.config import get_settings
from storescout.core.states import LifecycleStatus
from storescout.jobs.scheduler import RUN_ALREADY_RUNNING, RUN_COMPLETED, PipelineBatchResult, get_scheduler
from storescout.main import app
from storescout.services.records import RepositoryUnavailableError
from storescout.services.repository import get_repository
from storescout.services.store import InMemoryStoreRepository


class FakeScheduler:
    def __init__(self, status: str = RUN_COMPLETED) -> None:
        self.status = status
        self.limits: list[int | None] = []

    async def run_pipeline_batch(self, limit: int | None = None) -> PipelineBatchResult:
        self.limits.append(limit)
        if self.status == RUN_ALREADY_RUNNING:
            return PipelineBatchResult(status=RUN_ALREADY_RUNNING)
        return PipelineBatchResult(status=self.status, processed=2, status_breakdown={"active": 2})

    def get_pipeline_status(self) -> dict[str, Any]:
        return {
            "is_running": False,
            "current_run_started_at": None,
            "last_run_at": None,
            "last_run": None,
            "aggregate_stats": {
                "total_runs": 0,
                "successful_runs": 0,
                "failed_runs": 0,
                "skipped_runs": 0,
                "total_processed": 0,
                "total_errors": 0,
            },
        }


@pytest.fixture
def repository() -> InMemoryStoreRepository:
    return InMemoryStoreRepository()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def client(repository: InMemoryStoreRepository, scheduler: FakeScheduler) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_reports_unavailable_database(client: TestClient) -> None:
    class OfflineRepository(InMemoryStoreRepository):
        async def ping(self) -> None:
            raise RepositoryUnavailableError("database unavailable")

    app.dependency_overrides[get_repository] = lambda: OfflineRepository()
    response = client.get("/readyz")
    assert response.status_code == 503


def test_discovery_is_created_once(client: TestClient) -> None:
    first = client.post("/discoveries", json={"url": "EXAMPLE.test/", "source": "feed", "metadata": {"rank": 1}})
    second = client.post("/discoveries", json={"url": "https://www.example.test/shop", "source": "search"})

    assert first.status_code == 200
    assert first.json()["created"] is True
    assert first.json()["canonical_url"] == "https://example.test"
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["reason"] == "already_exists"
    assert second.json()["store_id"] == first.json()["store_id"]


def test_invalid_discovery_url_is_rejected(client: TestClient, repository: InMemoryStoreRepository) -> None:
    response = client.post("/discoveries", json={"url": "not a url", "source": "feed"})

    assert response.status_code == 422
    assert response.json()["detail"] == "invalid_url"
    assert repository.stores == {}


def test_discovery_batch_counts(client: TestClient) -> None:
    response = client.post(
        "/discoveries/batch",
        json={
            "source": "feed",
            "candidates": [
                {"url": "one.test"},
                {"url": "https://one.test/products/a"},
                {"url": "two.test", "source": "search"},
                {"url": "::::"},
            ],
        },
    )

    assert response.status_code == 200
    assert response.json() == {"created": 2, "duplicates": 1, "invalid": 1, "total": 4}


def test_get_and_list_stores(client: TestClient) -> None:
    store_id = client.post("/discoveries", json={"url": "example.test", "source": "feed"}).json()["store_id"]

    response = client.get(f"/stores/{store_id}")
    assert response.status_code == 200
    payload = response.json()
    assert payload["canonical_url"] == "https://example.test"
    assert payload["lifecycle_status"] == "pending"
    assert payload["quantity_metric"] is None
    assert "category_scores" not in payload

    listed = client.get("/stores", params={"lifecycle_status": "pending"})
    assert [store["id"] for store in listed.json()] == [store_id]
    assert client.get("/stores/unknown-id").status_code == 404


def test_lifecycle_override_blocks_store(client: TestClient, repository: InMemoryStoreRepository) -> None:
    store_id = client.post("/discoveries", json={"url": "example.test", "source": "feed"}).json()["store_id"]

    response = client.patch(f"/stores/{store_id}/lifecycle", json={"status": "blocked", "reason": "spam"})

    assert response.status_code == 200
    assert response.json()["lifecycle_status"] == "blocked"
    assert response.json()["next_retry_at"] is None
    assert repository.stores[store_id].verified is False


def test_lifecycle_override_cannot_revive_nonexistent_store(
    client: TestClient,
    repository: InMemoryStoreRepository,
) -> None:
    store_id = client.post("/discoveries", json={"url": "example.test", "source": "feed"}).json()["store_id"]
    repository.stores[store_id].lifecycle_status = LifecycleStatus.NONEXISTENT

    response = client.patch(f"/stores/{store_id}/lifecycle", json={"status": "pending"})

    assert response.status_code == 409
    assert client.patch(f"/stores/{store_id}/lifecycle", json={"status": "active"}).status_code == 422


def test_tags_update_locks_tags(client: TestClient) -> None:
    store_id = client.post("/discoveries", json={"url": "example.test", "source": "feed"}).json()["store_id"]

    response = client.patch(f"/stores/{store_id}/tags", json={"tags": [" Curated ", "Gifts"]})

    assert response.status_code == 200
    assert response.json()["category_tags"] == ["Curated", "Gifts"]
    assert response.json()["tags_locked"] is True
    assert client.patch(f"/stores/{store_id}/tags", json={"tags": ["  "]}).status_code == 422


def test_pipeline_run_returns_summary(client: TestClient, scheduler: FakeScheduler) -> None:
    response = client.post("/pipeline/runs", json={"limit": 25})

    assert response.status_code == 200
    assert response.json()["status"] == RUN_COMPLETED
    assert response.json()["processed"] == 2
    assert scheduler.limits == [25]


def test_pipeline_run_conflicts_when_already_running(client: TestClient, scheduler: FakeScheduler) -> None:
    scheduler.status = RUN_ALREADY_RUNNING

    response = client.post("/pipeline/runs")

    assert response.status_code == 409


def test_pipeline_status_includes_lifecycle_counts(client: TestClient) -> None:
    client.post("/discoveries", json={"url": "one.test", "source": "feed"})
    client.post("/discoveries", json={"url": "two.test", "source": "feed"})

    response = client.get("/pipeline/status")

    assert response.status_code == 200
    assert response.json()["is_running"] is False
    assert response.json()["lifecycle_counts"] == {"pending": 2}


def test_request_log_names_route_and_store(client: TestClient, caplog) -> None:
    store_id = client.post("/discoveries", json={"url": "example.test", "source": "feed"}).json()["store_id"]
    caplog.set_level(logging.INFO, logger="storescout.main")

    client.get(f"/stores/{store_id}")

    messages = [record.getMessage() for record in caplog.records if record.name == "storescout.main"]
    assert any("route=/stores/{store_id}" in message and f"store_id={store_id}" in message for message in messages)


def test_lifespan_clears_cached_dependencies() -> None:
    get_repository()
    get_scheduler()

    with TestClient(app) as lifespan_client:
        assert lifespan_client.get("/healthz").status_code == 200

    assert get_repository.cache_info().currsize == 0
    assert get_scheduler.cache_info().currsize == 0
