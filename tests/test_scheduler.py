from __future__ import annotations

import asyncio
import json

import httpx

from storescout.core.config import Settings
from storescout.core.http import StorefrontFetcher
from storescout.core.states import HealthStatus, LifecycleStatus, PlatformStatus, QuantityStatus
from storescout.detectors.business_model import PRINT_ON_DEMAND
from storescout.jobs.discovery import discover
from storescout.jobs.scheduler import RUN_ALREADY_RUNNING, RUN_COMPLETED, RUN_FAILED, PipelineScheduler
from storescout.services.records import RepositoryUnavailableError
from storescout.services.store import InMemoryStoreRepository

LIVE_HOMEPAGE = """
<html>
  <head>
    <title>Live Goods</title>
    <link href="https://cdn.shopify.com/s/files/1/theme.css" rel="stylesheet">
    <script src="https://cdn.printify.example/app.js"></script>
  </head>
  <body><h1>Live Goods</h1></body>
</html>
"""


def _settings(**overrides) -> Settings:
    values = {"pipeline_max_concurrency": 2, "pipeline_batch_size": 50, "otel_enabled": False}
    values.update(overrides)
    return Settings(**values)


def _json(payload) -> httpx.Response:
    return httpx.Response(200, headers={"Content-Type": "application/json"}, text=json.dumps(payload))


def _storefronts(request: httpx.Request) -> httpx.Response:
    if request.url.host == "dead.test":
        return httpx.Response(503)
    if request.url.path == "/":
        return httpx.Response(200, headers={"X-ShopId": "7"}, text=LIVE_HOMEPAGE)
    if request.url.path == "/cart.js":
        return _json({"token": "t", "items": []})
    if request.url.path == "/products.json":
        return _json({"products": [{"id": 1}, {"id": 2}]})
    return httpx.Response(404)


def _scheduler(repository, handler=_storefronts, **settings_overrides) -> PipelineScheduler:
    return PipelineScheduler(
        repository,
        settings=_settings(**settings_overrides),
        fetcher_factory=lambda: StorefrontFetcher(transport=httpx.MockTransport(handler)),
    )


def _discover(repository, *urls: str) -> list[str]:
    async def run() -> list[str]:
        return [(await discover(repository, url, "test")).store_id for url in urls]

    return asyncio.run(run())


class FlakyRepository(InMemoryStoreRepository):
    def __init__(self) -> None:
        super().__init__()
        self.fail_ids: set[str] = set()

    async def update_store_fields(self, store_id, fields):
        if store_id in self.fail_ids and "platform_status" in fields:
            raise RuntimeError("write rejected")
        return await super().update_store_fields(store_id, fields)


def test_batch_runs_every_phase_and_summarizes() -> None:
    repository = FlakyRepository()
    live_id, dead_id, broken_id = _discover(repository, "live.test", "dead.test", "broken.test")
    repository.fail_ids.add(broken_id)
    scheduler = _scheduler(repository)

    result = asyncio.run(scheduler.run_pipeline_batch())

    assert result.status == RUN_COMPLETED
    assert result.processed == 3
    assert result.errors == 1
    assert result.status_breakdown == {"active": 1, "dead": 1, "pending": 1}
    assert result.reason_breakdown["verify:verified"] == 1
    assert result.reason_breakdown["health_check:healthy"] == 1
    assert result.reason_breakdown[f"classify:{PRINT_ON_DEMAND}"] == 1
    assert result.reason_breakdown["verify:strict_failed:homepage_status_503"] == 1
    assert result.reason_breakdown["error:RuntimeError"] == 1

    live = repository.stores[live_id]
    assert live.verified is True
    assert live.lifecycle_status == LifecycleStatus.ACTIVE
    assert live.health_status == HealthStatus.HEALTHY
    assert live.quantity_metric == 2
    assert live.quantity_status == QuantityStatus.CONFIRMED
    assert live.display_name == "Live Goods"
    assert live.category_tags == [PRINT_ON_DEMAND]

    dead = repository.stores[dead_id]
    assert dead.lifecycle_status == LifecycleStatus.DEAD
    assert dead.health_status is None

    broken = repository.stores[broken_id]
    assert broken.retry_count == 1
    assert broken.next_retry_at is not None

    status = scheduler.get_pipeline_status()
    assert status["is_running"] is False
    assert status["last_run"]["processed"] == 3
    assert status["aggregate_stats"]["successful_runs"] == 1


def test_second_run_is_rejected_while_first_is_in_flight() -> None:
    async def run():
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_storefront(request: httpx.Request) -> httpx.Response:
            entered.set()
            await release.wait()
            return httpx.Response(503)

        repository = InMemoryStoreRepository()
        await discover(repository, "slow.test", "test")
        scheduler = _scheduler(repository, handler=slow_storefront)

        first = asyncio.create_task(scheduler.run_pipeline_batch())
        await entered.wait()
        status_during_run = scheduler.get_pipeline_status()
        second = await scheduler.run_pipeline_batch()
        release.set()
        return status_during_run, second, await first, scheduler

    status_during_run, second, first, scheduler = asyncio.run(run())

    assert status_during_run["is_running"] is True
    assert status_during_run["current_run_started_at"] is not None
    assert second.status == RUN_ALREADY_RUNNING
    assert second.processed == 0
    assert first.status == RUN_COMPLETED
    assert first.processed == 1
    assert scheduler.stats.skipped_runs == 1
    assert scheduler.stats.total_runs == 1


def test_unavailable_repository_fails_run_and_releases_guard() -> None:
    class OfflineRepository(InMemoryStoreRepository):
        async def ping(self) -> None:
            raise RepositoryUnavailableError("database unavailable")

    scheduler = _scheduler(OfflineRepository())

    result = asyncio.run(scheduler.run_pipeline_batch())

    assert result.status == RUN_FAILED
    assert result.error == "repository_unavailable"
    assert scheduler.stats.failed_runs == 1
    assert scheduler.get_pipeline_status()["is_running"] is False
    assert scheduler.try_acquire_run()


def test_repository_outage_mid_batch_aborts_remaining_stores() -> None:
    class DroppingRepository(InMemoryStoreRepository):
        async def get_store(self, store_id):
            raise RepositoryUnavailableError("connection lost")

    repository = DroppingRepository()
    _discover(repository, "one.test", "two.test", "three.test")
    scheduler = _scheduler(repository, pipeline_max_concurrency=1)

    result = asyncio.run(scheduler.run_pipeline_batch())

    assert result.status == RUN_FAILED
    assert result.error == "repository_unavailable"
    assert result.processed == 0
    assert result.skipped == 3


def test_concurrency_is_bounded() -> None:
    peak = {"active": 0, "max": 0}

    class TrackingScheduler(PipelineScheduler):
        async def process_store(self, store, windows, fetcher):
            peak["active"] += 1
            peak["max"] = max(peak["max"], peak["active"])
            await asyncio.sleep(0.01)
            peak["active"] -= 1
            return {"store_id": store.id, "lifecycle_status": store.lifecycle_status.value, "reasons": ["not_due"]}

    repository = InMemoryStoreRepository()
    _discover(repository, *(f"store-{index}.test" for index in range(6)))
    scheduler = TrackingScheduler(
        repository,
        settings=_settings(pipeline_max_concurrency=2),
        fetcher_factory=lambda: StorefrontFetcher(transport=httpx.MockTransport(_storefronts)),
    )

    result = asyncio.run(scheduler.run_pipeline_batch())

    assert result.processed == 6
    assert peak["max"] == 2


def test_batch_limit_and_nonexistent_exclusion() -> None:
    repository = InMemoryStoreRepository()
    gone_id, *_ = _discover(repository, "gone.test", "a.test", "b.test", "c.test")
    asyncio.run(
        repository.update_store_fields(
            gone_id,
            {"platform_status": PlatformStatus.CONFIRMED, "lifecycle_status": LifecycleStatus.NONEXISTENT},
        )
    )
    scheduler = _scheduler(repository)

    limited = asyncio.run(scheduler.run_pipeline_batch(limit=2))

    assert limited.processed == 2
    assert repository.stores[gone_id].last_verification_at is None
    assert repository.stores[gone_id].lifecycle_status == LifecycleStatus.NONEXISTENT


def test_status_before_any_run() -> None:
    scheduler = _scheduler(InMemoryStoreRepository())
    status = scheduler.get_pipeline_status()

    assert status["is_running"] is False
    assert status["last_run"] is None
    assert status["aggregate_stats"]["total_runs"] == 0
