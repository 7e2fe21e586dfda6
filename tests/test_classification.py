from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx

from storescout.core.http import StorefrontFetcher
from storescout.core.results import Confirmed, RateLimited, Unknown
from storescout.core.states import HealthStatus, LifecycleStatus, PlatformStatus
from storescout.detectors.business_model import DROPSHIPPING, PRINT_ON_DEMAND, assess_business_model
from storescout.jobs.classification import ADVERTISING_TAG, UNCLASSIFIED, classify, resolve_category_tags
from storescout.services.store import InMemoryStoreRepository

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)
POD_STOREFRONT = """
<html lang="en">
  <head>
    <title>Home | Inkwell Tees</title>
    <script>Shopify.theme = {"name":"Dawn","id":77};</script>
    <script>Shopify.country = "US";</script>
    <script src="https://cdn.printify.example/app.js"></script>
    <script>fbq('track', 'PageView');</script>
  </head>
  <body><h1>Custom printed tees</h1></body>
</html>
"""


def _seed(repository: InMemoryStoreRepository, **fields) -> str:
    values = {
        "platform_status": PlatformStatus.CONFIRMED,
        "lifecycle_status": LifecycleStatus.ACTIVE,
        "health_status": HealthStatus.HEALTHY,
        "verified": True,
    }
    values.update(fields)

    async def run() -> str:
        store_id, _ = await repository.create_store_if_absent(
            canonical_url="https://inkwell.test",
            display_name="inkwell.test",
            discovery_source="test",
            discovery_metadata={},
            observed_at=NOW,
        )
        await repository.update_store_fields(store_id, values)
        return store_id

    return asyncio.run(run())


def _classify(repository: InMemoryStoreRepository, store_id: str, response: httpx.Response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    async def run():
        async with StorefrontFetcher(transport=httpx.MockTransport(handler)) as fetcher:
            return await classify(repository, store_id, fetcher=fetcher, page_timeout_seconds=5.0, now=NOW)

    return asyncio.run(run())


def test_classify_writes_detected_attributes_and_tags() -> None:
    repository = InMemoryStoreRepository()
    store_id = _seed(repository)

    result = _classify(repository, store_id, httpx.Response(200, text=POD_STOREFRONT))

    store = repository.stores[store_id]
    assert result.tags_written is True
    assert store.display_name == "Inkwell Tees"
    assert store.locale == "US"
    assert store.visual_theme == "Dawn"
    assert store.advertising is True
    assert store.category_tags == [PRINT_ON_DEMAND, ADVERTISING_TAG]
    assert store.primary_category == PRINT_ON_DEMAND
    assert store.category_confidence == 1.0
    assert store.category_scores[PRINT_ON_DEMAND] == 1.0
    assert store.last_classification_at == NOW


def test_locked_tags_are_left_alone() -> None:
    repository = InMemoryStoreRepository()
    store_id = _seed(repository, category_tags=["Curated"], tags_locked=True)

    result = _classify(repository, store_id, httpx.Response(200, text=POD_STOREFRONT))

    store = repository.stores[store_id]
    assert result.tags_written is False
    assert store.category_tags == ["Curated"]
    assert store.primary_category is None
    assert store.display_name == "Inkwell Tees"


def test_unavailable_page_keeps_attributes_and_defers() -> None:
    repository = InMemoryStoreRepository()
    store_id = _seed(repository, locale="GB", visual_theme="Prestige")

    result = _classify(repository, store_id, httpx.Response(500))

    store = repository.stores[store_id]
    assert result.display_name == Unknown(reason="status_500")
    assert result.page_error == "status_500"
    assert store.display_name == "inkwell.test"
    assert store.locale == "GB"
    assert store.visual_theme == "Prestige"
    assert store.category_tags == [UNCLASSIFIED]
    assert store.last_classification_at is None
    assert store.retry_count == 1
    assert store.next_retry_at == NOW + timedelta(hours=1)


def test_rate_limited_page_keeps_confirmed_tags_and_schedules_retry() -> None:
    repository = InMemoryStoreRepository()
    classified_at = NOW - timedelta(days=2)
    store_id = _seed(
        repository,
        category_tags=[PRINT_ON_DEMAND],
        primary_category=PRINT_ON_DEMAND,
        category_confidence=0.9,
        last_classification_at=classified_at,
    )

    result = _classify(repository, store_id, httpx.Response(429))

    store = repository.stores[store_id]
    assert result.category == RateLimited()
    assert result.tags_written is False
    assert result.category_tags == [PRINT_ON_DEMAND]
    assert store.category_tags == [PRINT_ON_DEMAND]
    assert store.primary_category == PRINT_ON_DEMAND
    assert store.category_confidence == 0.9
    assert store.last_classification_at == classified_at
    assert store.next_retry_at == NOW + timedelta(hours=1)


def test_repeated_page_failures_back_off() -> None:
    repository = InMemoryStoreRepository()
    store_id = _seed(repository, retry_count=2)

    _classify(repository, store_id, httpx.Response(503))

    store = repository.stores[store_id]
    assert store.retry_count == 3
    assert store.next_retry_at == NOW + timedelta(hours=4)


def test_successful_classification_clears_due_retry() -> None:
    repository = InMemoryStoreRepository()
    store_id = _seed(repository, category_tags=[DROPSHIPPING], retry_count=2, next_retry_at=NOW - timedelta(minutes=1))

    _classify(repository, store_id, httpx.Response(200, text=POD_STOREFRONT))

    store = repository.stores[store_id]
    assert store.category_tags == [PRINT_ON_DEMAND, ADVERTISING_TAG]
    assert store.retry_count == 0
    assert store.next_retry_at is None
    assert store.last_classification_at == NOW


def test_weak_signals_fall_back_to_catch_all_category() -> None:
    weak = assess_business_model("<p>Ships from warehouse</p>")
    tags, primary, confidence = resolve_category_tags(Confirmed(weak), Confirmed(False))

    assert tags == [DROPSHIPPING]
    assert primary is None
    assert confidence == 0.2


def test_no_signals_is_unclassified_but_keeps_ad_tag() -> None:
    empty = assess_business_model("<p>Hello</p>")
    tags, primary, confidence = resolve_category_tags(Confirmed(empty), Confirmed(True))

    assert tags == [UNCLASSIFIED, ADVERTISING_TAG]
    assert primary is None
    assert confidence is None


def test_unknown_category_is_unclassified() -> None:
    tags, primary, _ = resolve_category_tags(Unknown(reason="timeout"), Unknown(reason="timeout"))
    assert tags == [UNCLASSIFIED]
    assert primary is None
