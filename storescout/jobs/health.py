from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable

from storescout.core.http import FetchError, FetchResponse, StorefrontFetcher
from storescout.core.results import Confirmed, DetectionResult, RateLimited, Unknown, from_exception
from storescout.core.states import (
    HealthStatus,
    LifecycleStatus,
    QuantityStatus,
    resolve_health_status,
    transition_lifecycle,
)
from storescout.jobs.retry import earliest, schedule_retry

logger = logging.getLogger(__name__)

PASSWORD_MARKERS = (
    "password is required",
    "enter store password",
    "password required",
    "this store is password protected",
    "storefront password",
)
NONEXISTENT_MARKERS = ("this store does not exist",)
SOFT_INACTIVE_MARKERS = (
    "store is currently unavailable",
    "store unavailable",
    "check out shopify editions",
    "open a new shopify store",
)

ACTIVITY_ACTIVE = "active"
ACTIVITY_NONEXISTENT = "nonexistent"
ACTIVITY_POSSIBLY_INACTIVE = "possibly_inactive"
ACTIVITY_UNABLE_TO_CHECK = "unable_to_check"


@dataclass(slots=True)
class HealthCheckResult:
    store_id: str
    health_status: HealthStatus
    lifecycle_status: LifecycleStatus
    password_protected: bool
    activity: str
    quantity: DetectionResult
    reasons: list[str] = field(default_factory=list)


async def health_check(
    repository: Any,
    store_id: str,
    *,
    fetcher: StorefrontFetcher,
    retry_base_seconds: int = 3600,
    retry_max_seconds: int = 7 * 24 * 3600,
    quantity_page_size: int = 250,
    quantity_max_pages: int = 20,
    now: datetime | None = None,
) -> HealthCheckResult:
    """Run password, activity and quantity probes and persist a health status.

    Every run ends in a status write, including runs where every probe fails.
    """
    store = await repository.get_store(store_id)
    base_url = store.canonical_url.rstrip("/")
    homepage = asyncio.ensure_future(fetcher.get(base_url))
    try:
        password_outcome, activity_outcome, quantity_outcome = await asyncio.gather(
            _probe_password_wall(homepage),
            _probe_activity(homepage),
            count_products(fetcher, base_url, page_size=quantity_page_size, max_pages=quantity_max_pages),
            return_exceptions=True,
        )
    finally:
        if not homepage.done():
            homepage.cancel()

    password_protected = password_outcome is True
    activity = activity_outcome if isinstance(activity_outcome, str) else ACTIVITY_UNABLE_TO_CHECK
    quantity: DetectionResult
    if isinstance(quantity_outcome, BaseException):
        quantity = from_exception(quantity_outcome)
    else:
        quantity = quantity_outcome

    health_status, event = resolve_health_status(
        password_protected=password_protected,
        nonexistent=activity == ACTIVITY_NONEXISTENT,
        prior_inactive_platform=store.lifecycle_status == LifecycleStatus.INACTIVE_PLATFORM,
        quantity_rate_limited=isinstance(quantity, RateLimited),
        possibly_inactive=activity == ACTIVITY_POSSIBLY_INACTIVE,
    )
    lifecycle = transition_lifecycle(store.lifecycle_status, event)
    current = now or datetime.now(timezone.utc)

    fields: dict[str, Any] = {
        "health_status": health_status,
        "lifecycle_status": lifecycle,
        "password_protected": password_protected,
        "last_health_check_at": current,
    }
    fields.update(_quantity_fields(quantity))

    reasons = [f"activity:{activity}", f"quantity:{_quantity_reason(quantity)}"]
    pending_retry = store.next_retry_at if store.next_retry_at and store.next_retry_at > current else None
    if lifecycle == LifecycleStatus.NONEXISTENT:
        fields["next_retry_at"] = None
        fields["verified"] = False
        reasons.append("terminal_nonexistent")
    elif _needs_retry(health_status, activity, quantity):
        retry_count = store.retry_count + 1
        fields["retry_count"] = retry_count
        fields["next_retry_at"] = earliest(
            pending_retry,
            schedule_retry(
                now=current,
                retry_count=retry_count,
                base_seconds=retry_base_seconds,
                max_seconds=retry_max_seconds,
            ),
        )
        reasons.append("retry_scheduled")
    else:
        fields["retry_count"] = 0
        fields["next_retry_at"] = pending_retry

    updated = await repository.update_store_fields(store_id, fields)
    logger.info(
        "health check applied store_id=%s health=%s lifecycle=%s quantity=%s reasons=%s",
        store_id,
        health_status.value,
        updated.lifecycle_status.value,
        updated.quantity_status.value,
        ",".join(reasons),
    )
    return HealthCheckResult(
        store_id=store_id,
        health_status=health_status,
        lifecycle_status=updated.lifecycle_status,
        password_protected=password_protected,
        activity=activity,
        quantity=quantity,
        reasons=reasons,
    )


async def count_products(
    fetcher: StorefrontFetcher,
    base_url: str,
    *,
    page_size: int = 250,
    max_pages: int = 20,
) -> DetectionResult:
    """Count catalog items from the paginated products endpoint.

    A count of zero is a confirmed value. Any failure yields ``Unknown`` or
    ``RateLimited``, never a number.
    """
    total = 0
    for page in range(1, max(1, max_pages) + 1):
        try:
            response = await fetcher.get(
                f"{base_url}/products.json?limit={page_size}&page={page}",
                headers={"Accept": "application/json"},
                allow_fallback=False,
            )
        except FetchError as exc:
            return Unknown(reason=exc.reason)

        if response.status_code == 429:
            return RateLimited(retry_after_seconds=_retry_after(response))
        if response.status_code != 200:
            return Unknown(reason=f"status_{response.status_code}")
        try:
            payload = response.json()
        except ValueError:
            return Unknown(reason="invalid_json")
        products = payload.get("products") if isinstance(payload, dict) else None
        if not isinstance(products, list):
            return Unknown(reason="missing_products")

        total += len(products)
        if len(products) < page_size:
            return Confirmed(total)

    logger.info("product count stopped at page cap url=%s pages=%s count=%s", base_url, max_pages, total)
    return Confirmed(total)


async def _probe_password_wall(homepage: Awaitable[FetchResponse]) -> bool:
    response = await homepage
    if response.status_code == 401:
        return True
    if response.url.rstrip("/").endswith("/password"):
        return True
    body = response.text.lower()
    return any(marker in body for marker in PASSWORD_MARKERS)


async def _probe_activity(homepage: Awaitable[FetchResponse]) -> str:
    try:
        response = await homepage
    except FetchError:
        return ACTIVITY_UNABLE_TO_CHECK
    body = response.text.lower()
    if any(marker in body for marker in NONEXISTENT_MARKERS):
        return ACTIVITY_NONEXISTENT
    if response.status_code >= 500 or any(marker in body for marker in SOFT_INACTIVE_MARKERS):
        return ACTIVITY_POSSIBLY_INACTIVE
    return ACTIVITY_ACTIVE


def _quantity_fields(quantity: DetectionResult) -> dict[str, Any]:
    if isinstance(quantity, Confirmed):
        return {"quantity_metric": int(quantity.value), "quantity_status": QuantityStatus.CONFIRMED}
    if isinstance(quantity, RateLimited):
        return {"quantity_metric": None, "quantity_status": QuantityStatus.RATE_LIMITED}
    if isinstance(quantity, Unknown):
        return {"quantity_metric": None, "quantity_status": QuantityStatus.UNKNOWN}
    raise TypeError(f"unexpected quantity result: {quantity!r}")


def _quantity_reason(quantity: DetectionResult) -> str:
    if isinstance(quantity, Confirmed):
        return "confirmed"
    if isinstance(quantity, RateLimited):
        return "rate_limited"
    if isinstance(quantity, Unknown):
        return quantity.reason
    raise TypeError(f"unexpected quantity result: {quantity!r}")


def _needs_retry(health_status: HealthStatus, activity: str, quantity: DetectionResult) -> bool:
    if health_status in {HealthStatus.RATE_LIMITED, HealthStatus.POSSIBLY_INACTIVE}:
        return True
    if activity == ACTIVITY_UNABLE_TO_CHECK:
        return True
    return not isinstance(quantity, Confirmed)


def _retry_after(response: FetchResponse) -> float | None:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None
