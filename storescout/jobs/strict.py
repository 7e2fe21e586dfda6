from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from storescout.core.http import FetchError, FetchResponse, StorefrontFetcher
from storescout.core.states import LifecycleStatus

logger = logging.getLogger(__name__)

INACTIVE_ACCOUNT_MARKERS = (
    "sorry, this store is currently unavailable",
    "this store is currently unavailable",
    "are you the store owner",
    "start a free trial",
    "reactivate your store",
    "forgot your store",
    "open a new shopify store",
    "explore other stores",
)
LISTING_MARKERS = ("/products/", "product-item", "product-card")


@dataclass(slots=True)
class StrictCheckResult:
    verified: bool
    active: bool
    status: LifecycleStatus
    reasons: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


async def strict_check(canonical_url: str, *, fetcher: StorefrontFetcher) -> StrictCheckResult:
    """Fail-closed confirmation that a storefront is live and selling.

    Checks run in order and stop at the first failure: homepage reachable
    with 200, no inactive-account marker in the body, and a non-empty
    catalog. Anything unexpected resolves to ``dead``.
    """
    try:
        return await _run_checks(canonical_url.rstrip("/"), fetcher)
    except Exception as exc:
        logger.warning("strict check failed closed url=%s error=%s", canonical_url, exc)
        return _failed(LifecycleStatus.DEAD, f"unexpected_error:{type(exc).__name__}")


async def _run_checks(base_url: str, fetcher: StorefrontFetcher) -> StrictCheckResult:
    try:
        homepage = await fetcher.get(base_url)
    except FetchError as exc:
        return _failed(LifecycleStatus.DEAD, f"homepage_unreachable:{exc.reason}")
    if homepage.status_code != 200:
        return _failed(
            LifecycleStatus.DEAD,
            f"homepage_status_{homepage.status_code}",
            {"homepage_status": homepage.status_code},
        )

    body = homepage.text.lower()
    if not body.strip():
        return _failed(LifecycleStatus.INACTIVE_PLATFORM, "empty_homepage")
    for marker in INACTIVE_ACCOUNT_MARKERS:
        if marker in body:
            return _failed(LifecycleStatus.INACTIVE_PLATFORM, "inactive_marker", {"marker": marker})

    catalog_source = await _find_catalog(base_url, fetcher)
    if catalog_source is None:
        return _failed(LifecycleStatus.DEAD, "no_catalog")

    return StrictCheckResult(
        verified=True,
        active=True,
        status=LifecycleStatus.ACTIVE,
        reasons=["homepage_ok", "no_inactive_markers", f"catalog:{catalog_source}"],
        details={"homepage_status": homepage.status_code, "catalog_source": catalog_source},
    )


async def _find_catalog(base_url: str, fetcher: StorefrontFetcher) -> str | None:
    products = await _get_or_none(fetcher, f"{base_url}/products.json")
    if products is not None and _has_items(products, "products"):
        return "products_json"

    collections = await _get_or_none(fetcher, f"{base_url}/collections.json")
    if collections is not None and _has_items(collections, "collections"):
        return "collections_json"

    listing = await _get_or_none(fetcher, f"{base_url}/products")
    if listing is not None and listing.status_code == 200:
        markup = listing.text.lower()
        if any(marker in markup for marker in LISTING_MARKERS):
            return "product_listing"
    return None


async def _get_or_none(fetcher: StorefrontFetcher, url: str) -> FetchResponse | None:
    try:
        return await fetcher.get(url)
    except FetchError as exc:
        logger.debug("strict catalog probe failed url=%s reason=%s", url, exc.reason)
        return None


def _has_items(response: FetchResponse, key: str) -> bool:
    if response.status_code != 200:
        return False
    try:
        payload = response.json()
    except ValueError:
        return False
    items = payload.get(key) if isinstance(payload, dict) else None
    return isinstance(items, list) and len(items) > 0


def _failed(status: LifecycleStatus, reason: str, details: dict[str, Any] | None = None) -> StrictCheckResult:
    return StrictCheckResult(
        verified=False,
        active=False,
        status=status,
        reasons=[reason],
        details=details or {},
    )
