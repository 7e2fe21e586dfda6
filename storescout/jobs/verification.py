from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable

from storescout.core.http import FetchError, FetchResponse, StorefrontFetcher
from storescout.core.states import (
    PROBABLE_THRESHOLD,
    TERMINAL_NEGATIVE_STATUSES,
    LifecycleEvent,
    LifecycleStatus,
    PlatformStatus,
    platform_status_for_confidence,
    transition_lifecycle,
)
from storescout.core.urls import host_of, is_hosted_platform_host
from storescout.jobs.retry import earliest, schedule_retry
from storescout.jobs.strict import StrictCheckResult, strict_check

logger = logging.getLogger(__name__)

SIGNAL_WEIGHTS = {
    "cart_endpoint": 0.40,
    "platform_header": 0.30,
    "catalog_endpoint": 0.20,
    "cdn_fingerprint": 0.15,
    "hosted_domain": 0.10,
}
PARTIAL = "partial"
PARTIAL_CREDIT = 0.75
CART_KEYS = ("items", "token", "total_price")
CDN_MARKERS = ("cdn.shopify.com", "shopify.theme", "shopify.checkout")
PLATFORM_HEADER = "x-shopid"

SignalValue = bool | str


@dataclass(slots=True)
class VerificationResult:
    canonical_url: str
    confidence: float
    status: PlatformStatus
    signals: dict[str, SignalValue] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


def score_signals(signals: dict[str, Any]) -> float:
    """Weighted sum of observed signals, clamped to [0, 1].

    Unknown signal names are ignored, so stored signal maps can be re-scored
    after the weights change.
    """
    total = 0.0
    for name, weight in SIGNAL_WEIGHTS.items():
        value = signals.get(name)
        if value is True:
            total += weight
        elif value == PARTIAL:
            total += weight * PARTIAL_CREDIT
    return round(min(1.0, max(0.0, total)), 4)


async def verify(canonical_url: str, *, fetcher: StorefrontFetcher) -> VerificationResult:
    base_url = canonical_url.rstrip("/")
    homepage = asyncio.ensure_future(fetcher.get(base_url))

    probes: dict[str, Callable[[], Awaitable[SignalValue]]] = {
        "cart_endpoint": lambda: _probe_cart(fetcher, base_url),
        "platform_header": lambda: _probe_platform_header(homepage),
        "catalog_endpoint": lambda: _probe_catalog(fetcher, base_url),
        "cdn_fingerprint": lambda: _probe_cdn_fingerprint(homepage),
        "hosted_domain": lambda: _probe_hosted_domain(base_url),
    }
    try:
        outcomes = await asyncio.gather(*(probe() for probe in probes.values()), return_exceptions=True)
    finally:
        if not homepage.done():
            homepage.cancel()

    signals: dict[str, SignalValue] = {}
    errors: dict[str, str] = {}
    for name, outcome in zip(probes, outcomes):
        if isinstance(outcome, BaseException):
            signals[name] = False
            errors[name] = outcome.reason if isinstance(outcome, FetchError) else f"error:{type(outcome).__name__}"
            continue
        signals[name] = outcome

    confidence = score_signals(signals)
    status = platform_status_for_confidence(confidence)
    logger.info(
        "verification scored url=%s confidence=%.2f status=%s failed_probes=%s",
        canonical_url,
        confidence,
        status.value,
        ",".join(sorted(errors)) or "none",
    )
    return VerificationResult(
        canonical_url=canonical_url,
        confidence=confidence,
        status=status,
        signals=signals,
        errors=errors,
    )


async def apply_verification(
    repository: Any,
    store_id: str,
    *,
    fetcher: StorefrontFetcher,
    recheck_hours: int = 24,
    retry_max_seconds: int = 7 * 24 * 3600,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Verify a stored entity, overlay the strict check and persist the outcome.

    Unverified stores are rechecked with exponential backoff that starts at
    ``recheck_hours`` and doubles with every consecutive failure, capped at
    ``retry_max_seconds``.
    """
    store = await repository.get_store(store_id)
    verification, strict = await asyncio.gather(
        verify(store.canonical_url, fetcher=fetcher),
        strict_check(store.canonical_url, fetcher=fetcher),
    )
    current = now or datetime.now(timezone.utc)

    event = verification_event(verification.confidence, strict)
    lifecycle = transition_lifecycle(store.lifecycle_status, event)
    verified = strict.verified and verification.confidence >= PROBABLE_THRESHOLD
    kept_existing = lifecycle == store.lifecycle_status and store.lifecycle_status in TERMINAL_NEGATIVE_STATUSES

    fields: dict[str, Any] = {
        "platform_status": verification.status,
        "platform_confidence": verification.confidence,
        "platform_signals": dict(verification.signals),
        "lifecycle_status": lifecycle,
        "verified": verified,
        "last_verification_at": current,
    }
    if verified:
        fields["next_retry_at"] = None
        fields["retry_count"] = 0
    elif lifecycle == LifecycleStatus.NONEXISTENT:
        fields["next_retry_at"] = None
    else:
        retry_count = store.retry_count + 1
        pending_retry = store.next_retry_at if store.next_retry_at and store.next_retry_at > current else None
        fields["retry_count"] = retry_count
        fields["next_retry_at"] = earliest(
            pending_retry,
            schedule_retry(
                now=current,
                retry_count=retry_count,
                base_seconds=recheck_hours * 3600,
                max_seconds=retry_max_seconds,
            ),
        )

    updated = await repository.update_store_fields(store_id, fields)

    if kept_existing:
        reason = "kept_existing"
    elif verified:
        reason = "verified"
    elif not strict.verified:
        reason = f"strict_failed:{strict.reasons[0] if strict.reasons else 'unknown'}"
    else:
        reason = "low_confidence"

    logger.info(
        "verification applied store_id=%s reason=%s lifecycle=%s verified=%s",
        store_id,
        reason,
        updated.lifecycle_status.value,
        updated.verified,
    )
    return {
        "store_id": store_id,
        "phase": "verify",
        "reason": reason,
        "platform_status": verification.status.value,
        "platform_confidence": verification.confidence,
        "lifecycle_status": updated.lifecycle_status.value,
        "verified": updated.verified,
        "strict_reasons": list(strict.reasons),
        "probe_errors": dict(verification.errors),
    }


def verification_event(confidence: float, strict: StrictCheckResult) -> LifecycleEvent:
    if strict.verified:
        if confidence >= PROBABLE_THRESHOLD:
            return LifecycleEvent.STRICT_PASSED
        return LifecycleEvent.STRICT_PASSED_LOW_CONFIDENCE
    if strict.status == LifecycleStatus.INACTIVE_PLATFORM:
        return LifecycleEvent.STRICT_INACTIVE
    return LifecycleEvent.STRICT_DEAD


async def _probe_cart(fetcher: StorefrontFetcher, base_url: str) -> SignalValue:
    response = await fetcher.get(f"{base_url}/cart.js", headers={"Accept": "application/json"})
    if response.status_code != 200:
        return False
    content_type = response.content_type
    if "json" not in content_type and "javascript" not in content_type:
        return False
    try:
        payload = response.json()
    except ValueError:
        return PARTIAL if "application/json" in content_type else False
    if isinstance(payload, dict) and any(key in payload for key in CART_KEYS):
        return True
    return PARTIAL


async def _probe_platform_header(homepage: Awaitable[FetchResponse]) -> SignalValue:
    response = await homepage
    return PLATFORM_HEADER in response.headers


async def _probe_catalog(fetcher: StorefrontFetcher, base_url: str) -> SignalValue:
    response = await fetcher.get(f"{base_url}/products.json", headers={"Accept": "application/json"})
    if response.status_code != 200:
        return False
    try:
        payload = response.json()
    except ValueError:
        return False
    return isinstance(payload, dict) and isinstance(payload.get("products"), list)


async def _probe_cdn_fingerprint(homepage: Awaitable[FetchResponse]) -> SignalValue:
    response = await homepage
    markup = response.text.lower()
    return any(marker in markup for marker in CDN_MARKERS)


async def _probe_hosted_domain(base_url: str) -> SignalValue:
    return is_hosted_platform_host(host_of(base_url))
