from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable

from bs4 import BeautifulSoup

from storescout.core.http import FetchError, StorefrontFetcher
from storescout.core.results import Confirmed, DetectionResult, RateLimited, Unknown, from_exception
from storescout.detectors.ads import is_advertising
from storescout.detectors.business_model import (
    DROPSHIPPING,
    BusinessModelAssessment,
    assess_business_model,
)
from storescout.detectors.locale import detect_locale
from storescout.detectors.names import detect_display_name
from storescout.detectors.theme import detect_theme
from storescout.jobs.retry import earliest, schedule_retry

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = DROPSHIPPING
UNCLASSIFIED = "Unclassified"
ADVERTISING_TAG = "Currently Running Ads"


class PageUnavailableError(Exception):
    def __init__(self, reason: str, *, rate_limited: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.rate_limited = rate_limited


@dataclass(slots=True)
class StorefrontPage:
    url: str
    html: str
    soup: BeautifulSoup


@dataclass(slots=True)
class ClassificationResult:
    store_id: str
    display_name: DetectionResult
    locale: DetectionResult
    visual_theme: DetectionResult
    category: DetectionResult
    advertising: DetectionResult
    category_tags: list[str] = field(default_factory=list)
    primary_category: str | None = None
    category_confidence: float | None = None
    tags_written: bool = True
    page_error: str | None = None


async def classify(
    repository: Any,
    store_id: str,
    *,
    fetcher: StorefrontFetcher,
    page_timeout_seconds: float | None = None,
    retry_base_seconds: int = 3600,
    retry_max_seconds: int = 7 * 24 * 3600,
    now: datetime | None = None,
) -> ClassificationResult:
    """Run every attribute detector against the storefront and persist what was confirmed.

    Detectors run concurrently and fail independently. Attributes that were
    not confirmed keep their stored value, and stored category tags are only
    replaced by a confirmed category. Tags are left alone when an
    administrator locked them. When the storefront page cannot be loaded the
    store is rescheduled with backoff and ``last_classification_at`` is not
    advanced.
    """
    store = await repository.get_store(store_id)
    page = asyncio.ensure_future(load_page(fetcher, store.canonical_url, timeout_seconds=page_timeout_seconds))

    detectors: dict[str, Callable[[StorefrontPage], Any]] = {
        "display_name": lambda loaded: detect_display_name(loaded.soup),
        "locale": lambda loaded: detect_locale(loaded.soup, loaded.html, store.canonical_url),
        "visual_theme": lambda loaded: detect_theme(loaded.soup, loaded.html),
        "category": lambda loaded: assess_business_model(loaded.html),
        "advertising": lambda loaded: is_advertising(loaded.html),
    }
    try:
        outcomes = await asyncio.gather(
            *(_run_detector(name, page, detector) for name, detector in detectors.items()),
            return_exceptions=True,
        )
    finally:
        if not page.done():
            page.cancel()

    results: dict[str, DetectionResult] = {}
    for name, outcome in zip(detectors, outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("detector failed store_id=%s detector=%s error=%s", store_id, name, outcome)
            results[name] = from_exception(outcome)
        else:
            results[name] = outcome

    current = now or datetime.now(timezone.utc)
    page_error = _page_error(page)
    fields: dict[str, Any] = {}
    for name in ("display_name", "locale", "visual_theme", "advertising"):
        result = results[name]
        if isinstance(result, Confirmed):
            fields[name] = result.value

    category_confirmed = isinstance(results["category"], Confirmed)
    if category_confirmed:
        fields["category_scores"] = dict(results["category"].value.scores)

    tags_written = not store.tags_locked and (category_confirmed or not store.category_tags)
    if tags_written:
        tags, primary, confidence = resolve_category_tags(results["category"], results["advertising"])
        fields["category_tags"] = tags
        fields["primary_category"] = primary
        fields["category_confidence"] = confidence
    else:
        tags = list(store.category_tags)
        primary = store.primary_category
        confidence = store.category_confidence

    pending_retry = store.next_retry_at if store.next_retry_at and store.next_retry_at > current else None
    if page_error is None:
        fields["last_classification_at"] = current
        fields["retry_count"] = 0
        fields["next_retry_at"] = pending_retry
    else:
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

    await repository.update_store_fields(store_id, fields)
    if page_error is not None:
        logger.warning(
            "classification deferred store_id=%s reason=%s retry_count=%s next_retry_at=%s",
            store_id,
            page_error.reason,
            fields["retry_count"],
            fields["next_retry_at"],
        )
    else:
        logger.info(
            "classification applied store_id=%s tags=%s primary=%s tags_written=%s",
            store_id,
            ",".join(tags),
            primary,
            tags_written,
        )
    return ClassificationResult(
        store_id=store_id,
        display_name=results["display_name"],
        locale=results["locale"],
        visual_theme=results["visual_theme"],
        category=results["category"],
        advertising=results["advertising"],
        category_tags=tags,
        primary_category=primary,
        category_confidence=confidence,
        tags_written=tags_written,
        page_error=page_error.reason if page_error is not None else None,
    )


def resolve_category_tags(
    category: DetectionResult,
    advertising: DetectionResult,
) -> tuple[list[str], str | None, float | None]:
    """Turn detector output into the stored tag set.

    Returns ``(tags, primary_category, category_confidence)``. The tag list
    is never empty.
    """
    if isinstance(category, Confirmed):
        assessment: BusinessModelAssessment = category.value
        if assessment.primary is not None:
            tags = [assessment.primary]
            primary: str | None = assessment.primary
            confidence: float | None = assessment.confidence
        elif assessment.signals:
            tags = [DEFAULT_CATEGORY]
            primary = None
            confidence = assessment.confidence
        else:
            tags = [UNCLASSIFIED]
            primary = None
            confidence = None
    elif isinstance(category, (Unknown, RateLimited)):
        tags = [UNCLASSIFIED]
        primary = None
        confidence = None
    else:
        raise TypeError(f"unexpected category result: {category!r}")

    if isinstance(advertising, Confirmed) and advertising.value:
        tags.append(ADVERTISING_TAG)
    return tags, primary, confidence


async def load_page(
    fetcher: StorefrontFetcher,
    canonical_url: str,
    *,
    timeout_seconds: float | None = None,
) -> StorefrontPage:
    try:
        response = await fetcher.get(canonical_url.rstrip("/"), timeout_seconds=timeout_seconds)
    except FetchError as exc:
        raise PageUnavailableError(exc.reason) from exc
    if response.status_code == 429:
        raise PageUnavailableError("rate_limited", rate_limited=True)
    if response.status_code != 200:
        raise PageUnavailableError(f"status_{response.status_code}")
    return StorefrontPage(url=response.url, html=response.text, soup=BeautifulSoup(response.text, "html.parser"))


async def _run_detector(
    name: str,
    page: Awaitable[StorefrontPage],
    detector: Callable[[StorefrontPage], Any],
) -> DetectionResult:
    try:
        loaded = await page
    except PageUnavailableError as exc:
        if exc.rate_limited:
            return RateLimited()
        return Unknown(reason=exc.reason)

    value = detector(loaded)
    if value is None:
        return Unknown(reason=f"{name}_not_detected")
    return Confirmed(value)


def _page_error(page: asyncio.Future) -> PageUnavailableError | None:
    if not page.done() or page.cancelled():
        return None
    error = page.exception()
    return error if isinstance(error, PageUnavailableError) else None
