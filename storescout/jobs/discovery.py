from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Iterable

from storescout.core.urls import InvalidURLError, canonicalize_url, display_name_from_url
from storescout.services.records import RepositoryConflictError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DiscoveryResult:
    created: bool
    store_id: str | None
    canonical_url: str | None
    reason: str | None = None


async def discover(
    repository: Any,
    raw_url: object,
    source: str,
    metadata: dict[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> DiscoveryResult:
    """Record a candidate storefront exactly once per canonical URL.

    Re-discovering an existing store only refreshes ``last_observed_at``;
    verification and enrichment fields are never touched here.
    """
    try:
        canonical_url = canonicalize_url(raw_url)
    except InvalidURLError as exc:
        logger.info("discovery rejected url=%r source=%s reason=invalid_url detail=%s", raw_url, source, exc)
        return DiscoveryResult(created=False, store_id=None, canonical_url=None, reason=InvalidURLError.reason)

    observed_at = now or datetime.now(timezone.utc)
    try:
        store_id, created = await repository.create_store_if_absent(
            canonical_url=canonical_url,
            display_name=display_name_from_url(canonical_url),
            discovery_source=source,
            discovery_metadata=dict(metadata or {}),
            observed_at=observed_at,
        )
    except RepositoryConflictError:
        # Lost an insert race to a concurrent discovery of the same store.
        logger.info("discovery insert conflict canonical_url=%s source=%s", canonical_url, source)
        return DiscoveryResult(created=False, store_id=None, canonical_url=canonical_url, reason="already_exists")

    if created:
        logger.info("discovered store store_id=%s canonical_url=%s source=%s", store_id, canonical_url, source)
        return DiscoveryResult(created=True, store_id=store_id, canonical_url=canonical_url)
    return DiscoveryResult(created=False, store_id=store_id, canonical_url=canonical_url, reason="already_exists")


async def discover_many(
    repository: Any,
    candidates: Iterable[dict[str, Any]],
    *,
    default_source: str = "unknown",
    now: datetime | None = None,
) -> dict[str, Any]:
    """Feed connector output through ``discover`` one candidate at a time."""
    counts = {"created": 0, "duplicates": 0, "invalid": 0, "total": 0}
    results: list[DiscoveryResult] = []
    for candidate in candidates:
        counts["total"] += 1
        raw_metadata = candidate.get("metadata")
        result = await discover(
            repository,
            candidate.get("url"),
            str(candidate.get("source") or default_source),
            raw_metadata if isinstance(raw_metadata, dict) else {},
            now=now,
        )
        results.append(result)
        if result.created:
            counts["created"] += 1
        elif result.reason == InvalidURLError.reason:
            counts["invalid"] += 1
        else:
            counts["duplicates"] += 1

    logger.info(
        "discovery batch processed total=%s created=%s duplicates=%s invalid=%s",
        counts["total"],
        counts["created"],
        counts["duplicates"],
        counts["invalid"],
    )
    return {**counts, "results": results}
