from __future__ import annotations

from datetime import datetime
from typing import Any

from storescout.core.config import Settings
from storescout.core.http import StorefrontFetcher
from storescout.jobs.classification import classify
from storescout.jobs.health import health_check
from storescout.jobs.verification import apply_verification

PHASE_VERIFY = "verify"
PHASE_HEALTH_CHECK = "health_check"
PHASE_CLASSIFY = "classify"
PHASES = (PHASE_VERIFY, PHASE_HEALTH_CHECK, PHASE_CLASSIFY)


async def execute_phase(
    phase: str,
    repository: Any,
    store_id: str,
    *,
    fetcher: StorefrontFetcher,
    settings: Settings,
    now: datetime | None = None,
) -> dict[str, Any]:
    if phase == PHASE_VERIFY:
        return await apply_verification(
            repository,
            store_id,
            fetcher=fetcher,
            recheck_hours=settings.verification_recheck_hours,
            retry_max_seconds=settings.retry_max_seconds,
            now=now,
        )
    if phase == PHASE_HEALTH_CHECK:
        result = await health_check(
            repository,
            store_id,
            fetcher=fetcher,
            retry_base_seconds=settings.retry_base_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            quantity_page_size=settings.quantity_page_size,
            quantity_max_pages=settings.quantity_max_pages,
            now=now,
        )
        return {
            "store_id": store_id,
            "phase": phase,
            "reason": result.health_status.value,
            "lifecycle_status": result.lifecycle_status.value,
            "details": list(result.reasons),
        }
    if phase == PHASE_CLASSIFY:
        result = await classify(
            repository,
            store_id,
            fetcher=fetcher,
            page_timeout_seconds=settings.page_timeout_seconds,
            retry_base_seconds=settings.retry_base_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            now=now,
        )
        if result.page_error is not None:
            reason = f"deferred:{result.page_error}"
        elif not result.tags_written:
            reason = "tags_kept"
        else:
            reason = result.primary_category or result.category_tags[0]
        return {
            "store_id": store_id,
            "phase": phase,
            "reason": reason,
            "category_tags": list(result.category_tags),
        }

    return {
        "store_id": store_id,
        "phase": phase,
        "reason": "unknown_phase",
    }
