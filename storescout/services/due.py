from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from storescout.core.states import (
    TERMINAL_NEGATIVE_STATUSES,
    VERIFIED_PLATFORM_STATUSES,
    HealthStatus,
    LifecycleStatus,
)
from storescout.services.records import StoreRecord


@dataclass(frozen=True, slots=True)
class DueWindows:
    now: datetime
    verification_stale_before: datetime
    health_stale_before: datetime
    classification_stale_before: datetime


def build_due_windows(
    now: datetime,
    *,
    verification_recheck_hours: int,
    health_recheck_hours: int,
    classification_recheck_hours: int,
) -> DueWindows:
    return DueWindows(
        now=now,
        verification_stale_before=now - timedelta(hours=verification_recheck_hours),
        health_stale_before=now - timedelta(hours=health_recheck_hours),
        classification_stale_before=now - timedelta(hours=classification_recheck_hours),
    )


def retry_due(store: StoreRecord, now: datetime) -> bool:
    return store.next_retry_at is not None and store.next_retry_at <= now


def needs_verification(store: StoreRecord, windows: DueWindows) -> bool:
    if store.lifecycle_status == LifecycleStatus.NONEXISTENT:
        return False
    if store.platform_status is None:
        return True
    if not store.verified and retry_due(store, windows.now):
        return True
    if store.lifecycle_status in TERMINAL_NEGATIVE_STATUSES:
        return False
    return store.last_verification_at is None or store.last_verification_at <= windows.verification_stale_before


def needs_health_check(store: StoreRecord, windows: DueWindows) -> bool:
    if store.platform_status not in VERIFIED_PLATFORM_STATUSES:
        return False
    if store.lifecycle_status in {LifecycleStatus.NONEXISTENT, LifecycleStatus.DEAD, LifecycleStatus.BLOCKED}:
        return False
    if store.last_health_check_at is None or retry_due(store, windows.now):
        return True
    return store.last_health_check_at <= windows.health_stale_before


def needs_classification(store: StoreRecord, windows: DueWindows) -> bool:
    if store.platform_status not in VERIFIED_PLATFORM_STATUSES:
        return False
    if store.health_status != HealthStatus.HEALTHY:
        return False
    if store.lifecycle_status in TERMINAL_NEGATIVE_STATUSES or store.lifecycle_status == LifecycleStatus.NONEXISTENT:
        return False
    if retry_due(store, windows.now):
        return True
    if store.next_retry_at is not None:
        return False
    return store.last_classification_at is None or store.last_classification_at <= windows.classification_stale_before


def is_due(store: StoreRecord, windows: DueWindows) -> bool:
    return (
        needs_verification(store, windows)
        or needs_health_check(store, windows)
        or needs_classification(store, windows)
    )


def due_sort_key(store: StoreRecord) -> tuple[bool, float, float]:
    next_retry = store.next_retry_at.timestamp() if store.next_retry_at else float("inf")
    added = store.date_added.timestamp() if store.date_added else 0.0
    return (store.platform_status is not None, next_retry, added)
