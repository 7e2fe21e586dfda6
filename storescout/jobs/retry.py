from __future__ import annotations

from datetime import datetime, timedelta


def compute_retry_delay_seconds(*, retry_count: int, base_seconds: int, max_seconds: int) -> int:
    if base_seconds <= 0:
        return 0
    multiplier = max(0, retry_count - 1)
    delay = base_seconds * (2**multiplier)
    return min(delay, max_seconds)


def schedule_retry(
    *,
    now: datetime,
    retry_count: int,
    base_seconds: int,
    max_seconds: int,
) -> datetime:
    delay = compute_retry_delay_seconds(retry_count=retry_count, base_seconds=base_seconds, max_seconds=max_seconds)
    return now + timedelta(seconds=delay)


def earliest(*candidates: datetime | None) -> datetime | None:
    present = [candidate for candidate in candidates if candidate is not None]
    return min(present) if present else None
