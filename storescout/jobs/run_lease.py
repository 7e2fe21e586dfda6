from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunLease:
    token: str
    acquired_at: datetime
    expires_at: datetime


def lease_expired(lease: RunLease | None, now: datetime | None = None) -> bool:
    if lease is None:
        return True
    now = now or datetime.now(timezone.utc)
    return lease.expires_at <= now


class RunGuard:
    """Single-flight guard for pipeline batch runs.

    Holds at most one lease at a time. A lease that outlives
    ``lease_seconds`` is treated as abandoned and may be taken over.
    """

    def __init__(self, *, lease_seconds: int) -> None:
        self.lease_seconds = max(1, lease_seconds)
        self._lease: RunLease | None = None

    @property
    def current_lease(self) -> RunLease | None:
        return self._lease

    def is_running(self, now: datetime | None = None) -> bool:
        return not lease_expired(self._lease, now=now)

    def try_acquire_run(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if self._lease is not None:
            if not lease_expired(self._lease, now=now):
                return False
            logger.warning(
                "taking over expired pipeline run lease token=%s expired_at=%s",
                self._lease.token,
                self._lease.expires_at.isoformat(),
            )
        self._lease = RunLease(
            token=uuid4().hex,
            acquired_at=now,
            expires_at=now + timedelta(seconds=self.lease_seconds),
        )
        return True

    def release(self, token: str | None = None) -> None:
        if self._lease is None:
            return
        if token is not None and self._lease.token != token:
            return
        self._lease = None
