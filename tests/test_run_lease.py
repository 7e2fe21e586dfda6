from datetime import datetime, timedelta, timezone

from storescout.jobs.retry import compute_retry_delay_seconds, earliest, schedule_retry
from storescout.jobs.run_lease import RunGuard, lease_expired


def test_run_guard_allows_a_single_holder() -> None:
    now = datetime.now(timezone.utc)
    guard = RunGuard(lease_seconds=60)

    assert guard.try_acquire_run(now=now)
    assert guard.is_running(now=now)
    assert not guard.try_acquire_run(now=now + timedelta(seconds=30))


def test_run_guard_takes_over_expired_lease() -> None:
    now = datetime.now(timezone.utc)
    guard = RunGuard(lease_seconds=60)
    assert guard.try_acquire_run(now=now)
    first_token = guard.current_lease.token

    later = now + timedelta(seconds=61)
    assert not guard.is_running(now=later)
    assert guard.try_acquire_run(now=later)
    assert guard.current_lease.token != first_token


def test_release_ignores_stale_token() -> None:
    guard = RunGuard(lease_seconds=60)
    assert guard.try_acquire_run()
    guard.release("someone-else")
    assert guard.is_running()

    guard.release(guard.current_lease.token)
    assert guard.current_lease is None
    assert not guard.is_running()


def test_lease_expired_without_lease() -> None:
    assert lease_expired(None)


def test_retry_delay_grows_exponentially_and_caps() -> None:
    delays = [compute_retry_delay_seconds(retry_count=count, base_seconds=60, max_seconds=600) for count in range(1, 7)]
    assert delays == [60, 120, 240, 480, 600, 600]
    assert compute_retry_delay_seconds(retry_count=3, base_seconds=0, max_seconds=600) == 0


def test_schedule_retry_and_earliest() -> None:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    scheduled = schedule_retry(now=now, retry_count=2, base_seconds=3600, max_seconds=86400)
    assert scheduled == now + timedelta(hours=2)
    assert earliest(None, scheduled, now) == now
    assert earliest(None, None) is None
