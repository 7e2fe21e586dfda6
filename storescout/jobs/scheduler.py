from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
import logging
from typing import Any, Callable

from opentelemetry import trace

from storescout.core.config import Settings, get_settings
from storescout.core.http import StorefrontFetcher, build_fetcher
from storescout.core.states import LifecycleStatus
from storescout.jobs.executor import PHASE_CLASSIFY, PHASE_HEALTH_CHECK, PHASE_VERIFY, execute_phase
from storescout.jobs.retry import schedule_retry
from storescout.jobs.run_lease import RunGuard
from storescout.services.due import (
    DueWindows,
    build_due_windows,
    needs_classification,
    needs_health_check,
    needs_verification,
)
from storescout.services.records import RepositoryError, RepositoryUnavailableError, StoreRecord
from storescout.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RUN_COMPLETED = "completed"
RUN_ALREADY_RUNNING = "already_running"
RUN_FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PipelineBatchResult:
    status: str
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    status_breakdown: dict[str, int] = field(default_factory=dict)
    reason_breakdown: dict[str, int] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat() if self.started_at else None
        payload["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return payload


@dataclass(slots=True)
class PipelineStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    total_processed: int = 0
    total_errors: int = 0


class PipelineScheduler:
    """Runs bounded, single-flight batches of due stores through every pipeline phase."""

    def __init__(
        self,
        repository: Any,
        *,
        settings: Settings,
        fetcher_factory: Callable[[], StorefrontFetcher] | None = None,
        run_guard: RunGuard | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.fetcher_factory = fetcher_factory or (lambda: build_fetcher(settings))
        self.run_guard = run_guard or RunGuard(lease_seconds=settings.pipeline_run_lease_seconds)
        self.clock = clock
        self.stats = PipelineStats()
        self.last_result: PipelineBatchResult | None = None

    def try_acquire_run(self) -> bool:
        return self.run_guard.try_acquire_run(now=self.clock())

    async def run_pipeline_batch(self, limit: int | None = None) -> PipelineBatchResult:
        if not self.try_acquire_run():
            self.stats.skipped_runs += 1
            logger.info("pipeline run skipped: another run is in progress")
            return PipelineBatchResult(status=RUN_ALREADY_RUNNING)

        lease = self.run_guard.current_lease
        token = lease.token if lease is not None else None
        started_at = self.clock()
        try:
            with tracer.start_as_current_span("pipeline.run_batch") as span:
                result = await self._run_batch(limit or self.settings.pipeline_batch_size, started_at)
                span.set_attribute("pipeline.processed", result.processed)
                span.set_attribute("pipeline.status", result.status)
        finally:
            self.run_guard.release(token)

        self.stats.total_runs += 1
        self.stats.total_processed += result.processed
        self.stats.total_errors += result.errors
        if result.status == RUN_COMPLETED:
            self.stats.successful_runs += 1
        else:
            self.stats.failed_runs += 1
        self.last_result = result
        logger.info(
            "pipeline run finished status=%s processed=%s errors=%s skipped=%s",
            result.status,
            result.processed,
            result.errors,
            result.skipped,
        )
        return result

    def get_pipeline_status(self) -> dict[str, Any]:
        lease = self.run_guard.current_lease
        running = self.run_guard.is_running(now=self.clock())
        return {
            "is_running": running,
            "current_run_started_at": lease.acquired_at.isoformat() if running and lease is not None else None,
            "last_run_at": self.last_result.started_at.isoformat()
            if self.last_result is not None and self.last_result.started_at
            else None,
            "last_run": self.last_result.to_dict() if self.last_result is not None else None,
            "aggregate_stats": asdict(self.stats),
        }

    async def _run_batch(self, limit: int, started_at: datetime) -> PipelineBatchResult:
        try:
            await self.repository.ping()
            windows = build_due_windows(
                started_at,
                verification_recheck_hours=self.settings.verification_recheck_hours,
                health_recheck_hours=self.settings.health_recheck_hours,
                classification_recheck_hours=self.settings.classification_recheck_hours,
            )
            stores = await self.repository.list_stores_due(windows=windows, limit=limit)
        except RepositoryUnavailableError as exc:
            logger.error("pipeline run aborted before selection: %s", exc)
            return PipelineBatchResult(
                status=RUN_FAILED,
                started_at=started_at,
                finished_at=self.clock(),
                error="repository_unavailable",
            )

        semaphore = asyncio.Semaphore(max(1, self.settings.pipeline_max_concurrency))
        abort = asyncio.Event()
        async with self.fetcher_factory() as fetcher:
            outcomes = await asyncio.gather(
                *(self._process_bounded(store, windows, fetcher, semaphore, abort) for store in stores),
                return_exceptions=True,
            )

        status_breakdown: Counter[str] = Counter()
        reason_breakdown: Counter[str] = Counter()
        processed = errors = skipped = 0
        aborted = False
        for store, outcome in zip(stores, outcomes):
            if isinstance(outcome, RepositoryUnavailableError):
                aborted = True
                skipped += 1
                continue
            if isinstance(outcome, BaseException):
                errors += 1
                reason_breakdown[f"error:{type(outcome).__name__}"] += 1
                logger.error("pipeline store failed store_id=%s error=%s", store.id, outcome)
                continue
            if outcome is None:
                skipped += 1
                continue
            processed += 1
            status_breakdown[outcome["lifecycle_status"]] += 1
            reason_breakdown.update(outcome["reasons"])
            if outcome.get("error"):
                errors += 1

        return PipelineBatchResult(
            status=RUN_FAILED if aborted else RUN_COMPLETED,
            processed=processed,
            errors=errors,
            skipped=skipped,
            status_breakdown=dict(status_breakdown),
            reason_breakdown=dict(reason_breakdown),
            started_at=started_at,
            finished_at=self.clock(),
            error="repository_unavailable" if aborted else None,
        )

    async def _process_bounded(
        self,
        store: StoreRecord,
        windows: DueWindows,
        fetcher: StorefrontFetcher,
        semaphore: asyncio.Semaphore,
        abort: asyncio.Event,
    ) -> dict[str, Any] | None:
        async with semaphore:
            if abort.is_set():
                return None
            try:
                return await self.process_store(store, windows, fetcher)
            except RepositoryUnavailableError:
                abort.set()
                raise
            except Exception as exc:
                logger.exception("pipeline store failed store_id=%s reason=%s", store.id, type(exc).__name__)
                await self._schedule_failure_retry(store)
                return {
                    "store_id": store.id,
                    "lifecycle_status": store.lifecycle_status.value,
                    "reasons": [f"error:{type(exc).__name__}"],
                    "error": True,
                }

    async def process_store(
        self,
        store: StoreRecord,
        windows: DueWindows,
        fetcher: StorefrontFetcher,
    ) -> dict[str, Any]:
        with tracer.start_as_current_span("pipeline.process_store") as span:
            span.set_attribute("store.id", store.id)
            reasons: list[str] = []
            current = store
            for phase, is_needed in (
                (PHASE_VERIFY, needs_verification),
                (PHASE_HEALTH_CHECK, needs_health_check),
                (PHASE_CLASSIFY, needs_classification),
            ):
                if not is_needed(current, windows):
                    continue
                outcome = await execute_phase(
                    phase,
                    self.repository,
                    store.id,
                    fetcher=fetcher,
                    settings=self.settings,
                )
                reasons.append(f"{phase}:{outcome['reason']}")
                current = await self.repository.get_store(store.id)

            if not reasons:
                reasons.append("not_due")
            span.set_attribute("store.lifecycle_status", current.lifecycle_status.value)
            return {
                "store_id": store.id,
                "lifecycle_status": current.lifecycle_status.value,
                "reasons": reasons,
            }

    async def _schedule_failure_retry(self, store: StoreRecord) -> None:
        if store.lifecycle_status == LifecycleStatus.NONEXISTENT:
            return
        retry_count = store.retry_count + 1
        try:
            await self.repository.update_store_fields(
                store.id,
                {
                    "retry_count": retry_count,
                    "next_retry_at": schedule_retry(
                        now=self.clock(),
                        retry_count=retry_count,
                        base_seconds=self.settings.retry_base_seconds,
                        max_seconds=self.settings.retry_max_seconds,
                    ),
                },
            )
        except RepositoryError as exc:
            logger.error("could not reschedule failed store store_id=%s error=%s", store.id, exc)


@lru_cache
def get_scheduler() -> PipelineScheduler:
    return PipelineScheduler(get_repository(), settings=get_settings())
