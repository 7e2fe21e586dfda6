from __future__ import annotations

import asyncio
import logging
import random

from opentelemetry import trace

from storescout.core.config import get_settings
from storescout.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from storescout.jobs.scheduler import RUN_FAILED, get_scheduler
from storescout.services.repository import get_repository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_worker() -> None:
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings, component="worker")
    scheduler = get_scheduler()

    backoff = settings.pipeline_interval_seconds
    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.cycle"):
                    result = await scheduler.run_pipeline_batch()
                    if result.status == RUN_FAILED:
                        raise RuntimeError(f"pipeline batch failed: {result.error}")
                    if result.processed:
                        logger.info(
                            "pipeline batch processed=%s statuses=%s",
                            result.processed,
                            result.status_breakdown,
                        )
                backoff = settings.pipeline_interval_seconds
                await asyncio.sleep(settings.pipeline_interval_seconds)
            except Exception as exc:  # pragma: no cover - bootstrap robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await get_repository().close()
        shutdown_telemetry(telemetry_runtime)


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
