from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from storescout.api.router import api_router
from storescout.core.config import get_settings
from storescout.core.telemetry import TelemetryRuntime, configure_logging, setup_telemetry, shutdown_telemetry
from storescout.jobs.scheduler import get_scheduler
from storescout.services.repository import get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    repository = get_repository()
    logger.info(
        "storescout api starting environment=%s repository=%s",
        settings.environment,
        type(repository).__name__,
    )
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            shutdown_telemetry(_telemetry_runtime, app=app)
        await repository.close()
        get_scheduler.cache_clear()
        get_repository.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
configure_logging()
_telemetry_runtime = setup_telemetry(settings, component="api", app=app)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    route = request.scope.get("route")
    logger.info(
        "http request method=%s route=%s store_id=%s status=%s duration_ms=%.2f",
        request.method,
        getattr(route, "path", request.url.path),
        request.path_params.get("store_id", "-"),
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
