from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "storescout-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    probe_timeout_seconds: float = 8.0
    page_timeout_seconds: float = 10.0
    max_redirects: int = 5
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    rendering_service_url: str = "https://api.scrapingapi.com/v2/scrape"
    rendering_service_api_key: str | None = None
    rendering_service_timeout_seconds: float = 30.0
    pipeline_batch_size: int = 100
    pipeline_max_concurrency: int = 10
    pipeline_run_lease_seconds: int = 1800
    pipeline_interval_seconds: float = 300.0
    max_backoff_seconds: float = 900.0
    retry_base_seconds: int = 3600
    retry_max_seconds: int = 7 * 24 * 3600
    verification_recheck_hours: int = 24
    health_recheck_hours: int = 72
    classification_recheck_hours: int = 24
    quantity_page_size: int = 250
    quantity_max_pages: int = 20
    otel_enabled: bool = True
    otel_service_name: str = "storescout"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="STORESCOUT_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
