from datetime import datetime

from pydantic import BaseModel, Field


class PipelineRunRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=1000)


class PipelineRunOut(BaseModel):
    status: str
    processed: int
    errors: int
    skipped: int
    status_breakdown: dict[str, int]
    reason_breakdown: dict[str, int]
    started_at: datetime | None
    finished_at: datetime | None
    error: str | None


class PipelineStatsOut(BaseModel):
    total_runs: int
    successful_runs: int
    failed_runs: int
    skipped_runs: int
    total_processed: int
    total_errors: int


class PipelineStatusOut(BaseModel):
    is_running: bool
    current_run_started_at: datetime | None
    last_run_at: datetime | None
    last_run: PipelineRunOut | None
    aggregate_stats: PipelineStatsOut
    lifecycle_counts: dict[str, int] | None = None
