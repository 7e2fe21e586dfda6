from fastapi import APIRouter, Depends, HTTPException, status

from storescout.jobs.scheduler import RUN_ALREADY_RUNNING, RUN_FAILED, get_scheduler
from storescout.schemas.pipeline import PipelineRunOut, PipelineRunRequest, PipelineStatusOut
from storescout.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()


@router.post("/runs", response_model=PipelineRunOut)
async def run_pipeline_batch(
    payload: PipelineRunRequest | None = None,
    scheduler=Depends(get_scheduler),
) -> PipelineRunOut:
    result = await scheduler.run_pipeline_batch(limit=payload.limit if payload is not None else None)
    if result.status == RUN_ALREADY_RUNNING:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="pipeline run already in progress")
    if result.status == RUN_FAILED and result.error == "repository_unavailable":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="database unavailable")
    return PipelineRunOut(**result.to_dict())


@router.get("/status", response_model=PipelineStatusOut)
async def get_pipeline_status(
    scheduler=Depends(get_scheduler),
    repository=Depends(get_repository),
) -> PipelineStatusOut:
    payload = scheduler.get_pipeline_status()
    try:
        payload["lifecycle_counts"] = await repository.count_stores_by_lifecycle_status()
    except RepositoryUnavailableError:
        payload["lifecycle_counts"] = None
    return PipelineStatusOut(**payload)
