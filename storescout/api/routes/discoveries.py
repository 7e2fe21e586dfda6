from fastapi import APIRouter, Depends, HTTPException, status

from storescout.core.urls import InvalidURLError
from storescout.jobs.discovery import discover, discover_many
from storescout.schemas.discoveries import DiscoveryBatch, DiscoveryBatchOut, DiscoveryEvent, DiscoveryOut
from storescout.services.repository import RepositoryUnavailableError, get_repository

router = APIRouter()


@router.post("", response_model=DiscoveryOut)
async def create_discovery(
    payload: DiscoveryEvent,
    repository=Depends(get_repository),
) -> DiscoveryOut:
    try:
        result = await discover(repository, payload.url, payload.source, payload.metadata)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if result.reason == InvalidURLError.reason:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid_url")
    return DiscoveryOut(
        created=result.created,
        store_id=result.store_id,
        canonical_url=result.canonical_url,
        reason=result.reason,
    )


@router.post("/batch", response_model=DiscoveryBatchOut)
async def create_discovery_batch(
    payload: DiscoveryBatch,
    repository=Depends(get_repository),
) -> DiscoveryBatchOut:
    try:
        counts = await discover_many(
            repository,
            (candidate.model_dump() for candidate in payload.candidates),
            default_source=payload.source,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return DiscoveryBatchOut(
        created=counts["created"],
        duplicates=counts["duplicates"],
        invalid=counts["invalid"],
        total=counts["total"],
    )
