from dataclasses import asdict
from datetime import datetime, timezone
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storescout.core.states import TERMINAL_NEGATIVE_STATUSES, LifecycleStatus
from storescout.schemas.stores import LifecycleOverride, StoreOut, TagsUpdate
from storescout.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    StoreRecord,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=list[StoreOut])
async def list_stores(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    lifecycle_status: LifecycleStatus | None = None,
    repository=Depends(get_repository),
) -> list[StoreOut]:
    try:
        stores = await repository.list_stores(limit=limit, offset=offset, lifecycle_status=lifecycle_status)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [_to_store_out(store) for store in stores]


@router.get("/{store_id}", response_model=StoreOut)
async def get_store(store_id: str, repository=Depends(get_repository)) -> StoreOut:
    try:
        store = await repository.get_store(store_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_store_out(store)


@router.patch("/{store_id}/lifecycle", response_model=StoreOut)
async def override_lifecycle(
    store_id: str,
    payload: LifecycleOverride,
    repository=Depends(get_repository),
) -> StoreOut:
    target = LifecycleStatus(payload.status)
    fields: dict[str, Any] = {"lifecycle_status": target}
    if target in TERMINAL_NEGATIVE_STATUSES:
        fields["verified"] = False
        fields["next_retry_at"] = None
    else:
        fields["next_retry_at"] = datetime.now(timezone.utc)
        fields["retry_count"] = 0

    try:
        store = await repository.get_store(store_id)
        if store.lifecycle_status == LifecycleStatus.NONEXISTENT:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="nonexistent stores are terminal")
        updated = await repository.update_store_fields(store_id, fields)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    logger.info(
        "lifecycle override store_id=%s from=%s to=%s reason=%s",
        store_id,
        store.lifecycle_status.value,
        target.value,
        payload.reason,
    )
    return _to_store_out(updated)


@router.patch("/{store_id}/tags", response_model=StoreOut)
async def update_tags(
    store_id: str,
    payload: TagsUpdate,
    repository=Depends(get_repository),
) -> StoreOut:
    tags = [tag.strip() for tag in payload.tags if tag.strip()]
    if not tags:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="at least one tag is required")
    try:
        updated = await repository.update_store_fields(
            store_id,
            {"category_tags": tags, "tags_locked": payload.locked},
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_store_out(updated)


def _to_store_out(store: StoreRecord) -> StoreOut:
    payload = asdict(store)
    payload.pop("category_scores", None)
    return StoreOut(**payload)
