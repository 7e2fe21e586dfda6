from __future__ import annotations

from collections import Counter
from copy import deepcopy
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from storescout.core.states import LifecycleStatus
from storescout.services.due import DueWindows, due_sort_key, is_due
from storescout.services.records import (
    RepositoryNotFoundError,
    RepositoryValidationError,
    StoreRecord,
    validate_update_fields,
)


class InMemoryStoreRepository:
    """Process-local store repository for development runs and tests.

    Methods never await between reading and writing state, so each one is
    atomic on the event loop.
    """

    def __init__(self) -> None:
        self.stores: dict[str, StoreRecord] = {}
        self._ids_by_url: dict[str, str] = {}

    async def close(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    async def create_store_if_absent(
        self,
        *,
        canonical_url: str,
        display_name: str,
        discovery_source: str,
        discovery_metadata: dict[str, Any],
        observed_at: datetime,
    ) -> tuple[str, bool]:
        existing_id = self._ids_by_url.get(canonical_url)
        if existing_id is not None:
            existing = self.stores[existing_id]
            if existing.last_observed_at is None or existing.last_observed_at < observed_at:
                existing.last_observed_at = observed_at
            return existing_id, False

        store_id = str(uuid4())
        self.stores[store_id] = StoreRecord(
            id=store_id,
            canonical_url=canonical_url,
            display_name=display_name,
            discovery_source=discovery_source,
            discovery_metadata=deepcopy(discovery_metadata),
            date_added=observed_at,
            last_observed_at=observed_at,
        )
        self._ids_by_url[canonical_url] = store_id
        return store_id, True

    async def get_store(self, store_id: str) -> StoreRecord:
        store = self.stores.get(store_id)
        if store is None:
            raise RepositoryNotFoundError("store not found")
        return replace(store)

    async def update_store_fields(self, store_id: str, fields: dict[str, Any]) -> StoreRecord:
        validate_update_fields(fields)
        store = self.stores.get(store_id)
        if store is None:
            raise RepositoryNotFoundError("store not found")
        lifecycle = fields.get("lifecycle_status", store.lifecycle_status)
        next_retry_at = fields.get("next_retry_at", store.next_retry_at)
        if lifecycle == LifecycleStatus.NONEXISTENT and next_retry_at is not None:
            raise RepositoryValidationError("nonexistent stores cannot be scheduled for retry")
        for name, value in fields.items():
            setattr(store, name, deepcopy(value))
        return replace(store)

    async def list_stores_due(self, *, windows: DueWindows, limit: int) -> list[StoreRecord]:
        due = [store for store in self.stores.values() if is_due(store, windows)]
        due.sort(key=due_sort_key)
        return [replace(store) for store in due[:limit]]

    async def list_stores(
        self,
        *,
        limit: int,
        offset: int,
        lifecycle_status: LifecycleStatus | None = None,
    ) -> list[StoreRecord]:
        rows = [
            store
            for store in self.stores.values()
            if lifecycle_status is None or store.lifecycle_status == lifecycle_status
        ]
        rows.sort(key=lambda store: store.date_added or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return [replace(store) for store in rows[offset : offset + limit]]

    async def count_stores_by_lifecycle_status(self) -> dict[str, int]:
        return dict(Counter(store.lifecycle_status.value for store in self.stores.values()))
