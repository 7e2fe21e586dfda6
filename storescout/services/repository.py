from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from storescout.core.config import get_settings
from storescout.core.states import (
    HealthStatus,
    LifecycleStatus,
    PlatformStatus,
    QuantityStatus,
    coerce_enum,
)
from storescout.services.due import DueWindows
from storescout.services.records import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    StoreRecord,
    validate_update_fields,
)
from storescout.services.store import InMemoryStoreRepository

__all__ = [
    "PostgresStoreRepository",
    "RepositoryConflictError",
    "RepositoryError",
    "RepositoryNotFoundError",
    "RepositoryUnavailableError",
    "RepositoryValidationError",
    "StoreRecord",
    "get_repository",
]

logger = logging.getLogger(__name__)

JSONB_COLUMNS = {"discovery_metadata", "platform_signals", "category_scores"}
COLUMN_CASTS = {
    "platform_signals": "jsonb",
    "category_scores": "jsonb",
    "category_tags": "text[]",
}
STORE_COLUMNS_SQL = """
  id::text as id,
  canonical_url,
  display_name,
  discovery_source,
  discovery_metadata,
  platform_status,
  platform_confidence,
  platform_signals,
  lifecycle_status,
  health_status,
  verified,
  password_protected,
  quantity_metric,
  quantity_status,
  locale,
  visual_theme,
  category_tags,
  primary_category,
  category_confidence,
  category_scores,
  advertising,
  tags_locked,
  retry_count,
  next_retry_at,
  last_verification_at,
  last_health_check_at,
  last_classification_at,
  date_added,
  last_observed_at
"""
CONNECTION_ERRORS = (OSError, pg_exc.PostgresConnectionError, pg_exc.InterfaceError)


class PostgresStoreRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.fetchval("select 1")
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def create_store_if_absent(
        self,
        *,
        canonical_url: str,
        display_name: str,
        discovery_source: str,
        discovery_metadata: dict[str, Any],
        observed_at: datetime,
    ) -> tuple[str, bool]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        insert into stores (
                          canonical_url,
                          display_name,
                          discovery_source,
                          discovery_metadata,
                          lifecycle_status,
                          quantity_status,
                          date_added,
                          last_observed_at
                        )
                        values ($1, $2, $3, $4::jsonb, 'pending', 'unknown', $5, $5)
                        on conflict (canonical_url) do nothing
                        returning id::text as id
                        """,
                        canonical_url,
                        display_name,
                        discovery_source,
                        json.dumps(discovery_metadata),
                        observed_at,
                    )
                    if row:
                        return row["id"], True

                    existing = await conn.fetchrow(
                        """
                        update stores
                        set last_observed_at = greatest(coalesce(last_observed_at, $2), $2)
                        where canonical_url = $1
                        returning id::text as id
                        """,
                        canonical_url,
                        observed_at,
                    )
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

        if not existing:
            raise RepositoryConflictError(f"store vanished during create-if-absent: {canonical_url}")
        return existing["id"], False

    async def get_store(self, store_id: str) -> StoreRecord:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {STORE_COLUMNS_SQL} from stores where id = $1::uuid",
                store_id,
            )
        except pg_exc.DataError as exc:
            raise RepositoryNotFoundError("store not found") from exc
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        if row is None:
            raise RepositoryNotFoundError("store not found")
        return self._store_row_to_record(row)

    async def update_store_fields(self, store_id: str, fields: dict[str, Any]) -> StoreRecord:
        validate_update_fields(fields)
        pool = await self._get_pool()
        params: list[Any] = [store_id]

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        assignments: list[str] = []
        for column in sorted(fields):
            token = bind(self._to_db_value(column, fields[column]))
            cast = COLUMN_CASTS.get(column)
            assignments.append(f"{column} = {token}::{cast}" if cast else f"{column} = {token}")

        try:
            row = await pool.fetchrow(
                f"""
                update stores
                set {", ".join(assignments)}
                where id = $1::uuid
                returning {STORE_COLUMNS_SQL}
                """,
                *params,
            )
        except pg_exc.CheckViolationError as exc:
            raise RepositoryValidationError(str(exc)) from exc
        except pg_exc.DataError as exc:
            raise RepositoryValidationError(str(exc)) from exc
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        if row is None:
            raise RepositoryNotFoundError("store not found")
        return self._store_row_to_record(row)

    async def list_stores_due(self, *, windows: DueWindows, limit: int) -> list[StoreRecord]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"""
                select {STORE_COLUMNS_SQL}
                from stores
                where lifecycle_status <> 'nonexistent'
                  and (
                    platform_status is null
                    or (verified = false and next_retry_at is not null and next_retry_at <= $1)
                    or (
                      lifecycle_status not in ('inactive_platform', 'dead', 'blocked')
                      and (last_verification_at is null or last_verification_at <= $2)
                    )
                    or (
                      platform_status in ('confirmed', 'probable')
                      and lifecycle_status not in ('dead', 'blocked')
                      and (
                        last_health_check_at is null
                        or (next_retry_at is not null and next_retry_at <= $1)
                        or last_health_check_at <= $3
                      )
                    )
                    or (
                      platform_status in ('confirmed', 'probable')
                      and health_status = 'healthy'
                      and lifecycle_status not in ('inactive_platform', 'dead', 'blocked')
                      and (
                        (next_retry_at is not null and next_retry_at <= $1)
                        or (
                          next_retry_at is null
                          and (last_classification_at is null or last_classification_at <= $4)
                        )
                      )
                    )
                  )
                order by (platform_status is not null) asc, next_retry_at asc nulls last, date_added asc
                limit $5
                """,
                windows.now,
                windows.verification_stale_before,
                windows.health_stale_before,
                windows.classification_stale_before,
                limit,
            )
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        return [self._store_row_to_record(row) for row in rows]

    async def list_stores(
        self,
        *,
        limit: int,
        offset: int,
        lifecycle_status: LifecycleStatus | None = None,
    ) -> list[StoreRecord]:
        pool = await self._get_pool()
        conditions = "true"
        params: list[Any] = []
        if lifecycle_status is not None:
            params.append(lifecycle_status.value)
            conditions = "lifecycle_status = $1"
        params.extend([limit, offset])
        try:
            rows = await pool.fetch(
                f"""
                select {STORE_COLUMNS_SQL}
                from stores
                where {conditions}
                order by date_added desc, id asc
                limit ${len(params) - 1}
                offset ${len(params)}
                """,
                *params,
            )
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        return [self._store_row_to_record(row) for row in rows]

    async def count_stores_by_lifecycle_status(self) -> dict[str, int]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select lifecycle_status, count(*)::int as total
                from stores
                group by lifecycle_status
                """
            )
        except CONNECTION_ERRORS as exc:
            raise RepositoryUnavailableError("database unavailable") from exc
        return {row["lifecycle_status"]: int(row["total"]) for row in rows}

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("STORESCOUT_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _to_db_value(column: str, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if column in JSONB_COLUMNS:
            return json.dumps(value if value is not None else {})
        if column == "category_tags":
            return list(value or [])
        return value

    @classmethod
    def _store_row_to_record(cls, row: asyncpg.Record) -> StoreRecord:
        return StoreRecord(
            id=row["id"],
            canonical_url=row["canonical_url"],
            display_name=row["display_name"],
            discovery_source=row["discovery_source"],
            discovery_metadata=cls._coerce_json_dict(row["discovery_metadata"]),
            platform_status=coerce_enum(PlatformStatus, row["platform_status"]),
            platform_confidence=cls._coerce_float(row["platform_confidence"]),
            platform_signals=cls._coerce_json_dict(row["platform_signals"]),
            lifecycle_status=coerce_enum(LifecycleStatus, row["lifecycle_status"], default=LifecycleStatus.PENDING),
            health_status=coerce_enum(HealthStatus, row["health_status"]),
            verified=bool(row["verified"]),
            password_protected=bool(row["password_protected"]),
            quantity_metric=row["quantity_metric"],
            quantity_status=coerce_enum(QuantityStatus, row["quantity_status"], default=QuantityStatus.UNKNOWN),
            locale=row["locale"],
            visual_theme=row["visual_theme"],
            category_tags=list(row["category_tags"] or []),
            primary_category=row["primary_category"],
            category_confidence=cls._coerce_float(row["category_confidence"]),
            category_scores=cls._coerce_json_dict(row["category_scores"]),
            advertising=bool(row["advertising"]),
            tags_locked=bool(row["tags_locked"]),
            retry_count=int(row["retry_count"] or 0),
            next_retry_at=row["next_retry_at"],
            last_verification_at=row["last_verification_at"],
            last_health_check_at=row["last_health_check_at"],
            last_classification_at=row["last_classification_at"],
            date_added=row["date_added"],
            last_observed_at=row["last_observed_at"],
        )

    @staticmethod
    def _coerce_float(value: Any) -> float | None:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresStoreRepository | InMemoryStoreRepository:
    settings = get_settings()
    if settings.database_url is None and settings.environment == "dev":
        logger.warning("STORESCOUT_DATABASE_URL not set; using in-memory store repository")
        return InMemoryStoreRepository()
    return PostgresStoreRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
