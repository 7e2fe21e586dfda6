from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from storescout.core.states import (
    HealthStatus,
    LifecycleStatus,
    PlatformStatus,
    QuantityStatus,
)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates uniqueness or state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class StoreRecord:
    id: str
    canonical_url: str
    display_name: str
    discovery_source: str
    discovery_metadata: dict[str, Any] = field(default_factory=dict)
    platform_status: PlatformStatus | None = None
    platform_confidence: float | None = None
    platform_signals: dict[str, Any] = field(default_factory=dict)
    lifecycle_status: LifecycleStatus = LifecycleStatus.PENDING
    health_status: HealthStatus | None = None
    verified: bool = False
    password_protected: bool = False
    quantity_metric: int | None = None
    quantity_status: QuantityStatus = QuantityStatus.UNKNOWN
    locale: str | None = None
    visual_theme: str | None = None
    category_tags: list[str] = field(default_factory=list)
    primary_category: str | None = None
    category_confidence: float | None = None
    category_scores: dict[str, Any] = field(default_factory=dict)
    advertising: bool = False
    tags_locked: bool = False
    retry_count: int = 0
    next_retry_at: datetime | None = None
    last_verification_at: datetime | None = None
    last_health_check_at: datetime | None = None
    last_classification_at: datetime | None = None
    date_added: datetime | None = None
    last_observed_at: datetime | None = None


WRITE_ONCE_FIELDS = frozenset(
    {"id", "canonical_url", "discovery_source", "discovery_metadata", "date_added"}
)
UPDATABLE_FIELDS = frozenset(
    {
        "display_name",
        "platform_status",
        "platform_confidence",
        "platform_signals",
        "lifecycle_status",
        "health_status",
        "verified",
        "password_protected",
        "quantity_metric",
        "quantity_status",
        "locale",
        "visual_theme",
        "category_tags",
        "primary_category",
        "category_confidence",
        "category_scores",
        "advertising",
        "tags_locked",
        "retry_count",
        "next_retry_at",
        "last_verification_at",
        "last_health_check_at",
        "last_classification_at",
        "last_observed_at",
    }
)


def validate_update_fields(fields: dict[str, Any]) -> None:
    if not fields:
        raise RepositoryValidationError("at least one field is required")
    write_once = sorted(set(fields) & WRITE_ONCE_FIELDS)
    if write_once:
        raise RepositoryValidationError(f"fields are write-once: {', '.join(write_once)}")
    unknown = sorted(set(fields) - UPDATABLE_FIELDS)
    if unknown:
        raise RepositoryValidationError(f"unknown store fields: {', '.join(unknown)}")
    if fields.get("lifecycle_status") == LifecycleStatus.NONEXISTENT and fields.get("next_retry_at") is not None:
        raise RepositoryValidationError("nonexistent stores cannot be scheduled for retry")
