from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from storescout.core.states import HealthStatus, LifecycleStatus, PlatformStatus, QuantityStatus


class StoreOut(BaseModel):
    id: str
    canonical_url: str
    display_name: str
    discovery_source: str
    discovery_metadata: dict[str, Any]
    platform_status: PlatformStatus | None
    platform_confidence: float | None
    platform_signals: dict[str, Any]
    lifecycle_status: LifecycleStatus
    health_status: HealthStatus | None
    verified: bool
    password_protected: bool
    quantity_metric: int | None
    quantity_status: QuantityStatus
    locale: str | None
    visual_theme: str | None
    category_tags: list[str]
    primary_category: str | None
    category_confidence: float | None
    advertising: bool
    tags_locked: bool
    retry_count: int
    next_retry_at: datetime | None
    last_verification_at: datetime | None
    last_health_check_at: datetime | None
    last_classification_at: datetime | None
    date_added: datetime | None
    last_observed_at: datetime | None


class LifecycleOverride(BaseModel):
    status: Literal["blocked", "dead", "inactive_platform", "pending"]
    reason: str | None = Field(default=None, max_length=500)


class TagsUpdate(BaseModel):
    tags: list[str] = Field(min_length=1, max_length=20)
    locked: bool = True
