from typing import Any

from pydantic import BaseModel, Field


class DiscoveryEvent(BaseModel):
    url: str
    source: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class DiscoveryCandidate(BaseModel):
    url: str
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DiscoveryBatch(BaseModel):
    source: str = Field(min_length=1)
    candidates: list[DiscoveryCandidate] = Field(default_factory=list, max_length=1000)


class DiscoveryOut(BaseModel):
    created: bool
    store_id: str | None
    canonical_url: str | None
    reason: str | None = None


class DiscoveryBatchOut(BaseModel):
    created: int
    duplicates: int
    invalid: int
    total: int
