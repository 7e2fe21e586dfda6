from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Confirmed(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Unknown:
    reason: str = "unknown"


@dataclass(frozen=True, slots=True)
class RateLimited:
    retry_after_seconds: float | None = None


DetectionResult = Confirmed[Any] | Unknown | RateLimited


def unwrap_or(result: DetectionResult, default: Any) -> Any:
    if isinstance(result, Confirmed):
        return result.value
    if isinstance(result, (Unknown, RateLimited)):
        return default
    raise TypeError(f"unexpected detection result: {result!r}")


def from_exception(exc: BaseException) -> Unknown:
    return Unknown(reason=f"error:{type(exc).__name__}")
