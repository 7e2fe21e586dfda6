from __future__ import annotations

from enum import Enum


class PlatformStatus(str, Enum):
    CONFIRMED = "confirmed"
    PROBABLE = "probable"
    UNLIKELY = "unlikely"
    UNVERIFIED = "unverified"


class LifecycleStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE_PLATFORM = "inactive_platform"
    DEAD = "dead"
    PASSWORD_PROTECTED = "password_protected"
    NONEXISTENT = "nonexistent"
    POSSIBLY_INACTIVE = "possibly_inactive"
    RATE_LIMITED = "rate_limited"
    BLOCKED = "blocked"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    PASSWORD_PROTECTED = "password_protected"
    NONEXISTENT = "nonexistent"
    POSSIBLY_INACTIVE = "possibly_inactive"
    RATE_LIMITED = "rate_limited"


class QuantityStatus(str, Enum):
    CONFIRMED = "confirmed"
    UNKNOWN = "unknown"
    RATE_LIMITED = "rate_limited"


class LifecycleEvent(str, Enum):
    STRICT_PASSED = "strict_passed"
    STRICT_PASSED_LOW_CONFIDENCE = "strict_passed_low_confidence"
    STRICT_INACTIVE = "strict_inactive"
    STRICT_DEAD = "strict_dead"
    HEALTH_PASSWORD_PROTECTED = "health_password_protected"
    HEALTH_NONEXISTENT = "health_nonexistent"
    HEALTH_INACTIVE_CORROBORATED = "health_inactive_corroborated"
    HEALTH_RATE_LIMITED = "health_rate_limited"
    HEALTH_POSSIBLY_INACTIVE = "health_possibly_inactive"
    HEALTH_HEALTHY = "health_healthy"


CONFIRMED_THRESHOLD = 0.6
PROBABLE_THRESHOLD = 0.4

TERMINAL_NEGATIVE_STATUSES = frozenset(
    {LifecycleStatus.INACTIVE_PLATFORM, LifecycleStatus.DEAD, LifecycleStatus.BLOCKED}
)
VERIFIED_PLATFORM_STATUSES = frozenset({PlatformStatus.CONFIRMED, PlatformStatus.PROBABLE})

_L = LifecycleStatus
_E = LifecycleEvent

# Statuses the health check may move between freely.
_OPERATIONAL = (_L.PENDING, _L.ACTIVE, _L.POSSIBLY_INACTIVE, _L.PASSWORD_PROTECTED, _L.RATE_LIMITED)


def _build_transition_table() -> dict[tuple[LifecycleStatus, LifecycleEvent], LifecycleStatus]:
    table: dict[tuple[LifecycleStatus, LifecycleEvent], LifecycleStatus] = {}

    for status in _OPERATIONAL:
        table[(status, _E.STRICT_PASSED)] = _L.ACTIVE
        table[(status, _E.STRICT_PASSED_LOW_CONFIDENCE)] = _L.PENDING
        table[(status, _E.STRICT_INACTIVE)] = _L.INACTIVE_PLATFORM
        table[(status, _E.STRICT_DEAD)] = _L.DEAD
        table[(status, _E.HEALTH_PASSWORD_PROTECTED)] = _L.PASSWORD_PROTECTED
        table[(status, _E.HEALTH_NONEXISTENT)] = _L.NONEXISTENT
        table[(status, _E.HEALTH_INACTIVE_CORROBORATED)] = _L.POSSIBLY_INACTIVE
        table[(status, _E.HEALTH_RATE_LIMITED)] = status
        table[(status, _E.HEALTH_POSSIBLY_INACTIVE)] = _L.POSSIBLY_INACTIVE
    table[(_L.PENDING, _E.HEALTH_HEALTHY)] = _L.PENDING
    table[(_L.ACTIVE, _E.HEALTH_HEALTHY)] = _L.ACTIVE
    # Recovering stores go back through the strict overlay before becoming active.
    table[(_L.POSSIBLY_INACTIVE, _E.HEALTH_HEALTHY)] = _L.PENDING
    table[(_L.PASSWORD_PROTECTED, _E.HEALTH_HEALTHY)] = _L.PENDING
    table[(_L.RATE_LIMITED, _E.HEALTH_HEALTHY)] = _L.PENDING

    for status in TERMINAL_NEGATIVE_STATUSES:
        table[(status, _E.STRICT_PASSED)] = _L.ACTIVE
        table[(status, _E.STRICT_PASSED_LOW_CONFIDENCE)] = _L.PENDING
        table[(status, _E.STRICT_INACTIVE)] = status
        table[(status, _E.STRICT_DEAD)] = status
        table[(status, _E.HEALTH_NONEXISTENT)] = _L.NONEXISTENT
        for event in (
            _E.HEALTH_PASSWORD_PROTECTED,
            _E.HEALTH_INACTIVE_CORROBORATED,
            _E.HEALTH_RATE_LIMITED,
            _E.HEALTH_POSSIBLY_INACTIVE,
            _E.HEALTH_HEALTHY,
        ):
            table[(status, event)] = status

    for event in LifecycleEvent:
        table[(_L.NONEXISTENT, event)] = _L.NONEXISTENT

    return table


LIFECYCLE_TRANSITIONS = _build_transition_table()


def transition_lifecycle(current: LifecycleStatus, event: LifecycleEvent) -> LifecycleStatus:
    try:
        return LIFECYCLE_TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"no lifecycle transition for {current.value} on {event.value}") from exc


def platform_status_for_confidence(confidence: float) -> PlatformStatus:
    if confidence >= CONFIRMED_THRESHOLD:
        return PlatformStatus.CONFIRMED
    if confidence >= PROBABLE_THRESHOLD:
        return PlatformStatus.PROBABLE
    if confidence > 0:
        return PlatformStatus.UNLIKELY
    return PlatformStatus.UNVERIFIED


def resolve_health_status(
    *,
    password_protected: bool,
    nonexistent: bool,
    prior_inactive_platform: bool,
    quantity_rate_limited: bool,
    possibly_inactive: bool,
) -> tuple[HealthStatus, LifecycleEvent]:
    """Apply the health-check precedence, highest first."""
    if password_protected:
        return HealthStatus.PASSWORD_PROTECTED, LifecycleEvent.HEALTH_PASSWORD_PROTECTED
    if nonexistent:
        return HealthStatus.NONEXISTENT, LifecycleEvent.HEALTH_NONEXISTENT
    if prior_inactive_platform:
        return HealthStatus.POSSIBLY_INACTIVE, LifecycleEvent.HEALTH_INACTIVE_CORROBORATED
    if quantity_rate_limited:
        return HealthStatus.RATE_LIMITED, LifecycleEvent.HEALTH_RATE_LIMITED
    if possibly_inactive:
        return HealthStatus.POSSIBLY_INACTIVE, LifecycleEvent.HEALTH_POSSIBLY_INACTIVE
    return HealthStatus.HEALTHY, LifecycleEvent.HEALTH_HEALTHY


def coerce_enum(enum_type: type[Enum], value: object, *, default: Enum | None = None):
    if value is None:
        return default
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        return default
