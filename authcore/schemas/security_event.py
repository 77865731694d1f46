# authcore/schemas/security_event.py
import uuid
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class SecurityEventType(StrEnum):
    LOGIN_ATTEMPT = "login_attempt"
    LOGIN_SUCCESS = "login_success"
    CAPTCHA_REQUIRED = "captcha_required"
    LOCKOUT = "lockout"
    ACCOUNT_RESET = "account_reset"
    BRUTE_FORCE_ATTACK = "brute_force_attack"
    IP_BLOCKED = "ip_blocked"
    IP_UNBLOCKED = "ip_unblocked"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    SESSION_CREATED = "session_created"
    SESSION_DESTROYED = "session_destroyed"
    SESSION_REFRESHED = "session_refreshed"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ALERT_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})

TimeRange = Literal["1h", "24h", "7d"]

TIME_RANGES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}


def resolve_window(time_range: TimeRange | timedelta) -> timedelta:
    if isinstance(time_range, timedelta):
        return time_range
    try:
        return TIME_RANGES[time_range]
    except KeyError:
        raise ValueError(f"Unknown time range '{time_range}'") from None


class SecurityEvent(BaseModel):
    """Immutable audit record emitted by the guard and the session manager."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: SecurityEventType
    severity: Severity = Severity.LOW
    ip_address: str = "unknown"
    user_agent: str = ""
    user_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    blocked: bool = False


class CountByKey(BaseModel):
    key: str
    count: int


class SecurityMetrics(BaseModel):
    total_events: int = 0
    blocked_attempts: int = 0
    top_threats: list[CountByKey] = Field(default_factory=list)
    threat_sources: list[CountByKey] = Field(default_factory=list)
    events_by_severity: dict[str, int] = Field(default_factory=dict)
    # True when the store could not be read and the numbers are placeholders
    degraded: bool = False
    # True when the retention cap trimmed events that fall inside the window
    truncated: bool = False
