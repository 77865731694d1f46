# authcore/schemas/session.py
from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import AwareDatetime, BaseModel, Field

from authcore.schemas.security_event import CountByKey


class SessionState(StrEnum):
    ABSENT = "absent"
    ACTIVE = "active"
    IDLE_EXPIRED = "idle_expired"
    ABSOLUTE_EXPIRED = "absolute_expired"
    REVOKED = "revoked"


class DestroyReason(StrEnum):
    LOGOUT = "logout"
    IDLE_TIMEOUT = "idle_timeout"
    ABSOLUTE_EXPIRY = "absolute_expiry"
    CONCURRENT_SESSION_LIMIT = "concurrent_session_limit"
    REVOKED = "revoked"
    REVOKE_ALL = "revoke_all"
    CORRUPTED = "corrupted"


class SessionData(BaseModel):
    """A stored session record; serialized as JSON under ``session:{id}``."""

    id: str
    user_id: str
    email: str
    role: str
    ip_address: str
    user_agent: str
    device_fingerprint: str | None = None
    created_at: AwareDatetime
    last_activity: AwareDatetime
    expires_at: AwareDatetime
    is_active: bool = True

    def idle_for(self, now: datetime) -> timedelta:
        return now - self.last_activity

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_idle(self, now: datetime, idle_timeout: timedelta) -> bool:
        return self.idle_for(now) > idle_timeout


class SessionValidationResult(BaseModel):
    is_valid: bool
    session: SessionData | None = None
    state: SessionState = SessionState.ABSENT
    should_refresh: bool = False
    security_warnings: list[str] = Field(default_factory=list)
    requires_reauth: bool = False


class RefreshResult(BaseModel):
    success: bool
    new_expires_at: datetime | None = None


class SessionMetrics(BaseModel):
    total_active_sessions: int = 0
    sessions_last_24h: int = 0
    average_session_duration_seconds: float = 0.0
    top_user_agents: list[CountByKey] = Field(default_factory=list)
    suspicious_activities: int = 0
    truncated: bool = False
