# authcore/schemas/brute_force.py
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from authcore.schemas.security_event import CountByKey


class FailurePolicy(StrEnum):
    """What an operation does when the store is unavailable."""

    FAIL_CLOSED = "fail_closed"  # deny
    FAIL_OPEN = "fail_open"  # neutral result, flagged degraded


class DecisionReason(StrEnum):
    ALLOWED = "allowed"
    BAD_CREDENTIALS = "bad_credentials"
    CAPTCHA_REQUIRED = "captcha_required"
    LOCKED_OUT = "locked_out"
    IP_BLOCKED = "ip_blocked"
    STORE_UNAVAILABLE = "store_unavailable"


class LoginAttemptResult(BaseModel):
    """Decision returned by the brute-force guard; fails closed."""

    allowed: bool
    requires_captcha: bool = False
    lockout_until: datetime | None = None
    remaining_attempts: int | None = None
    is_blocked: bool = False
    reason: DecisionReason = DecisionReason.ALLOWED
    message: str = ""
    fail_closed: bool = False


class AccountStatus(BaseModel):
    """Advisory read of an identifier's attempt record; fails open."""

    identifier: str
    attempts: int = 0
    is_locked: bool = False
    lockout_until: datetime | None = None
    requires_captcha: bool = False
    first_attempt_at: datetime | None = None
    last_attempt_at: datetime | None = None
    degraded: bool = False


class IPBlockStatus(BaseModel):
    is_blocked: bool = False
    block_until: datetime | None = None
    reason: str = ""


class IPStatus(BaseModel):
    ip_address: str
    attempts: int = 0
    is_blocked: bool = False
    block_until: datetime | None = None
    degraded: bool = False


class BruteForceMetrics(BaseModel):
    total_attempts: int = 0
    failed_attempts: int = 0
    locked_accounts: int = 0
    blocked_ips: int = 0
    top_attackers: list[CountByKey] = Field(default_factory=list)
    degraded: bool = False
    truncated: bool = False
