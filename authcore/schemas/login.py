# authcore/schemas/login.py
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, EmailStr, Field, field_validator

from authcore.schemas.session import SessionData


class LoginCredentials(BaseModel):
    """Input shape of a login request; rejects malformed input before any lookup."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class VerifiedUser(BaseModel):
    """What a credential verifier returns for a matching email/password pair."""

    user_id: str
    email: str
    role: str = "customer"


class LoginStatus(StrEnum):
    SUCCESS = "success"
    INVALID_INPUT = "invalid_input"
    INVALID_CREDENTIALS = "invalid_credentials"
    CAPTCHA_REQUIRED = "captcha_required"
    LOCKED_OUT = "locked_out"
    IP_BLOCKED = "ip_blocked"
    UNAVAILABLE = "unavailable"


class LoginOutcome(BaseModel):
    success: bool
    status: LoginStatus
    message: str = ""
    session_id: str | None = None
    session: SessionData | None = None
    user: VerifiedUser | None = None
    requires_captcha: bool = False
    remaining_attempts: int | None = None
    lockout_until: datetime | None = None
