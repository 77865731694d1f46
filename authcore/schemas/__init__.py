from authcore.schemas.brute_force import (
    AccountStatus,
    BruteForceMetrics,
    DecisionReason,
    FailurePolicy,
    IPBlockStatus,
    IPStatus,
    LoginAttemptResult,
)
from authcore.schemas.login import LoginCredentials, LoginOutcome, LoginStatus, VerifiedUser
from authcore.schemas.security_event import (
    CountByKey,
    SecurityEvent,
    SecurityEventType,
    SecurityMetrics,
    Severity,
)
from authcore.schemas.session import (
    DestroyReason,
    RefreshResult,
    SessionData,
    SessionMetrics,
    SessionState,
    SessionValidationResult,
)

__all__ = [
    "AccountStatus",
    "BruteForceMetrics",
    "CountByKey",
    "DecisionReason",
    "DestroyReason",
    "FailurePolicy",
    "IPBlockStatus",
    "IPStatus",
    "LoginAttemptResult",
    "LoginCredentials",
    "LoginOutcome",
    "LoginStatus",
    "RefreshResult",
    "SecurityEvent",
    "SecurityEventType",
    "SecurityMetrics",
    "SessionData",
    "SessionMetrics",
    "SessionState",
    "SessionValidationResult",
    "Severity",
    "VerifiedUser",
]
