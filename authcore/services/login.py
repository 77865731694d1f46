# authcore/services/login.py
"""
Login orchestration.

Order of checks:
1. Input validation (malformed email or empty password)
2. Brute-force pre-check (IP block, lockout), read-only
3. CAPTCHA, when the identifier has crossed the threshold and a verifier is set
4. Credential verification
5. Brute-force post-check, which counts the failure or resets on success
6. Session creation

Failure messages never say whether the email or the password was wrong.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from pydantic import ValidationError

from authcore.core.log_utils import sanitize_for_log
from authcore.schemas.brute_force import DecisionReason, LoginAttemptResult
from authcore.schemas.login import LoginCredentials, LoginOutcome, LoginStatus, VerifiedUser
from authcore.services.brute_force_guard import BruteForceGuard
from authcore.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
CAPTCHA_MESSAGE = "Please complete the CAPTCHA to continue."

CaptchaVerifier = Callable[[str], Awaitable[bool]]

_DENIAL_STATUS = {
    DecisionReason.LOCKED_OUT: LoginStatus.LOCKED_OUT,
    DecisionReason.IP_BLOCKED: LoginStatus.IP_BLOCKED,
    DecisionReason.STORE_UNAVAILABLE: LoginStatus.UNAVAILABLE,
}


class CredentialVerifier(Protocol):
    async def verify(self, email: str, password: str) -> VerifiedUser | None: ...


def _denied(decision: LoginAttemptResult) -> LoginOutcome:
    return LoginOutcome(
        success=False,
        status=_DENIAL_STATUS.get(decision.reason, LoginStatus.LOCKED_OUT),
        message=decision.message,
        lockout_until=decision.lockout_until,
        remaining_attempts=decision.remaining_attempts,
    )


class LoginService:
    def __init__(
        self,
        guard: BruteForceGuard,
        sessions: SessionManager,
        verifier: CredentialVerifier,
        captcha_verifier: CaptchaVerifier | None = None,
    ):
        self.guard = guard
        self.sessions = sessions
        self.verifier = verifier
        self.captcha_verifier = captcha_verifier

    async def login(
        self,
        email: str,
        password: str,
        ip_address: str,
        user_agent: str,
        captcha_token: str | None = None,
        device_fingerprint: str | None = None,
    ) -> LoginOutcome:
        try:
            creds = LoginCredentials(email=email, password=password)
        except ValidationError:
            return LoginOutcome(
                success=False, status=LoginStatus.INVALID_INPUT, message="Invalid input"
            )

        pre = await self.guard.check_blocked(creds.email, ip_address)
        if not pre.allowed:
            return _denied(pre)

        # Without a verifier the requirement is reported to the caller but not enforced
        if pre.requires_captcha and self.captcha_verifier is not None:
            if not captcha_token or not await self.captcha_verifier(captcha_token):
                logger.info(
                    f"Login for {sanitize_for_log(creds.email)} rejected: "
                    "CAPTCHA missing or invalid"
                )
                return LoginOutcome(
                    success=False,
                    status=LoginStatus.CAPTCHA_REQUIRED,
                    message=CAPTCHA_MESSAGE,
                    requires_captcha=True,
                    remaining_attempts=pre.remaining_attempts,
                )

        user = await self.verifier.verify(creds.email, creds.password)
        post = await self.guard.check_login_attempt(
            creds.email, ip_address, user_agent, success=user is not None
        )

        if user is None:
            if not post.allowed:
                return _denied(post)
            return LoginOutcome(
                success=False,
                status=LoginStatus.INVALID_CREDENTIALS,
                message=INVALID_CREDENTIALS_MESSAGE,
                requires_captcha=post.requires_captcha,
                remaining_attempts=post.remaining_attempts,
            )

        if not post.allowed:
            return _denied(post)

        session_id, session = await self.sessions.create_session(
            user_id=user.user_id,
            email=user.email,
            role=user.role,
            ip_address=ip_address,
            user_agent=user_agent,
            device_fingerprint=device_fingerprint,
        )
        return LoginOutcome(
            success=True,
            status=LoginStatus.SUCCESS,
            message="Login successful",
            session_id=session_id,
            session=session,
            user=user,
        )

    async def logout(self, session_id: str) -> bool:
        return await self.sessions.destroy_session(session_id)
