# authcore/services/brute_force_guard.py
"""
Brute-force protection for the login flow.

Implements:
- CAPTCHA requirement after LOGIN_CAPTCHA_THRESHOLD failures
- Hard lockout after LOGIN_MAX_ATTEMPTS failures (15 min by default)
- Progressive lockout: each further lockout within 24h doubles, capped
- IP block after IP_BLOCK_THRESHOLD failures from one address, any identifier

Counters live in the key-value store and use atomic INCR with a sliding TTL,
so stale records expire even if nobody ever logs in successfully.

Store failures are handled per operation (see FailurePolicy): decisions fail
closed, advisory reads fail open, admin writes propagate.
"""

import json
import logging
from datetime import datetime, timedelta

from authcore.core.clock import Clock, ttl_seconds, utc_now
from authcore.core.config import BruteForceConfig
from authcore.core.log_utils import sanitize_for_log
from authcore.exceptions import StoreUnavailableError
from authcore.schemas.brute_force import (
    AccountStatus,
    BruteForceMetrics,
    DecisionReason,
    FailurePolicy,
    IPBlockStatus,
    IPStatus,
    LoginAttemptResult,
)
from authcore.schemas.security_event import (
    CountByKey,
    SecurityEventType,
    Severity,
    TimeRange,
    resolve_window,
)
from authcore.services.security_events import SecurityEventLog
from authcore.store.base import KeyValueStore

logger = logging.getLogger(__name__)

ATTEMPTS_PREFIX = "login_attempts:"
ATTEMPT_META_PREFIX = "login_attempt_meta:"
LOCKOUT_PREFIX = "lockout:"
LOCKOUT_HISTORY_PREFIX = "lockout_history:"
IP_ATTEMPTS_PREFIX = "ip_attempts:"
IP_BLOCKED_PREFIX = "ip_blocked:"

UNAVAILABLE_MESSAGE = "Sign-in is temporarily unavailable. Please try again shortly."

_FAILED_EVENT_TYPES = frozenset(
    {
        SecurityEventType.LOGIN_ATTEMPT,
        SecurityEventType.LOCKOUT,
        SecurityEventType.BRUTE_FORCE_ATTACK,
    }
)

# Which way each public operation goes when the store is down
OPERATION_POLICIES: dict[str, FailurePolicy] = {
    "check_login_attempt": FailurePolicy.FAIL_CLOSED,
    "check_blocked": FailurePolicy.FAIL_CLOSED,
    "get_account_status": FailurePolicy.FAIL_OPEN,
    "get_ip_status": FailurePolicy.FAIL_OPEN,
    "get_brute_force_metrics": FailurePolicy.FAIL_OPEN,
}


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


def _minutes_until(until: datetime, now: datetime) -> int:
    return int((until - now).total_seconds() // 60) + 1


def _parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class BruteForceGuard:
    def __init__(
        self,
        store: KeyValueStore,
        config: BruteForceConfig | None = None,
        event_log: SecurityEventLog | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self.config = config or BruteForceConfig()
        self._events = event_log or SecurityEventLog(store, clock=clock)
        self._clock = clock

    # --- Decisions (fail closed) ---

    async def check_login_attempt(
        self,
        identifier: str,
        ip_address: str,
        user_agent: str,
        success: bool,
    ) -> LoginAttemptResult:
        """
        Record the outcome of a credential check and decide whether it stands.

        A success clears the identifier's record. A failure increments the
        identifier and IP counters and may require a CAPTCHA, lock the
        identifier or block the IP. While a lockout or IP block is active the
        call is rejected without counting anything.
        """
        identifier = normalize_identifier(identifier)
        try:
            return await self._check_login_attempt(identifier, ip_address, user_agent, success)
        except StoreUnavailableError as e:
            return self._fail_closed("check_login_attempt", identifier, e)

    async def check_blocked(self, identifier: str, ip_address: str) -> LoginAttemptResult:
        """Read-only pre-check run before credentials are verified."""
        identifier = normalize_identifier(identifier)
        try:
            now = self._clock()
            blocked = await self._ip_block_result(ip_address, now)
            if blocked is not None:
                return blocked
            locked = await self._lockout_result(identifier, now)
            if locked is not None:
                return locked
            attempts = await self._read_attempts(identifier)
            requires_captcha = attempts >= self.config.captcha_threshold
            return LoginAttemptResult(
                allowed=True,
                requires_captcha=requires_captcha,
                remaining_attempts=max(0, self.config.max_attempts - attempts),
                reason=(
                    DecisionReason.CAPTCHA_REQUIRED if requires_captcha else DecisionReason.ALLOWED
                ),
            )
        except StoreUnavailableError as e:
            return self._fail_closed("check_blocked", identifier, e)

    def _fail_closed(
        self, operation: str, identifier: str, error: StoreUnavailableError
    ) -> LoginAttemptResult:
        logger.error(
            f"{operation}: store unavailable for {sanitize_for_log(identifier)}, "
            f"denying login: {error}"
        )
        return LoginAttemptResult(
            allowed=False,
            reason=DecisionReason.STORE_UNAVAILABLE,
            message=UNAVAILABLE_MESSAGE,
            fail_closed=True,
        )

    async def _check_login_attempt(
        self, identifier: str, ip_address: str, user_agent: str, success: bool
    ) -> LoginAttemptResult:
        now = self._clock()

        blocked = await self._ip_block_result(ip_address, now)
        if blocked is not None:
            logger.info(f"Login rejected for blocked IP {sanitize_for_log(ip_address)}")
            return blocked

        locked = await self._lockout_result(identifier, now)
        if locked is not None:
            logger.info(f"Login rejected for locked identifier {sanitize_for_log(identifier)}")
            return locked

        if success:
            await self._store.delete(
                ATTEMPTS_PREFIX + identifier,
                ATTEMPT_META_PREFIX + identifier,
                LOCKOUT_PREFIX + identifier,
            )
            await self._events.record(
                SecurityEventType.LOGIN_SUCCESS,
                Severity.LOW,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"identifier": identifier},
            )
            return LoginAttemptResult(
                allowed=True,
                remaining_attempts=self.config.max_attempts,
                message="Login successful",
            )

        return await self._register_failure(identifier, ip_address, user_agent, now)

    async def _register_failure(
        self, identifier: str, ip_address: str, user_agent: str, now: datetime
    ) -> LoginAttemptResult:
        window = ttl_seconds(self.config.attempt_window)

        attempts = await self._store.incr(ATTEMPTS_PREFIX + identifier)
        await self._store.expire(ATTEMPTS_PREFIX + identifier, window)
        ip_attempts = await self._store.incr(IP_ATTEMPTS_PREFIX + ip_address)
        await self._store.expire(IP_ATTEMPTS_PREFIX + ip_address, window)
        await self._touch_meta(identifier, now, window)

        if ip_attempts >= self.config.ip_block_threshold:
            reason = "Excessive failed login attempts"
            until = await self._store_ip_block(ip_address, reason, self.config.ip_block_duration)
            logger.warning(
                f"IP BLOCKED: {sanitize_for_log(ip_address)} after {ip_attempts} failures."
            )
            await self._events.record(
                SecurityEventType.BRUTE_FORCE_ATTACK,
                Severity.CRITICAL,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": reason, "attempts": ip_attempts, "identifier": identifier},
                blocked=True,
            )
            return LoginAttemptResult(
                allowed=False,
                remaining_attempts=0,
                is_blocked=True,
                lockout_until=until,
                reason=DecisionReason.IP_BLOCKED,
                message="Too many failed attempts from this network. Please try again later.",
            )

        if attempts >= self.config.max_attempts:
            duration = await self._next_lockout_duration(identifier)
            until = now + duration
            await self._store.set(
                LOCKOUT_PREFIX + identifier, until.isoformat(), ttl=ttl_seconds(duration)
            )
            logger.warning(
                f"ACCOUNT LOCKED: {sanitize_for_log(identifier)} for "
                f"{int(duration.total_seconds() // 60)}m after {attempts} failures."
            )
            await self._events.record(
                SecurityEventType.LOCKOUT,
                Severity.HIGH,
                ip_address=ip_address,
                user_agent=user_agent,
                details={
                    "identifier": identifier,
                    "attempts": attempts,
                    "lockout_seconds": int(duration.total_seconds()),
                },
                blocked=True,
            )
            return LoginAttemptResult(
                allowed=False,
                remaining_attempts=0,
                lockout_until=until,
                reason=DecisionReason.LOCKED_OUT,
                message=(
                    f"Too many failed attempts. Please try again in "
                    f"{_minutes_until(until, now)} minute(s)."
                ),
            )

        await self._events.record(
            SecurityEventType.LOGIN_ATTEMPT,
            Severity.MEDIUM,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"identifier": identifier, "attempts": attempts, "success": False},
        )

        requires_captcha = attempts >= self.config.captcha_threshold
        if attempts == self.config.captcha_threshold:
            await self._events.record(
                SecurityEventType.CAPTCHA_REQUIRED,
                Severity.MEDIUM,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"identifier": identifier, "attempts": attempts},
            )

        remaining = self.config.max_attempts - attempts
        message = f"Invalid credentials. {remaining} attempt(s) remaining."
        if requires_captcha:
            message += " CAPTCHA required."
        return LoginAttemptResult(
            allowed=True,
            requires_captcha=requires_captcha,
            remaining_attempts=remaining,
            reason=(
                DecisionReason.CAPTCHA_REQUIRED
                if requires_captcha
                else DecisionReason.BAD_CREDENTIALS
            ),
            message=message,
        )

    async def _next_lockout_duration(self, identifier: str) -> timedelta:
        base = self.config.lockout_duration
        if not self.config.progressive_lockout:
            return base
        history_key = LOCKOUT_HISTORY_PREFIX + identifier
        lockout_count = await self._store.incr(history_key)
        await self._store.expire(history_key, ttl_seconds(self.config.lockout_history_window))
        return min(base * (2 ** (lockout_count - 1)), self.config.max_lockout_duration)

    async def _touch_meta(self, identifier: str, now: datetime, window: int) -> None:
        # Last-writer-wins; only the counter itself has to be exact
        key = ATTEMPT_META_PREFIX + identifier
        first = None
        raw = await self._store.get(key)
        if raw:
            try:
                first = _parse_timestamp(json.loads(raw).get("first_attempt_at"))
            except (ValueError, AttributeError):
                first = None
        meta = {
            "first_attempt_at": (first or now).isoformat(),
            "last_attempt_at": now.isoformat(),
        }
        await self._store.set(key, json.dumps(meta), ttl=window)

    async def _read_attempts(self, identifier: str) -> int:
        raw = await self._store.get(ATTEMPTS_PREFIX + identifier)
        try:
            return int(raw) if raw else 0
        except ValueError:
            return 0

    async def _read_lockout(self, identifier: str, now: datetime) -> datetime | None:
        raw = await self._store.get(LOCKOUT_PREFIX + identifier)
        if raw is None:
            return None
        until = _parse_timestamp(raw)
        if until is None:
            logger.warning(f"Dropping unparseable lockout for {sanitize_for_log(identifier)}")
            await self._store.delete(LOCKOUT_PREFIX + identifier)
            return None
        return until if until > now else None

    async def _lockout_result(self, identifier: str, now: datetime) -> LoginAttemptResult | None:
        until = await self._read_lockout(identifier, now)
        if until is None:
            return None
        return LoginAttemptResult(
            allowed=False,
            remaining_attempts=0,
            lockout_until=until,
            reason=DecisionReason.LOCKED_OUT,
            message=(
                f"Too many failed attempts. Please try again in "
                f"{_minutes_until(until, now)} minute(s)."
            ),
        )

    async def _ip_block_result(self, ip_address: str, now: datetime) -> LoginAttemptResult | None:
        block = await self._read_ip_block(ip_address, now)
        if not block.is_blocked:
            return None
        return LoginAttemptResult(
            allowed=False,
            remaining_attempts=0,
            is_blocked=True,
            lockout_until=block.block_until,
            reason=DecisionReason.IP_BLOCKED,
            message="Too many failed attempts from this network. Please try again later.",
        )

    # --- Advisory reads (fail open) ---

    async def get_account_status(self, identifier: str) -> AccountStatus:
        """Pre-submission warning data for the login form. Never blocks."""
        identifier = normalize_identifier(identifier)
        try:
            now = self._clock()
            attempts = await self._read_attempts(identifier)
            lockout_until = await self._read_lockout(identifier, now)
            first = last = None
            raw_meta = await self._store.get(ATTEMPT_META_PREFIX + identifier)
            if raw_meta:
                try:
                    meta = json.loads(raw_meta)
                    first = _parse_timestamp(meta.get("first_attempt_at"))
                    last = _parse_timestamp(meta.get("last_attempt_at"))
                except (ValueError, AttributeError):
                    pass
        except StoreUnavailableError as e:
            logger.warning(f"get_account_status degraded for {sanitize_for_log(identifier)}: {e}")
            return AccountStatus(identifier=identifier, degraded=True)

        return AccountStatus(
            identifier=identifier,
            attempts=attempts,
            is_locked=lockout_until is not None,
            lockout_until=lockout_until,
            requires_captcha=attempts >= self.config.captcha_threshold,
            first_attempt_at=first,
            last_attempt_at=last,
        )

    async def get_ip_status(self, ip_address: str) -> IPStatus:
        try:
            raw = await self._store.get(IP_ATTEMPTS_PREFIX + ip_address)
            block = await self._read_ip_block(ip_address, self._clock())
        except StoreUnavailableError as e:
            logger.warning(f"get_ip_status degraded for {sanitize_for_log(ip_address)}: {e}")
            return IPStatus(ip_address=ip_address, degraded=True)
        try:
            attempts = int(raw) if raw else 0
        except ValueError:
            attempts = 0
        return IPStatus(
            ip_address=ip_address,
            attempts=attempts,
            is_blocked=block.is_blocked,
            block_until=block.block_until,
        )

    async def get_brute_force_metrics(self, time_range: TimeRange = "24h") -> BruteForceMetrics:
        try:
            events, truncated = await self._events.events_since(resolve_window(time_range))
            locked_accounts = len(await self._store.keys(LOCKOUT_PREFIX))
            blocked_ips = len(await self._store.keys(IP_BLOCKED_PREFIX))
        except StoreUnavailableError as e:
            logger.warning(f"Brute-force metrics unavailable: {e}")
            return BruteForceMetrics(degraded=True)

        attempts = [
            e
            for e in events
            if e.type in _FAILED_EVENT_TYPES or e.type == SecurityEventType.LOGIN_SUCCESS
        ]
        failed = [e for e in attempts if e.type in _FAILED_EVENT_TYPES]
        by_ip: dict[str, int] = {}
        for e in failed:
            by_ip[e.ip_address] = by_ip.get(e.ip_address, 0) + 1
        top = sorted(by_ip.items(), key=lambda item: item[1], reverse=True)[:10]

        return BruteForceMetrics(
            total_attempts=len(attempts),
            failed_attempts=len(failed),
            locked_accounts=locked_accounts,
            blocked_ips=blocked_ips,
            top_attackers=[CountByKey(key=ip, count=count) for ip, count in top],
            truncated=truncated,
        )

    # --- Administrative operations (errors propagate) ---

    async def reset_account_attempts(
        self, identifier: str, performed_by: str | None = None
    ) -> None:
        """Support override: clear counters, lockout and lockout history."""
        identifier = normalize_identifier(identifier)
        await self._store.delete(
            ATTEMPTS_PREFIX + identifier,
            ATTEMPT_META_PREFIX + identifier,
            LOCKOUT_PREFIX + identifier,
            LOCKOUT_HISTORY_PREFIX + identifier,
        )
        logger.info(
            f"Login attempts reset for {sanitize_for_log(identifier)} "
            f"by {sanitize_for_log(performed_by or 'system')}"
        )
        await self._events.record(
            SecurityEventType.ACCOUNT_RESET,
            Severity.LOW,
            ip_address="system",
            user_agent="system",
            details={"identifier": identifier, "performed_by": performed_by or "system"},
        )

    async def check_ip_block(self, ip_address: str) -> IPBlockStatus:
        return await self._read_ip_block(ip_address, self._clock())

    async def block_ip(
        self, ip_address: str, reason: str, duration: timedelta | None = None
    ) -> IPBlockStatus:
        duration = duration or self.config.ip_block_duration
        until = await self._store_ip_block(ip_address, reason, duration)
        await self._events.record(
            SecurityEventType.IP_BLOCKED,
            Severity.HIGH,
            ip_address=ip_address,
            details={"reason": reason, "block_seconds": int(duration.total_seconds())},
            blocked=True,
        )
        return IPBlockStatus(is_blocked=True, block_until=until, reason=reason)

    async def unblock_ip(self, ip_address: str) -> None:
        await self._store.delete(IP_BLOCKED_PREFIX + ip_address, IP_ATTEMPTS_PREFIX + ip_address)
        await self._events.record(
            SecurityEventType.IP_UNBLOCKED, Severity.LOW, ip_address=ip_address
        )

    async def _store_ip_block(self, ip_address: str, reason: str, duration: timedelta) -> datetime:
        until = self._clock() + duration
        payload = json.dumps({"until": until.isoformat(), "reason": reason})
        await self._store.set(IP_BLOCKED_PREFIX + ip_address, payload, ttl=ttl_seconds(duration))
        return until

    async def _read_ip_block(self, ip_address: str, now: datetime) -> IPBlockStatus:
        key = IP_BLOCKED_PREFIX + ip_address
        raw = await self._store.get(key)
        if raw is None:
            return IPBlockStatus()
        try:
            data = json.loads(raw)
            until = datetime.fromisoformat(data["until"])
            reason = str(data.get("reason", ""))
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Dropping unparseable IP block for {sanitize_for_log(ip_address)}")
            await self._store.delete(key)
            return IPBlockStatus()
        if now >= until:
            await self._store.delete(key)
            return IPBlockStatus()
        return IPBlockStatus(is_blocked=True, block_until=until, reason=reason)
