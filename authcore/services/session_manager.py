# authcore/services/session_manager.py
"""
Session lifecycle management.

Sessions are stored as JSON under ``session:{id}`` with a TTL equal to their
remaining lifetime. ``user_sessions:{user_id}`` is a set of ids kept for
enumeration and eviction only. It is updated separately from the records, so
it may briefly point at sessions that no longer exist; every read that walks
it repairs it.
"""

import logging
import secrets
from collections import Counter
from datetime import datetime, timedelta

from pydantic import ValidationError

from authcore.core.clock import Clock, ttl_seconds, utc_now
from authcore.core.config import SessionConfig
from authcore.core.log_utils import sanitize_for_log
from authcore.exceptions import SessionDataCorruptedError
from authcore.schemas.security_event import CountByKey, SecurityEventType, Severity
from authcore.schemas.session import (
    DestroyReason,
    RefreshResult,
    SessionData,
    SessionMetrics,
    SessionState,
    SessionValidationResult,
)
from authcore.services.security_events import SecurityEventLog, session_ref
from authcore.store.base import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
USER_SESSIONS_PREFIX = "user_sessions:"

WARNING_NOT_FOUND = "Session not found"
WARNING_CORRUPTED = "Session data corrupted"
WARNING_EXPIRED = "Session expired"
WARNING_IDLE = "Session idle timeout"
WARNING_REVOKED = "Session revoked"
WARNING_IP_CHANGED = "IP address changed"
WARNING_UA_CHANGED = "User agent changed"
WARNING_DEVICE_CHANGED = "Device fingerprint changed"

# Warnings that force step-up authentication on their own
REAUTH_WARNINGS = frozenset({WARNING_IP_CHANGED, WARNING_DEVICE_CHANGED})

METRICS_WINDOW = timedelta(hours=24)

_UA_FAMILIES = (
    ("Edg/", "Edge"),
    ("OPR/", "Opera"),
    ("Firefox/", "Firefox"),
    ("Chrome/", "Chrome"),
    ("Safari/", "Safari"),
    ("curl/", "curl"),
)


def new_session_id() -> str:
    """256 bits from the OS CSPRNG, hex encoded."""
    return secrets.token_hex(32)


def user_agent_family(user_agent: str) -> str:
    for marker, family in _UA_FAMILIES:
        if marker in user_agent:
            return family
    return "Other" if user_agent else "Unknown"


def _parse_session(raw: str) -> SessionData:
    try:
        return SessionData.model_validate_json(raw)
    except ValidationError as e:
        raise SessionDataCorruptedError(str(e)) from e


class SessionManager:
    def __init__(
        self,
        store: KeyValueStore,
        config: SessionConfig | None = None,
        event_log: SecurityEventLog | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self.config = config or SessionConfig()
        self._events = event_log or SecurityEventLog(store, clock=clock)
        self._clock = clock

    # --- Storage helpers ---

    async def _load(self, session_id: str) -> SessionData | None:
        """Return the stored record, None if absent; raises SessionDataCorruptedError."""
        raw = await self._store.get(SESSION_PREFIX + session_id)
        if raw is None:
            return None
        return _parse_session(raw)

    async def _save(self, session: SessionData, now: datetime) -> None:
        await self._store.set(
            SESSION_PREFIX + session.id,
            session.model_dump_json(),
            ttl=ttl_seconds(session.expires_at - now),
        )

    def _state_of(self, session: SessionData, now: datetime) -> SessionState:
        if not session.is_active:
            return SessionState.REVOKED
        if session.is_expired(now):
            return SessionState.ABSOLUTE_EXPIRED
        if session.is_idle(now, self.config.idle_timeout):
            return SessionState.IDLE_EXPIRED
        return SessionState.ACTIVE

    # --- Lifecycle ---

    async def create_session(
        self,
        user_id: str,
        email: str,
        role: str,
        ip_address: str,
        user_agent: str,
        device_fingerprint: str | None = None,
    ) -> tuple[str, SessionData]:
        """
        Issue a new session for an authenticated user.

        The concurrency cap is enforced first, so the new session always fits.
        """
        await self._enforce_concurrent_session_limit(user_id)

        now = self._clock()
        session = SessionData(
            id=new_session_id(),
            user_id=user_id,
            email=email,
            role=role,
            ip_address=ip_address,
            user_agent=user_agent,
            device_fingerprint=device_fingerprint if self.config.track_devices else None,
            created_at=now,
            last_activity=now,
            expires_at=now + self.config.max_age,
        )
        await self._save(session, now)

        index_key = USER_SESSIONS_PREFIX + user_id
        await self._store.sadd(index_key, session.id)
        await self._store.expire(index_key, ttl_seconds(self.config.max_age))

        logger.info(
            f"Session created for user {sanitize_for_log(user_id)} "
            f"(ref {session_ref(session.id)}) from {sanitize_for_log(ip_address)}"
        )
        await self._events.record(
            SecurityEventType.SESSION_CREATED,
            Severity.LOW,
            ip_address=ip_address,
            user_agent=user_agent,
            user_id=user_id,
            details={"session_ref": session_ref(session.id), "email": email, "role": role},
        )
        return session.id, session

    async def _enforce_concurrent_session_limit(self, user_id: str) -> None:
        sessions = await self.get_user_sessions(user_id)
        limit = self.config.max_concurrent_sessions
        if len(sessions) < limit:
            return

        # Oldest activity goes first; the snapshot may be stale under concurrent logins,
        # which can only evict more, never leave the user above the cap
        sessions.sort(key=lambda s: s.last_activity)
        to_remove = sessions[: len(sessions) - limit + 1]
        for session in to_remove:
            await self.destroy_session(session.id, DestroyReason.CONCURRENT_SESSION_LIMIT)

        logger.info(
            f"Concurrent session limit reached for user {sanitize_for_log(user_id)}: "
            f"evicted {len(to_remove)} session(s)."
        )
        await self._events.record(
            SecurityEventType.SUSPICIOUS_ACTIVITY,
            Severity.MEDIUM,
            ip_address="system",
            user_agent="system",
            user_id=user_id,
            details={
                "reason": "concurrent_session_limit",
                "removed_sessions": len(to_remove),
                "limit": limit,
            },
        )

    async def validate_session(
        self,
        session_id: str,
        ip_address: str,
        user_agent: str,
        device_fingerprint: str | None = None,
    ) -> SessionValidationResult:
        """
        Check a presented session id against the request context.

        Expired, idle, revoked and corrupted sessions are destroyed and
        reported invalid. An active session gets its last activity bumped;
        IP, User-Agent and device drift are reported as warnings without
        invalidating it.
        """
        try:
            session = await self._load(session_id)
        except SessionDataCorruptedError as e:
            logger.warning(f"Corrupted session record (ref {session_ref(session_id)}): {e}")
            await self.destroy_session(session_id, DestroyReason.CORRUPTED)
            return SessionValidationResult(is_valid=False, security_warnings=[WARNING_CORRUPTED])

        if session is None:
            return SessionValidationResult(is_valid=False, security_warnings=[WARNING_NOT_FOUND])

        now = self._clock()
        state = self._state_of(session, now)
        if state is SessionState.REVOKED:
            await self.destroy_session(session_id, DestroyReason.REVOKED)
            return SessionValidationResult(
                is_valid=False, state=state, security_warnings=[WARNING_REVOKED]
            )
        if state is SessionState.ABSOLUTE_EXPIRED:
            await self.destroy_session(session_id, DestroyReason.ABSOLUTE_EXPIRY)
            return SessionValidationResult(
                is_valid=False,
                state=state,
                should_refresh=True,
                security_warnings=[WARNING_EXPIRED],
            )
        if state is SessionState.IDLE_EXPIRED:
            await self.destroy_session(session_id, DestroyReason.IDLE_TIMEOUT)
            return SessionValidationResult(
                is_valid=False, state=state, should_refresh=True, security_warnings=[WARNING_IDLE]
            )

        warnings = await self._detect_drift(session, ip_address, user_agent, device_fingerprint)

        session = session.model_copy(update={"last_activity": max(session.last_activity, now)})
        await self._save(session, now)

        should_refresh = session.expires_at - now < self.config.refresh_lookahead
        requires_reauth = self.config.require_reauth and (
            any(w in REAUTH_WARNINGS for w in warnings)
            or now - session.created_at > self.config.reauth_interval
        )
        return SessionValidationResult(
            is_valid=True,
            session=session,
            state=SessionState.ACTIVE,
            should_refresh=should_refresh,
            security_warnings=warnings,
            requires_reauth=requires_reauth,
        )

    async def _detect_drift(
        self,
        session: SessionData,
        ip_address: str,
        user_agent: str,
        device_fingerprint: str | None,
    ) -> list[str]:
        warnings: list[str] = []
        ref = session_ref(session.id)

        if session.ip_address != ip_address:
            warnings.append(WARNING_IP_CHANGED)
            await self._events.record(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                Severity.MEDIUM,
                ip_address=ip_address,
                user_agent=user_agent,
                user_id=session.user_id,
                details={
                    "reason": "ip_changed",
                    "session_ref": ref,
                    "old_ip": session.ip_address,
                    "new_ip": ip_address,
                },
            )

        # Less strict: browsers update their UA string on their own
        if session.user_agent != user_agent:
            warnings.append(WARNING_UA_CHANGED)

        if (
            self.config.track_devices
            and session.device_fingerprint
            and device_fingerprint
            and session.device_fingerprint != device_fingerprint
        ):
            warnings.append(WARNING_DEVICE_CHANGED)
            await self._events.record(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                Severity.MEDIUM,
                ip_address=ip_address,
                user_agent=user_agent,
                user_id=session.user_id,
                details={"reason": "device_changed", "session_ref": ref},
            )

        return warnings

    async def refresh_session(self, session_id: str) -> RefreshResult:
        """Extend a live session to ``now + max_age``."""
        try:
            session = await self._load(session_id)
        except SessionDataCorruptedError as e:
            logger.warning(f"Cannot refresh corrupted session (ref {session_ref(session_id)}): {e}")
            await self.destroy_session(session_id, DestroyReason.CORRUPTED)
            return RefreshResult(success=False)

        if session is None:
            return RefreshResult(success=False)

        now = self._clock()
        state = self._state_of(session, now)
        if state is not SessionState.ACTIVE:
            # A lapsed session must be re-issued through login, not revived
            await self.destroy_session(session_id, _DESTROY_REASONS[state])
            return RefreshResult(success=False)

        session = session.model_copy(
            update={
                "expires_at": now + self.config.max_age,
                "last_activity": max(session.last_activity, now),
            }
        )
        await self._save(session, now)
        await self._store.expire(
            USER_SESSIONS_PREFIX + session.user_id, ttl_seconds(self.config.max_age)
        )

        await self._events.record(
            SecurityEventType.SESSION_REFRESHED,
            Severity.LOW,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            user_id=session.user_id,
            details={"session_ref": session_ref(session_id)},
        )
        return RefreshResult(success=True, new_expires_at=session.expires_at)

    async def destroy_session(
        self, session_id: str, reason: DestroyReason = DestroyReason.LOGOUT
    ) -> bool:
        """
        Remove a session and its index membership.

        Idempotent: returns False when there was nothing to remove.
        """
        try:
            session = await self._load(session_id)
        except SessionDataCorruptedError:
            # Owner unknown; the dangling index entry is repaired on the next scan
            session = None
            reason = DestroyReason.CORRUPTED

        removed = await self._store.delete(SESSION_PREFIX + session_id)
        if session is not None:
            await self._store.srem(USER_SESSIONS_PREFIX + session.user_id, session_id)

        if not removed:
            return False

        logger.info(
            f"Session destroyed (ref {session_ref(session_id)}, reason {reason.value})"
        )
        await self._events.record(
            SecurityEventType.SESSION_DESTROYED,
            Severity.LOW,
            ip_address=session.ip_address if session else "system",
            user_agent=session.user_agent if session else "system",
            user_id=session.user_id if session else None,
            details={"session_ref": session_ref(session_id), "reason": reason.value},
        )
        return True

    async def destroy_all_user_sessions(
        self, user_id: str, except_session_id: str | None = None
    ) -> int:
        """Log a user out everywhere, optionally keeping the current session."""
        index_key = USER_SESSIONS_PREFIX + user_id
        destroyed = 0
        for session_id in await self._store.smembers(index_key):
            if session_id == except_session_id:
                continue
            if await self.destroy_session(session_id, DestroyReason.REVOKE_ALL):
                destroyed += 1
            else:
                await self._store.srem(index_key, session_id)

        logger.info(
            f"Revoked {destroyed} session(s) for user {sanitize_for_log(user_id)}"
            + (" (current session kept)" if except_session_id else "")
        )
        return destroyed

    async def get_user_sessions(self, user_id: str) -> list[SessionData]:
        """
        Sessions of ``user_id`` that are valid right now.

        Expired or corrupted records found during the scan are destroyed and
        index entries pointing at missing records are removed.
        """
        index_key = USER_SESSIONS_PREFIX + user_id
        now = self._clock()
        sessions: list[SessionData] = []
        dangling: list[str] = []

        for session_id in await self._store.smembers(index_key):
            try:
                session = await self._load(session_id)
            except SessionDataCorruptedError:
                await self.destroy_session(session_id, DestroyReason.CORRUPTED)
                dangling.append(session_id)
                continue

            if session is None or session.user_id != user_id:
                dangling.append(session_id)
                continue

            state = self._state_of(session, now)
            if state is SessionState.ACTIVE:
                sessions.append(session)
            else:
                await self.destroy_session(session_id, _DESTROY_REASONS[state])

        if dangling:
            await self._store.srem(index_key, *dangling)
            logger.debug(
                f"Removed {len(dangling)} dangling index entries "
                f"for user {sanitize_for_log(user_id)}"
            )
        return sessions

    # --- Maintenance ---

    async def cleanup_expired_sessions(self) -> int:
        """
        Sweep every stored session and drop the ones past expiry or idle timeout.

        Works record by record so it can run alongside live traffic. Returns
        the number of session records removed; index repair is not counted.
        """
        now = self._clock()
        cleaned = 0

        for key in await self._store.keys(SESSION_PREFIX):
            session_id = key[len(SESSION_PREFIX) :]
            try:
                session = await self._load(session_id)
            except SessionDataCorruptedError:
                if await self.destroy_session(session_id, DestroyReason.CORRUPTED):
                    cleaned += 1
                continue
            if session is None:
                continue

            state = self._state_of(session, now)
            if state is not SessionState.ACTIVE:
                if await self.destroy_session(session_id, _DESTROY_REASONS[state]):
                    cleaned += 1

        repaired = await self._repair_indexes()
        if cleaned or repaired:
            logger.info(
                f"Session cleanup: removed {cleaned} session(s), "
                f"{repaired} dangling index entries."
            )
        return cleaned

    async def _repair_indexes(self) -> int:
        repaired = 0
        for index_key in await self._store.keys(USER_SESSIONS_PREFIX):
            members = await self._store.smembers(index_key)
            dangling = [
                sid for sid in members if await self._store.get(SESSION_PREFIX + sid) is None
            ]
            if dangling:
                repaired += await self._store.srem(index_key, *dangling)
        return repaired

    async def get_session_metrics(self) -> SessionMetrics:
        """Dashboard aggregates from live records and the last 24h of events."""
        now = self._clock()
        live: list[SessionData] = []
        for key in await self._store.keys(SESSION_PREFIX):
            try:
                session = await self._load(key[len(SESSION_PREFIX) :])
            except SessionDataCorruptedError:
                continue
            if session is not None and self._state_of(session, now) is SessionState.ACTIVE:
                live.append(session)

        events, truncated = await self._events.events_since(METRICS_WINDOW)
        created = sum(1 for e in events if e.type == SecurityEventType.SESSION_CREATED)
        suspicious = sum(1 for e in events if e.type == SecurityEventType.SUSPICIOUS_ACTIVITY)

        average = 0.0
        if live:
            total = sum((s.last_activity - s.created_at).total_seconds() for s in live)
            average = total / len(live)

        families = Counter(user_agent_family(s.user_agent) for s in live)
        return SessionMetrics(
            total_active_sessions=len(live),
            sessions_last_24h=created,
            average_session_duration_seconds=average,
            top_user_agents=[CountByKey(key=k, count=c) for k, c in families.most_common(5)],
            suspicious_activities=suspicious,
            truncated=truncated,
        )


_DESTROY_REASONS = {
    SessionState.REVOKED: DestroyReason.REVOKED,
    SessionState.ABSOLUTE_EXPIRED: DestroyReason.ABSOLUTE_EXPIRY,
    SessionState.IDLE_EXPIRED: DestroyReason.IDLE_TIMEOUT,
}
