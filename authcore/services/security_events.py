# authcore/services/security_events.py
"""
Security event log.

Provides:
- log_security_event(): best-effort append to a capped list in the store
- record(): builder used by the guard and the session manager
- get_security_metrics(): aggregates over a trailing window
- alerting for high/critical events

Writing an event never raises: the audit trail is secondary to the auth
decision that produced it.
"""

import hashlib
import inspect
import json
import logging
import re
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, NamedTuple

from pydantic import ValidationError

from authcore.core.clock import Clock, utc_now
from authcore.core.log_utils import sanitize_for_log, sanitize_for_structured_log
from authcore.core.security_logger import SecurityLogger
from authcore.exceptions import StoreUnavailableError
from authcore.schemas.security_event import (
    ALERT_SEVERITIES,
    CountByKey,
    SecurityEvent,
    SecurityEventType,
    SecurityMetrics,
    Severity,
    TimeRange,
    resolve_window,
)
from authcore.store.base import KeyValueStore

logger = logging.getLogger(__name__)

EVENTS_KEY = "security_events"

# Maximum size for the serialized details payload (8KB)
MAX_DETAILS_SIZE = 8 * 1024

SENSITIVE_KEY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r".*token.*", r".*secret.*", r".*password.*", r".*api_key.*", r"^session_id$")
]

AlertHandler = Callable[[SecurityEvent], Awaitable[None] | None]


def session_ref(session_id: str) -> str:
    """Short, non-reversible reference to a session id for audit payloads."""
    return hashlib.sha256(session_id.encode()).hexdigest()[:16]


def sanitize_details(details: dict[str, Any] | None) -> dict[str, Any]:
    """
    Mask secrets, strip control characters and cap the payload size.

    Keys that look like credentials are replaced by "[REDACTED]"; when the
    serialized payload exceeds MAX_DETAILS_SIZE the largest values are dropped
    and "_truncated" is set.
    """
    if not details:
        return {}

    sanitized = sanitize_for_structured_log(details, max_str_len=1000)
    for key in list(sanitized):
        if any(p.match(key) for p in SENSITIVE_KEY_PATTERNS):
            sanitized[key] = "[REDACTED]"

    if len(json.dumps(sanitized, default=str)) > MAX_DETAILS_SIZE:
        sanitized["_truncated"] = True
        while len(json.dumps(sanitized, default=str)) > MAX_DETAILS_SIZE and len(sanitized) > 1:
            largest_key = max(
                (k for k in sanitized if k != "_truncated"),
                key=lambda k: len(str(sanitized[k])),
            )
            del sanitized[largest_key]

    return sanitized


async def default_alert_handler(event: SecurityEvent) -> None:
    logger.critical(
        "SECURITY ALERT: %s (%s) from %s user=%s details=%s",
        event.type.value,
        event.severity.value,
        sanitize_for_log(event.ip_address),
        sanitize_for_log(event.user_id),
        event.details,
    )


class EventWriteLimiter:
    """Caps in-flight event writes; excess events are dropped, not queued."""

    def __init__(self, max_concurrent: int = 100):
        self._max_concurrent = max_concurrent
        self._in_flight = 0
        self.dropped_count = 0

    def try_acquire(self) -> bool:
        if self._in_flight >= self._max_concurrent:
            self.dropped_count += 1
            if self.dropped_count % 100 == 1:
                logger.error(f"Security event limiter: dropped {self.dropped_count} events total.")
            return False
        self._in_flight += 1
        return True

    def release(self) -> None:
        self._in_flight = max(0, self._in_flight - 1)


class EventWindow(NamedTuple):
    events: list[SecurityEvent]
    # The retention cap was reached before the window start
    truncated: bool


class SecurityEventLog:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_retained: int = 1000,
        security_logger: SecurityLogger | None = None,
        alert_handler: AlertHandler | None = default_alert_handler,
        clock: Clock = utc_now,
        max_concurrent_writes: int = 100,
    ):
        self._store = store
        self._max_retained = max_retained
        self._security_logger = security_logger or SecurityLogger()
        self._alert_handler = alert_handler
        self._clock = clock
        self._limiter = EventWriteLimiter(max_concurrent_writes)

    async def log_security_event(self, event: SecurityEvent) -> bool:
        """Append ``event``; returns False when it could not be stored."""
        if not self._limiter.try_acquire():
            return False
        try:
            stored = await self._append(event)
            self._write_security_line(event)
            if event.severity in ALERT_SEVERITIES:
                await self._alert(event)
            return stored
        finally:
            self._limiter.release()

    async def record(
        self,
        event_type: SecurityEventType,
        severity: Severity = Severity.LOW,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
        blocked: bool = False,
    ) -> SecurityEvent:
        event = SecurityEvent(
            type=event_type,
            severity=severity,
            ip_address=sanitize_for_log(ip_address or "unknown", max_length=64),
            user_agent=sanitize_for_log(user_agent or "", max_length=512),
            user_id=user_id,
            details=sanitize_details(details),
            timestamp=self._clock(),
            blocked=blocked,
        )
        await self.log_security_event(event)
        return event

    async def _append(self, event: SecurityEvent) -> bool:
        try:
            await self._store.lpush(EVENTS_KEY, event.model_dump_json())
            await self._store.ltrim(EVENTS_KEY, 0, self._max_retained - 1)
            return True
        except StoreUnavailableError as e:
            logger.error(f"Failed to store security event {event.type.value}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error storing security event {event.type.value}: {e}")
        return False

    def _write_security_line(self, event: SecurityEvent) -> None:
        sec = self._security_logger
        details = event.details
        try:
            match event.type:
                case SecurityEventType.LOGIN_ATTEMPT:
                    sec.failed_login(
                        event.ip_address,
                        str(details.get("identifier", "")),
                        "BAD_CREDENTIALS",
                        int(details.get("attempts", 0)),
                    )
                case SecurityEventType.LOGIN_SUCCESS:
                    sec.successful_login(event.ip_address, str(details.get("identifier", "")))
                case SecurityEventType.LOCKOUT:
                    sec.account_locked(
                        event.ip_address,
                        str(details.get("identifier", "")),
                        int(details.get("lockout_seconds", 0)) // 60,
                    )
                case SecurityEventType.BRUTE_FORCE_ATTACK | SecurityEventType.IP_BLOCKED:
                    sec.ip_blocked(event.ip_address, str(details.get("reason", event.type.value)))
                case SecurityEventType.SUSPICIOUS_ACTIVITY if event.user_id:
                    sec.session_anomaly(
                        event.ip_address, event.user_id, str(details.get("reason", "unknown"))
                    )
                case _:
                    sec.event(
                        event.type.value, event.ip_address, event.severity.value, event.user_id
                    )
        except Exception as e:
            logger.warning(f"Security log line for {event.type.value} not written: {e}")

    async def _alert(self, event: SecurityEvent) -> None:
        if self._alert_handler is None:
            return
        try:
            result = self._alert_handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Security alert handler failed for {event.type.value}: {e}")

    async def get_recent_events(
        self, limit: int = 100, event_type: SecurityEventType | None = None
    ) -> list[SecurityEvent]:
        """Newest-first events; raises StoreUnavailableError."""
        raw = await self._store.lrange(EVENTS_KEY, 0, self._max_retained - 1)
        events = []
        for event in _parse_events(raw):
            if event_type is None or event.type == event_type:
                events.append(event)
            if len(events) >= limit:
                break
        return events

    async def events_since(self, window: timedelta) -> EventWindow:
        """
        Events newer than ``now - window``, newest first.

        ``truncated`` is set when the list is at its retention cap and its
        oldest entry is still inside the window, so older events were trimmed.
        """
        cutoff = self._clock() - window
        raw = await self._store.lrange(EVENTS_KEY, 0, self._max_retained - 1)
        retained = _parse_events(raw)
        truncated = (
            len(raw) >= self._max_retained
            and bool(retained)
            and retained[-1].timestamp > cutoff
        )
        return EventWindow([e for e in retained if e.timestamp >= cutoff], truncated)

    async def get_security_metrics(
        self, time_range: TimeRange | timedelta = "24h"
    ) -> SecurityMetrics:
        """Aggregate the trailing window. Fails open with ``degraded=True``."""
        window = resolve_window(time_range)
        try:
            events, truncated = await self.events_since(window)
        except StoreUnavailableError as e:
            logger.warning(f"Security metrics unavailable: {e}")
            return SecurityMetrics(degraded=True)

        by_type = Counter(e.type.value for e in events)
        by_source = Counter(e.ip_address for e in events)
        by_severity = Counter(e.severity.value for e in events)

        return SecurityMetrics(
            total_events=len(events),
            blocked_attempts=sum(1 for e in events if e.blocked),
            top_threats=[CountByKey(key=k, count=c) for k, c in by_type.most_common(5)],
            threat_sources=[CountByKey(key=k, count=c) for k, c in by_source.most_common(10)],
            events_by_severity=dict(by_severity),
            truncated=truncated,
        )


def _parse_events(raw: list[str]) -> list[SecurityEvent]:
    events = []
    for item in raw:
        try:
            events.append(SecurityEvent.model_validate_json(item))
        except ValidationError:
            logger.warning("Skipping unparseable security event record.")
    return events
