# tests/unit/services/test_session_manager.py
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from authcore.core.clock import FrozenClock
from authcore.core.config import SessionConfig
from authcore.exceptions import StoreUnavailableError
from authcore.schemas.security_event import SecurityEventType, Severity
from authcore.schemas.session import SessionState
from authcore.services.security_events import SecurityEventLog
from authcore.services.session_manager import (
    SESSION_PREFIX,
    USER_SESSIONS_PREFIX,
    SessionManager,
    user_agent_family,
)
from authcore.store.base import KeyValueStore
from authcore.store.memory import MemoryStore

USER = "user-42"
EMAIL = "shopper@store.io"
IP = "1.1.1.1"
UA = "Mozilla/5.0 (Macintosh) Safari/605.1.15"


async def _create(manager: SessionManager, ip: str = IP, ua: str = UA, **kwargs):
    return await manager.create_session(USER, EMAIL, "customer", ip, ua, **kwargs)


# --- Creation and validation ---


@pytest.mark.asyncio
async def test_validate_right_after_create(session_manager: SessionManager) -> None:
    session_id, session = await _create(session_manager)

    result = await session_manager.validate_session(session_id, IP, UA)

    assert result.is_valid is True
    assert result.state == SessionState.ACTIVE
    assert result.security_warnings == []
    assert result.should_refresh is False
    assert result.requires_reauth is False
    assert result.session.user_id == USER
    assert len(session_id) == 64
    assert session.expires_at == session.created_at + timedelta(hours=24)


@pytest.mark.asyncio
async def test_session_ids_are_unique(session_manager: SessionManager) -> None:
    ids = {(await _create(session_manager))[0] for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.asyncio
async def test_unknown_session(session_manager: SessionManager) -> None:
    result = await session_manager.validate_session("does-not-exist", IP, UA)

    assert result.is_valid is False
    assert result.state == SessionState.ABSENT
    assert result.should_refresh is False
    assert result.security_warnings == ["Session not found"]


@pytest.mark.asyncio
async def test_absolute_expiry(store: MemoryStore, clock: FrozenClock) -> None:
    # Idle timeout equal to max age so only absolute expiry can trigger
    config = SessionConfig(max_age=timedelta(minutes=30), idle_timeout=timedelta(minutes=30))
    manager = SessionManager(store, config, SecurityEventLog(store, alert_handler=None), clock)
    session_id, session = await _create(manager)

    # Keep it active, then pass expires_at
    clock.advance(minutes=20)
    assert (await manager.validate_session(session_id, IP, UA)).is_valid
    # Re-store without TTL so the record is still there once expires_at has passed
    await store.set(SESSION_PREFIX + session_id, session.model_dump_json())
    clock.advance(minutes=11)

    result = await manager.validate_session(session_id, IP, UA)
    assert result.is_valid is False
    assert result.should_refresh is True
    assert result.state == SessionState.ABSOLUTE_EXPIRED
    assert await store.get(SESSION_PREFIX + session_id) is None


@pytest.mark.asyncio
async def test_idle_timeout_invalidates_before_expiry(
    session_manager: SessionManager, store: MemoryStore, clock: FrozenClock
) -> None:
    session_id, _ = await _create(session_manager)
    clock.advance(minutes=31)

    result = await session_manager.validate_session(session_id, IP, UA)

    assert result.is_valid is False
    assert result.should_refresh is True
    assert result.state == SessionState.IDLE_EXPIRED
    assert await store.get(SESSION_PREFIX + session_id) is None
    assert (await session_manager.validate_session(session_id, IP, UA)).state == (
        SessionState.ABSENT
    )


@pytest.mark.asyncio
async def test_activity_keeps_session_alive(
    session_manager: SessionManager, clock: FrozenClock
) -> None:
    session_id, _ = await _create(session_manager)
    for _ in range(4):
        clock.advance(minutes=20)
        assert (await session_manager.validate_session(session_id, IP, UA)).is_valid


@pytest.mark.asyncio
async def test_revoked_flag(session_manager: SessionManager, store: MemoryStore) -> None:
    session_id, session = await _create(session_manager)
    revoked = session.model_copy(update={"is_active": False})
    await store.set(SESSION_PREFIX + session_id, revoked.model_dump_json())

    result = await session_manager.validate_session(session_id, IP, UA)

    assert result.is_valid is False
    assert result.state == SessionState.REVOKED
    assert await store.get(SESSION_PREFIX + session_id) is None


@pytest.mark.asyncio
async def test_corrupted_record_is_destroyed(
    session_manager: SessionManager, store: MemoryStore
) -> None:
    await store.set(SESSION_PREFIX + "broken", "{not json")

    result = await session_manager.validate_session("broken", IP, UA)

    assert result.is_valid is False
    assert result.security_warnings == ["Session data corrupted"]
    assert await store.get(SESSION_PREFIX + "broken") is None


async def _strip_timezone(store: MemoryStore, session_id: str, field: str) -> None:
    record = json.loads(await store.get(SESSION_PREFIX + session_id))
    record[field] = "2024-01-01T12:00:00"
    await store.set(SESSION_PREFIX + session_id, json.dumps(record))


@pytest.mark.asyncio
async def test_timestamp_without_timezone_is_treated_as_corrupted(
    session_manager: SessionManager, store: MemoryStore
) -> None:
    session_id, _ = await _create(session_manager)
    await _strip_timezone(store, session_id, "expires_at")

    result = await session_manager.validate_session(session_id, IP, UA)

    assert result.is_valid is False
    assert result.security_warnings == ["Session data corrupted"]
    assert await store.get(SESSION_PREFIX + session_id) is None
    assert await session_manager.get_user_sessions(USER) == []
    assert await store.smembers(USER_SESSIONS_PREFIX + USER) == set()


@pytest.mark.asyncio
async def test_last_activity_never_moves_backwards(
    session_manager: SessionManager, store: MemoryStore, clock: FrozenClock
) -> None:
    session_id, session = await _create(session_manager)
    future = session.model_copy(update={"last_activity": clock() + timedelta(minutes=5)})
    await store.set(SESSION_PREFIX + session_id, future.model_dump_json())

    result = await session_manager.validate_session(session_id, IP, UA)

    assert result.session.last_activity == clock() + timedelta(minutes=5)


# --- Drift detection ---


@pytest.mark.asyncio
async def test_ip_change_warns_and_logs_medium_event(
    session_manager: SessionManager, event_log: SecurityEventLog
) -> None:
    session_id, _ = await _create(session_manager, ip="1.1.1.1")

    result = await session_manager.validate_session(session_id, "2.2.2.2", UA)

    assert result.is_valid is True
    assert "IP address changed" in result.security_warnings
    assert result.requires_reauth is True

    events = await event_log.get_recent_events(event_type=SecurityEventType.SUSPICIOUS_ACTIVITY)
    assert len(events) == 1
    assert events[0].severity == Severity.MEDIUM
    assert events[0].details["old_ip"] == "1.1.1.1"
    assert events[0].details["new_ip"] == "2.2.2.2"
    assert session_id not in str(events[0].details)


@pytest.mark.asyncio
async def test_user_agent_change_is_advisory(
    session_manager: SessionManager, event_log: SecurityEventLog
) -> None:
    session_id, _ = await _create(session_manager)

    result = await session_manager.validate_session(session_id, IP, "Mozilla/5.0 Firefox/121.0")

    assert result.is_valid is True
    assert result.security_warnings == ["User agent changed"]
    assert result.requires_reauth is False
    assert not await event_log.get_recent_events(
        event_type=SecurityEventType.SUSPICIOUS_ACTIVITY
    )


@pytest.mark.asyncio
async def test_device_fingerprint_change(session_manager: SessionManager) -> None:
    session_id, _ = await _create(session_manager, device_fingerprint="fp-1")

    same = await session_manager.validate_session(session_id, IP, UA, device_fingerprint="fp-1")
    changed = await session_manager.validate_session(session_id, IP, UA, device_fingerprint="fp-2")

    assert same.security_warnings == []
    assert changed.security_warnings == ["Device fingerprint changed"]
    assert changed.requires_reauth is True


@pytest.mark.asyncio
async def test_fingerprint_ignored_when_tracking_disabled(
    store: MemoryStore, clock: FrozenClock
) -> None:
    manager = SessionManager(store, SessionConfig(track_devices=False), clock=clock)
    session_id, session = await _create(manager, device_fingerprint="fp-1")

    result = await manager.validate_session(session_id, IP, UA, device_fingerprint="fp-2")

    assert session.device_fingerprint is None
    assert result.security_warnings == []


@pytest.mark.asyncio
async def test_reauth_after_interval(session_manager: SessionManager, clock: FrozenClock) -> None:
    session_id, _ = await _create(session_manager)
    for _ in range(3):
        clock.advance(minutes=25)
        result = await session_manager.validate_session(session_id, IP, UA)

    assert result.is_valid is True
    assert result.security_warnings == []
    assert result.requires_reauth is True


@pytest.mark.asyncio
async def test_reauth_disabled(store: MemoryStore, clock: FrozenClock) -> None:
    manager = SessionManager(store, SessionConfig(require_reauth=False), clock=clock)
    session_id, _ = await _create(manager)

    result = await manager.validate_session(session_id, "9.9.9.9", UA)

    assert "IP address changed" in result.security_warnings
    assert result.requires_reauth is False


# --- Refresh ---


@pytest.mark.asyncio
async def test_should_refresh_near_expiry(store: MemoryStore, clock: FrozenClock) -> None:
    config = SessionConfig(max_age=timedelta(minutes=20), idle_timeout=timedelta(minutes=20))
    manager = SessionManager(store, config, clock=clock)
    session_id, _ = await _create(manager)

    clock.advance(minutes=16)
    result = await manager.validate_session(session_id, IP, UA)

    assert result.is_valid is True
    assert result.should_refresh is True


@pytest.mark.asyncio
async def test_refresh_then_validate(store: MemoryStore, clock: FrozenClock) -> None:
    config = SessionConfig(max_age=timedelta(minutes=20), idle_timeout=timedelta(minutes=20))
    manager = SessionManager(store, config, clock=clock)
    session_id, _ = await _create(manager)
    clock.advance(minutes=16)

    refreshed = await manager.refresh_session(session_id)
    result = await manager.validate_session(session_id, IP, UA)

    assert refreshed.success is True
    assert refreshed.new_expires_at == clock() + timedelta(minutes=20)
    assert result.is_valid is True
    assert result.should_refresh is False


@pytest.mark.asyncio
async def test_refresh_missing_session(session_manager: SessionManager) -> None:
    result = await session_manager.refresh_session("gone")
    assert result.success is False
    assert result.new_expires_at is None


@pytest.mark.asyncio
async def test_refresh_idle_session_fails_and_destroys(
    session_manager: SessionManager, store: MemoryStore, clock: FrozenClock
) -> None:
    session_id, _ = await _create(session_manager)
    clock.advance(minutes=31)

    assert (await session_manager.refresh_session(session_id)).success is False
    assert await store.get(SESSION_PREFIX + session_id) is None


@pytest.mark.asyncio
async def test_refresh_corrupted_session(
    session_manager: SessionManager, store: MemoryStore
) -> None:
    await store.set(SESSION_PREFIX + "broken", "[]")

    assert (await session_manager.refresh_session("broken")).success is False
    assert await store.get(SESSION_PREFIX + "broken") is None


# --- Destroy ---


@pytest.mark.asyncio
async def test_destroy_is_idempotent(session_manager: SessionManager, store: MemoryStore) -> None:
    session_id, _ = await _create(session_manager)

    assert await session_manager.destroy_session(session_id) is True
    assert await session_manager.destroy_session(session_id) is False
    assert await store.get(SESSION_PREFIX + session_id) is None
    assert session_id not in await store.smembers(USER_SESSIONS_PREFIX + USER)


@pytest.mark.asyncio
async def test_destroy_logs_event_without_raw_id(
    session_manager: SessionManager, event_log: SecurityEventLog
) -> None:
    session_id, _ = await _create(session_manager)
    await session_manager.destroy_session(session_id)

    events = await event_log.get_recent_events(event_type=SecurityEventType.SESSION_DESTROYED)
    assert len(events) == 1
    assert events[0].details["reason"] == "logout"
    assert session_id not in events[0].model_dump_json()


@pytest.mark.asyncio
async def test_destroy_all_user_sessions(session_manager: SessionManager) -> None:
    keep, _ = await _create(session_manager)
    for _ in range(3):
        await _create(session_manager)

    destroyed = await session_manager.destroy_all_user_sessions(USER, except_session_id=keep)

    assert destroyed == 3
    remaining = await session_manager.get_user_sessions(USER)
    assert [s.id for s in remaining] == [keep]

    assert await session_manager.destroy_all_user_sessions(USER) == 1
    assert await session_manager.get_user_sessions(USER) == []


# --- Concurrency cap ---


@pytest.mark.asyncio
async def test_concurrent_session_limit_evicts_least_recently_active(
    session_manager: SessionManager, clock: FrozenClock, event_log: SecurityEventLog
) -> None:
    ids = []
    for _ in range(5):
        session_id, _ = await _create(session_manager)
        ids.append(session_id)
        clock.advance(minutes=1)

    # Touch the oldest so the second one becomes least recently active
    await session_manager.validate_session(ids[0], IP, UA)
    clock.advance(minutes=1)

    newest, _ = await _create(session_manager)
    sessions = {s.id for s in await session_manager.get_user_sessions(USER)}

    assert len(sessions) == 5
    assert ids[1] not in sessions
    assert ids[0] in sessions
    assert newest in sessions

    summary = await event_log.get_recent_events(event_type=SecurityEventType.SUSPICIOUS_ACTIVITY)
    assert summary[0].details["reason"] == "concurrent_session_limit"
    assert summary[0].details["removed_sessions"] == 1


# --- Enumeration and index repair ---


@pytest.mark.asyncio
async def test_get_user_sessions_repairs_dangling_entries(
    session_manager: SessionManager, store: MemoryStore
) -> None:
    live, _ = await _create(session_manager)
    await store.sadd(USER_SESSIONS_PREFIX + USER, "ghost-session")

    sessions = await session_manager.get_user_sessions(USER)

    assert [s.id for s in sessions] == [live]
    assert await store.smembers(USER_SESSIONS_PREFIX + USER) == {live}


@pytest.mark.asyncio
async def test_get_user_sessions_drops_expired_and_corrupted(
    session_manager: SessionManager, store: MemoryStore, clock: FrozenClock
) -> None:
    stale, _ = await _create(session_manager)
    clock.advance(minutes=31)
    fresh, _ = await _create(session_manager)
    await store.set(SESSION_PREFIX + "corrupt", "{oops")
    await store.sadd(USER_SESSIONS_PREFIX + USER, "corrupt")

    sessions = await session_manager.get_user_sessions(USER)

    assert [s.id for s in sessions] == [fresh]
    assert await store.get(SESSION_PREFIX + stale) is None
    assert await store.get(SESSION_PREFIX + "corrupt") is None
    assert await store.smembers(USER_SESSIONS_PREFIX + USER) == {fresh}


# --- Cleanup and metrics ---


@pytest.mark.asyncio
async def test_cleanup_expired_sessions(
    session_manager: SessionManager, store: MemoryStore, clock: FrozenClock
) -> None:
    idle_a, _ = await _create(session_manager)
    idle_b, _ = await session_manager.create_session("user-7", "x@store.io", "admin", IP, UA)
    clock.advance(minutes=25)
    active, _ = await _create(session_manager)
    clock.advance(minutes=10)
    await store.set(SESSION_PREFIX + "corrupt", "nope")
    await store.sadd(USER_SESSIONS_PREFIX + "user-7", "ghost")

    cleaned = await session_manager.cleanup_expired_sessions()

    assert cleaned == 3
    assert await store.keys(SESSION_PREFIX) == [SESSION_PREFIX + active]
    assert await store.smembers(USER_SESSIONS_PREFIX + USER) == {active}
    assert await store.smembers(USER_SESSIONS_PREFIX + "user-7") == set()


@pytest.mark.asyncio
async def test_cleanup_continues_past_timestamp_without_timezone(
    session_manager: SessionManager, store: MemoryStore, clock: FrozenClock
) -> None:
    naive, _ = await _create(session_manager)
    stale, _ = await session_manager.create_session("user-7", "x@store.io", "admin", IP, UA)
    await _strip_timezone(store, naive, "last_activity")
    clock.advance(minutes=31)

    cleaned = await session_manager.cleanup_expired_sessions()

    assert cleaned == 2
    assert await store.get(SESSION_PREFIX + naive) is None
    assert await store.get(SESSION_PREFIX + stale) is None
    assert await store.smembers(USER_SESSIONS_PREFIX + USER) == set()


@pytest.mark.asyncio
async def test_cleanup_with_nothing_to_do(session_manager: SessionManager) -> None:
    await _create(session_manager)
    assert await session_manager.cleanup_expired_sessions() == 0


@pytest.mark.asyncio
async def test_session_metrics(session_manager: SessionManager, clock: FrozenClock) -> None:
    first, _ = await _create(session_manager)
    await session_manager.create_session("user-9", "y@store.io", "customer", IP, "curl/8.0")
    clock.advance(minutes=10)
    await session_manager.validate_session(first, "3.3.3.3", UA)

    metrics = await session_manager.get_session_metrics()

    assert metrics.total_active_sessions == 2
    assert metrics.sessions_last_24h == 2
    assert metrics.suspicious_activities == 1
    # first: 10 minutes of activity, second: none
    assert metrics.average_session_duration_seconds == 300.0
    assert {c.key for c in metrics.top_user_agents} == {"Safari", "curl"}


def test_user_agent_family() -> None:
    assert user_agent_family("Mozilla/5.0 Chrome/120.0 Safari/537.36") == "Chrome"
    assert user_agent_family("Mozilla/5.0 Chrome/120.0 Safari/537.36 Edg/120.0") == "Edge"
    assert user_agent_family("Mozilla/5.0 Firefox/121.0") == "Firefox"
    assert user_agent_family("") == "Unknown"
    assert user_agent_family("SomeBot/1.0") == "Other"


@pytest.mark.asyncio
async def test_store_outage_propagates_from_validation() -> None:
    store = AsyncMock(spec=KeyValueStore)
    store.get.side_effect = StoreUnavailableError("down")
    manager = SessionManager(store)

    with pytest.raises(StoreUnavailableError):
        await manager.validate_session("any", IP, UA)
