# tests/conftest.py
import pytest

from authcore.core.clock import FrozenClock
from authcore.core.config import BruteForceConfig, SessionConfig
from authcore.core.security_logger import SecurityLogger
from authcore.services.brute_force_guard import BruteForceGuard
from authcore.services.security_events import SecurityEventLog
from authcore.services.session_manager import SessionManager
from authcore.store.memory import MemoryStore


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store(clock: FrozenClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def security_logger() -> SecurityLogger:
    # No path: lines go to a NullHandler
    return SecurityLogger(logger_name="security.tests")


@pytest.fixture
def event_log(store: MemoryStore, clock: FrozenClock, security_logger) -> SecurityEventLog:
    return SecurityEventLog(
        store, security_logger=security_logger, alert_handler=None, clock=clock
    )


@pytest.fixture
def brute_force_config() -> BruteForceConfig:
    return BruteForceConfig()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig()


@pytest.fixture
def guard(store, brute_force_config, event_log, clock) -> BruteForceGuard:
    return BruteForceGuard(store, brute_force_config, event_log, clock=clock)


@pytest.fixture
def session_manager(store, session_config, event_log, clock) -> SessionManager:
    return SessionManager(store, session_config, event_log, clock=clock)
