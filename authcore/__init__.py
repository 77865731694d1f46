"""Authentication and session-security core."""

from authcore.core.config import BruteForceConfig, SessionConfig, Settings
from authcore.core.di import AuthCoreContainer, build_container
from authcore.exceptions import (
    AuthCoreError,
    InvalidConfigurationError,
    SessionDataCorruptedError,
    StoreUnavailableError,
)
from authcore.services.brute_force_guard import BruteForceGuard
from authcore.services.login import CredentialVerifier, LoginService
from authcore.services.security_events import SecurityEventLog
from authcore.services.session_manager import SessionManager
from authcore.store import KeyValueStore, MemoryStore, RedisStore

__version__ = "0.1.0"

__all__ = [
    "AuthCoreContainer",
    "AuthCoreError",
    "BruteForceConfig",
    "BruteForceGuard",
    "CredentialVerifier",
    "InvalidConfigurationError",
    "KeyValueStore",
    "LoginService",
    "MemoryStore",
    "RedisStore",
    "SecurityEventLog",
    "SessionConfig",
    "SessionDataCorruptedError",
    "SessionManager",
    "Settings",
    "StoreUnavailableError",
    "build_container",
]
