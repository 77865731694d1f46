# authcore/core/di.py
import logging

from authcore.core.clock import Clock, utc_now
from authcore.core.config import Settings
from authcore.core.security_logger import SecurityLogger
from authcore.services.brute_force_guard import BruteForceGuard
from authcore.services.login import CaptchaVerifier, CredentialVerifier, LoginService
from authcore.services.security_events import SecurityEventLog
from authcore.services.session_manager import SessionManager
from authcore.store.base import KeyValueStore
from authcore.store.redis_store import RedisStore

logger = logging.getLogger(__name__)


class AuthCoreContainer:
    """
    Owns one component graph: store, event log, guard, session manager and
    login service.

    Build one per process at startup (or one per tenant when limits differ)
    and hand it to whatever serves requests. Components are created lazily
    and share the same store and event log.
    """

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore | None = None,
        *,
        verifier: CredentialVerifier | None = None,
        captcha_verifier: CaptchaVerifier | None = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self._clock = clock
        self._verifier = verifier
        self._captcha_verifier = captcha_verifier

        # Validated up front so a bad environment fails at startup
        self._session_config = settings.session_config()
        self._brute_force_config = settings.brute_force_config()

        self._store = store
        self._event_log: SecurityEventLog | None = None
        self._guard: BruteForceGuard | None = None
        self._sessions: SessionManager | None = None
        self._login: LoginService | None = None

        logger.debug("AuthCoreContainer initialized.")

    @property
    def store(self) -> KeyValueStore:
        if self._store is None:
            logger.debug("Initializing Redis store...")
            self._store = RedisStore.from_url(
                str(self.settings.REDIS_URL), namespace=self.settings.KEY_NAMESPACE
            )
        return self._store

    @property
    def event_log(self) -> SecurityEventLog:
        if self._event_log is None:
            self._event_log = SecurityEventLog(
                self.store,
                max_retained=self.settings.SECURITY_EVENTS_MAX_RETAINED,
                security_logger=SecurityLogger(self.settings.SECURITY_LOG_PATH),
                clock=self._clock,
            )
        return self._event_log

    @property
    def guard(self) -> BruteForceGuard:
        if self._guard is None:
            self._guard = BruteForceGuard(
                self.store, self._brute_force_config, self.event_log, clock=self._clock
            )
        return self._guard

    @property
    def sessions(self) -> SessionManager:
        if self._sessions is None:
            self._sessions = SessionManager(
                self.store, self._session_config, self.event_log, clock=self._clock
            )
        return self._sessions

    @property
    def login(self) -> LoginService:
        """Raises RuntimeError when no credential verifier was supplied."""
        if self._login is None:
            if self._verifier is None:
                raise RuntimeError("LoginService requires a credential verifier")
            self._login = LoginService(
                self.guard, self.sessions, self._verifier, self._captcha_verifier
            )
        return self._login

    async def shutdown(self) -> None:
        logger.info("Shutting down AuthCoreContainer...")
        if self._store is not None:
            try:
                await self._store.close()
            except Exception as e:
                logger.error(f"Error closing store: {e}", exc_info=True)
        self._store = None
        self._event_log = self._guard = self._sessions = self._login = None
        logger.info("AuthCoreContainer shutdown complete.")


def build_container(
    settings: Settings, store: KeyValueStore | None = None, **kwargs
) -> AuthCoreContainer:
    return AuthCoreContainer(settings, store, **kwargs)
