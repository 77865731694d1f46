# authcore/core/config.py

import logging
from datetime import timedelta
from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    RedisDsn,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from authcore.exceptions import InvalidConfigurationError

logger = logging.getLogger(__name__)


class SessionConfig(BaseModel):
    """Effect-bearing options of the session manager."""

    model_config = ConfigDict(frozen=True)

    max_age: timedelta = timedelta(hours=24)
    idle_timeout: timedelta = timedelta(minutes=30)
    max_concurrent_sessions: int = Field(default=5, ge=1)
    require_reauth: bool = True
    track_devices: bool = True
    reauth_interval: timedelta = timedelta(hours=1)
    refresh_lookahead: timedelta = timedelta(minutes=5)

    @model_validator(mode="after")
    def check_windows(self) -> "SessionConfig":
        if self.max_age <= timedelta(0) or self.idle_timeout <= timedelta(0):
            raise InvalidConfigurationError("max_age and idle_timeout must be positive")
        if self.idle_timeout > self.max_age:
            raise InvalidConfigurationError("idle_timeout cannot exceed max_age")
        if self.refresh_lookahead >= self.max_age:
            raise InvalidConfigurationError("refresh_lookahead must be shorter than max_age")
        return self


class BruteForceConfig(BaseModel):
    """Thresholds and durations of the brute-force guard."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    captcha_threshold: int = Field(default=3, ge=1)
    attempt_window: timedelta = timedelta(minutes=15)
    lockout_duration: timedelta = timedelta(minutes=15)
    progressive_lockout: bool = True
    max_lockout_duration: timedelta = timedelta(hours=24)
    lockout_history_window: timedelta = timedelta(hours=24)
    ip_block_threshold: int = Field(default=20, ge=1)
    ip_block_duration: timedelta = timedelta(hours=1)

    @model_validator(mode="after")
    def check_thresholds(self) -> "BruteForceConfig":
        if self.captcha_threshold > self.max_attempts:
            raise InvalidConfigurationError("captcha_threshold cannot exceed max_attempts")
        if self.lockout_duration > self.max_lockout_duration:
            raise InvalidConfigurationError("lockout_duration cannot exceed max_lockout_duration")
        return self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )

    # --- Logging ---
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    LOG_FILE_PATH: str | None = Field(default=None, validation_alias="LOG_FILE_PATH")
    SECURITY_LOG_PATH: str | None = Field(
        default=None,
        description="fail2ban-readable security log; unset disables the file handler",
        validation_alias="SECURITY_LOG_PATH",
    )

    # --- Redis ---
    REDIS_URL: RedisDsn = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("AUTHCORE_REDIS_URL", "REDIS_URL"),
    )
    KEY_NAMESPACE: str = Field(default="authcore:", validation_alias="AUTHCORE_KEY_NAMESPACE")

    # --- Session Settings ---
    SESSION_MAX_AGE_SECONDS: int = Field(
        default=24 * 60 * 60,
        description="Absolute session lifetime",
        validation_alias="SESSION_MAX_AGE_SECONDS",
    )
    SESSION_IDLE_TIMEOUT_SECONDS: int = Field(
        default=30 * 60,
        description="Inactivity window after which a session is dropped",
        validation_alias="SESSION_IDLE_TIMEOUT_SECONDS",
    )
    SESSION_MAX_CONCURRENT: int = Field(default=5, validation_alias="SESSION_MAX_CONCURRENT")
    SESSION_REQUIRE_REAUTH: bool = Field(default=True, validation_alias="SESSION_REQUIRE_REAUTH")
    SESSION_TRACK_DEVICES: bool = Field(default=True, validation_alias="SESSION_TRACK_DEVICES")
    SESSION_REAUTH_INTERVAL_SECONDS: int = Field(
        default=60 * 60, validation_alias="SESSION_REAUTH_INTERVAL_SECONDS"
    )
    SESSION_REFRESH_LOOKAHEAD_SECONDS: int = Field(
        default=5 * 60, validation_alias="SESSION_REFRESH_LOOKAHEAD_SECONDS"
    )
    SESSION_CLEANUP_INTERVAL_SECONDS: int = Field(
        default=5 * 60, validation_alias="SESSION_CLEANUP_INTERVAL_SECONDS"
    )

    # --- Account Lockout Settings ---
    LOGIN_MAX_ATTEMPTS: int = Field(
        default=5,
        description="Max failed login attempts before lockout",
        validation_alias="LOGIN_MAX_ATTEMPTS",
    )
    LOGIN_CAPTCHA_THRESHOLD: int = Field(
        default=3,
        description="Failed attempts after which a CAPTCHA is required",
        validation_alias="LOGIN_CAPTCHA_THRESHOLD",
    )
    LOGIN_LOCKOUT_MINUTES: int = Field(
        default=15,
        description="Lockout duration in minutes after max failed attempts",
        validation_alias="LOGIN_LOCKOUT_MINUTES",
    )
    LOGIN_ATTEMPT_WINDOW_MINUTES: int = Field(
        default=15,
        description="Time window (minutes) to count failed attempts",
        validation_alias="LOGIN_ATTEMPT_WINDOW_MINUTES",
    )
    LOGIN_PROGRESSIVE_LOCKOUT: bool = Field(
        default=True, validation_alias="LOGIN_PROGRESSIVE_LOCKOUT"
    )
    LOGIN_MAX_LOCKOUT_HOURS: int = Field(default=24, validation_alias="LOGIN_MAX_LOCKOUT_HOURS")
    IP_BLOCK_THRESHOLD: int = Field(
        default=20,
        description="Failed attempts from one IP (any identifier) before the IP is blocked",
        validation_alias="IP_BLOCK_THRESHOLD",
    )
    IP_BLOCK_MINUTES: int = Field(default=60, validation_alias="IP_BLOCK_MINUTES")

    # --- Security Events ---
    SECURITY_EVENTS_MAX_RETAINED: int = Field(
        default=1000, validation_alias="SECURITY_EVENTS_MAX_RETAINED"
    )

    # --- Celery ---
    CELERY_BROKER_URL_ENV: RedisDsn | None = Field(
        default=None, validation_alias="CELERY_BROKER_URL"
    )
    CELERY_RESULT_BACKEND_ENV: RedisDsn | None = Field(
        default=None, validation_alias="CELERY_RESULT_BACKEND"
    )
    TIMEZONE: str = Field(default="UTC", validation_alias="CELERY_TIMEZONE")
    CELERY_RESULT_EXPIRES: int = Field(default=3600, validation_alias="CELERY_RESULT_EXPIRES")

    @computed_field
    @property
    def CELERY_BROKER_URL(self) -> str:
        if self.CELERY_BROKER_URL_ENV:
            return str(self.CELERY_BROKER_URL_ENV)
        return str(self.REDIS_URL)

    @computed_field
    @property
    def CELERY_RESULT_BACKEND(self) -> str:
        if self.CELERY_RESULT_BACKEND_ENV:
            return str(self.CELERY_RESULT_BACKEND_ENV)
        return str(self.REDIS_URL)

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            max_age=timedelta(seconds=self.SESSION_MAX_AGE_SECONDS),
            idle_timeout=timedelta(seconds=self.SESSION_IDLE_TIMEOUT_SECONDS),
            max_concurrent_sessions=self.SESSION_MAX_CONCURRENT,
            require_reauth=self.SESSION_REQUIRE_REAUTH,
            track_devices=self.SESSION_TRACK_DEVICES,
            reauth_interval=timedelta(seconds=self.SESSION_REAUTH_INTERVAL_SECONDS),
            refresh_lookahead=timedelta(seconds=self.SESSION_REFRESH_LOOKAHEAD_SECONDS),
        )

    def brute_force_config(self) -> BruteForceConfig:
        return BruteForceConfig(
            max_attempts=self.LOGIN_MAX_ATTEMPTS,
            captcha_threshold=self.LOGIN_CAPTCHA_THRESHOLD,
            attempt_window=timedelta(minutes=self.LOGIN_ATTEMPT_WINDOW_MINUTES),
            lockout_duration=timedelta(minutes=self.LOGIN_LOCKOUT_MINUTES),
            progressive_lockout=self.LOGIN_PROGRESSIVE_LOCKOUT,
            max_lockout_duration=timedelta(hours=self.LOGIN_MAX_LOCKOUT_HOURS),
            ip_block_threshold=self.IP_BLOCK_THRESHOLD,
            ip_block_duration=timedelta(minutes=self.IP_BLOCK_MINUTES),
        )


settings = Settings()
