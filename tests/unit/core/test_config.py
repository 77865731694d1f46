# tests/unit/core/test_config.py
from datetime import timedelta

import pytest

from authcore.core.config import BruteForceConfig, SessionConfig, Settings
from authcore.exceptions import InvalidConfigurationError


def test_session_config_defaults() -> None:
    config = SessionConfig()
    assert config.max_age == timedelta(hours=24)
    assert config.idle_timeout == timedelta(minutes=30)
    assert config.max_concurrent_sessions == 5
    assert config.require_reauth is True
    assert config.track_devices is True
    assert config.reauth_interval == timedelta(hours=1)
    assert config.refresh_lookahead == timedelta(minutes=5)


def test_brute_force_config_defaults() -> None:
    config = BruteForceConfig()
    assert config.max_attempts == 5
    assert config.captcha_threshold == 3
    assert config.lockout_duration == timedelta(minutes=15)
    assert config.attempt_window == timedelta(minutes=15)
    assert config.ip_block_threshold == 20


def test_idle_timeout_longer_than_max_age_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        SessionConfig(max_age=timedelta(minutes=10), idle_timeout=timedelta(minutes=30))


def test_captcha_threshold_above_max_attempts_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        BruteForceConfig(max_attempts=3, captcha_threshold=4)


def test_lockout_longer_than_cap_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        BruteForceConfig(
            lockout_duration=timedelta(hours=2), max_lockout_duration=timedelta(hours=1)
        )


def test_configs_are_immutable() -> None:
    config = SessionConfig()
    with pytest.raises(Exception):
        config.max_concurrent_sessions = 10


def test_settings_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOGIN_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("LOGIN_LOCKOUT_MINUTES", "30")
    monkeypatch.setenv("SESSION_MAX_CONCURRENT", "2")
    monkeypatch.setenv("SESSION_IDLE_TIMEOUT_SECONDS", "600")

    s = Settings(_env_file=None)
    bf = s.brute_force_config()
    sc = s.session_config()

    assert bf.max_attempts == 7
    assert bf.lockout_duration == timedelta(minutes=30)
    assert sc.max_concurrent_sessions == 2
    assert sc.idle_timeout == timedelta(minutes=10)


def test_logging_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("LOG_FILE_PATH", "/var/log/authcore/app.log")
    monkeypatch.setenv("APP_ENV", "production")

    s = Settings(_env_file=None)

    assert s.LOG_LEVEL == "DEBUG"
    assert s.LOG_FILE_PATH == "/var/log/authcore/app.log"
    assert "ENVIRONMENT" not in Settings.model_fields


def test_celery_urls_fall_back_to_redis_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CELERY_BROKER_URL", raising=False)
    monkeypatch.delenv("CELERY_RESULT_BACKEND", raising=False)
    monkeypatch.delenv("AUTHCORE_REDIS_URL", raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")

    s = Settings(_env_file=None)

    assert s.CELERY_BROKER_URL == "redis://cache:6379/2"
    assert s.CELERY_RESULT_BACKEND == "redis://cache:6379/2"


def test_explicit_celery_broker_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CELERY_BROKER_URL", "redis://broker:6379/1")
    s = Settings(_env_file=None)
    assert s.CELERY_BROKER_URL == "redis://broker:6379/1"


def test_invalid_environment_combination_fails_on_conversion(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LOGIN_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("LOGIN_CAPTCHA_THRESHOLD", "3")
    s = Settings(_env_file=None)
    with pytest.raises(InvalidConfigurationError):
        s.brute_force_config()
