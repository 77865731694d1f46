# authcore/core/security_logger.py
"""
Dedicated security logger for fail2ban integration.

Writes brute-force and session events to a file in a format that fail2ban can
parse. Every user-controlled field is sanitized before formatting.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from authcore.core.log_utils import sanitize_for_log


def sanitize(value: str | None, max_length: int = 255) -> str:
    """Sanitize a single field value; brackets and spaces would break fail2ban regexes."""
    if not value:
        return "unknown"
    cleaned = sanitize_for_log(str(value).strip(), max_length=max_length)
    return cleaned.replace("[", "").replace("]", "").replace("<", "").replace(">", "").replace(
        " ", "_"
    )


def mask_email(email: str | None) -> str:
    """
    Mask an email for privacy while keeping it recognisable.

    Shows the first 3 chars of the local part plus the domain.
    """
    if not email or "@" not in email:
        return sanitize(email)

    local, domain = email.rsplit("@", 1)
    if len(local) > 3:
        masked_local = local[:3] + "***"
    else:
        masked_local = (local[0] + "***") if local else "***"

    return f"{sanitize(masked_local)}@{sanitize(domain)}"


class SecurityLogger:
    """
    Security event logger for fail2ban integration.

    Log format compatible with fail2ban datepattern:
        2026-01-05 10:15:30 SECURITY [EVENT_TYPE] ip=x.x.x.x field=value ...

    The file handler is only attached when a path is configured; without one
    the lines go nowhere, which keeps tests and library users quiet.
    """

    def __init__(self, log_path: str | Path | None = None, logger_name: str = "security"):
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

        if log_path and not self._has_file_handler(Path(log_path)):
            path = Path(log_path)
            path.parent.mkdir(parents=True, exist_ok=True)

            # Rotating file handler: 50MB max, keep 10 backups
            handler = RotatingFileHandler(
                str(path),
                maxBytes=50 * 1024 * 1024,
                backupCount=10,
            )
            # The message carries "EVENT_TYPE] ip=... fields..."
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s SECURITY [%(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self.logger.addHandler(handler)
        elif not self.logger.handlers:
            self.logger.addHandler(logging.NullHandler())

    def _has_file_handler(self, path: Path) -> bool:
        target = str(path.resolve())
        return any(
            isinstance(h, RotatingFileHandler) and h.baseFilename == target
            for h in self.logger.handlers
        )

    def failed_login(self, ip: str, identifier: str, reason: str, attempts: int) -> None:
        """
        Log a failed login attempt.

        Args:
            ip: Client IP address
            identifier: Email that was attempted
            reason: BAD_CREDENTIALS, ACCOUNT_LOCKED, IP_BLOCKED, ...
            attempts: Failed attempts counted so far
        """
        self.logger.info(
            f"FAILED_LOGIN] ip={sanitize(ip)} email={mask_email(identifier)} "
            f"reason={sanitize(reason)} attempts={int(attempts)}"
        )

    def successful_login(self, ip: str, identifier: str) -> None:
        """Log a successful login (for audit trail, not for banning)."""
        self.logger.info(f"LOGIN_SUCCESS] ip={sanitize(ip)} email={mask_email(identifier)}")

    def account_locked(self, ip: str, identifier: str, minutes: int) -> None:
        self.logger.info(
            f"ACCOUNT_LOCKED] ip={sanitize(ip)} email={mask_email(identifier)} "
            f"minutes={int(minutes)}"
        )

    def ip_blocked(self, ip: str, reason: str) -> None:
        self.logger.info(f"IP_BLOCKED] ip={sanitize(ip)} reason={sanitize(reason)}")

    def session_anomaly(self, ip: str, user_id: str, reason: str) -> None:
        """
        Log a session drift (IP or device change) detected during validation.

        Args:
            ip: IP address of the request that presented the session
            user_id: Owner of the session
            reason: ip_changed, device_changed
        """
        self.logger.info(
            f"SESSION_ANOMALY] ip={sanitize(ip)} user_id={sanitize(user_id)} "
            f"reason={sanitize(reason)}"
        )

    def event(self, event_type: str, ip: str, severity: str, user_id: str | None = None) -> None:
        """Generic line for event types without a dedicated method."""
        self.logger.info(
            f"{sanitize(event_type).upper()}] ip={sanitize(ip)} severity={sanitize(severity)} "
            f"user_id={sanitize(user_id)}"
        )
