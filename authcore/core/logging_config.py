import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_FILE_BACKUP_COUNT = 2

# Loggers that are too chatty at DEBUG level
_NOISY_LOGGERS = ("asyncio", "celery.utils.functional", "kombu")


def _clear_existing_handlers(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except Exception as e:
            print(f"Warning: Error closing existing log handler: {e}", file=sys.stderr)
        logger.removeHandler(handler)


def _setup_console_handler(logger: logging.Logger, level: int) -> None:
    c_handler = logging.StreamHandler(sys.stdout)
    c_handler.setLevel(level)
    if level <= logging.DEBUG:
        fmt = "%(asctime)s %(levelname)s: [%(name)s:%(lineno)d] %(message)s"
    else:
        fmt = "%(asctime)s %(levelname)s: %(message)s"
    c_handler.setFormatter(logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(c_handler)


def _setup_file_handler(logger: logging.Logger, log_file_path: str) -> None:
    try:
        Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
        f_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        f_handler.setLevel(logging.INFO)
        f_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)-8s - [%(name)s:%(lineno)d] - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(f_handler)
    except OSError as e:
        logging.error(f"Failed to configure file logging to {log_file_path}: {e}", exc_info=True)


def setup_logging(level: str | int = "INFO", log_file_path: str | None = None) -> None:
    """
    Configures the root logger with a console handler and an optional rotating file handler.

    The ``security`` logger is configured separately by SecurityLogger and does
    not propagate here.
    """
    numeric_level = logging.getLevelName(level) if isinstance(level, str) else level
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    _clear_existing_handlers(root_logger)
    root_logger.setLevel(numeric_level)

    _setup_console_handler(root_logger, numeric_level)
    if log_file_path:
        _setup_file_handler(root_logger, log_file_path)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.INFO))

    logging.getLogger(__name__).debug(
        f"Logging configured (level={logging.getLevelName(numeric_level)}, file={log_file_path})"
    )
