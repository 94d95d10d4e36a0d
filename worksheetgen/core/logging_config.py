"""
Logging setup for the worksheet generator API.

Console output for the process plus an optional rotating file. Payment and
identity secrets never reach the handlers: callers pass request headers or
payload fragments through sanitize_log_data() first.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from worksheetgen.core.config import LOG_DIR

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_NAME = "worksheetgen.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Chatty libraries kept at WARNING regardless of the app level
QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "stripe", "sqlalchemy.engine", "urllib3", "google.auth")

SENSITIVE_MARKERS = (
    "password", "token", "secret", "key", "signature",
    "authorization", "cookie", "database_url",
)
REDACTED = "***REDACTED***"


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = LOG_DIR) -> None:
    """
    Configure the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_dir: Directory for worksheetgen.log; None or "" logs to the console only
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def sanitize_log_data(data: Any) -> Any:
    """
    Copy of `data` with values under sensitive-looking keys redacted.

    Nested dicts and lists are walked; header names are matched case-insensitively,
    so a Stripe-Signature or Authorization header never gets logged.
    """
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else sanitize_log_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_log_data(item) for item in data]
    return data


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_MARKERS)
