"""
Logging configuration for the sponsorship advisor.

Every module logs through logging.getLogger(__name__), so all records land
under the 'sponsor_advisor' logger configured here.

  Console  : stderr
  Log file : logs/sponsor_advisor.log
  Rotation : 5 MB x 3 backups
  Level    : LOG_LEVEL env var (DEBUG / INFO / WARNING / ERROR / CRITICAL),
             INFO when unset

Usage
-----
    from sponsor_advisor.logging_config import configure_logging

    configure_logging()  # once at startup; repeated calls are no-ops
"""

import logging
import logging.handlers
from pathlib import Path

from .config import LOG_LEVEL

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "sponsor_advisor.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3

# Third-party loggers that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def configure_logging(level_name: str = LOG_LEVEL, log_file: Path = _LOG_FILE) -> logging.Logger:
    """Set up the sponsor_advisor logger and return it."""
    logger = logging.getLogger("sponsor_advisor")

    # Guard: don't add duplicate handlers if already configured
    if logger.handlers:
        return logger

    level = getattr(logging, level_name.upper(), logging.INFO)
    logger.setLevel(level)
    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
