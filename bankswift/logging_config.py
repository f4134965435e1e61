"""
Logging configuration for the Bank Swift API.

Creates a rotating file-based logger under LOG_DIR plus a console handler.
"""

import logging
from pathlib import Path
from logging.handlers import RotatingFileHandler

from bankswift.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5


def _setup_file_logger(name: str, log_file: Path, level: int) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # Avoid duplicate handlers if setup_logging is called multiple times
    logger.handlers = []

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger


def setup_logging() -> None:
    """
    Configure root + service loggers.
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Root logger
    logging.getLogger().setLevel(level)

    # Service logger; module loggers (bankswift.*) propagate into it
    _setup_file_logger("bankswift", log_dir / "bankswift.log", level)

    # SQL echo is controlled by SQL_ECHO, keep the engine logger quiet otherwise
    if not settings.SQL_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
