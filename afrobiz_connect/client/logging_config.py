"""Logging configuration for client events."""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import BASE_DIR

LOGGER_NAME = "afrobiz_connect"
LOG_FILE = BASE_DIR / "client.log"


def configure_logging(log_file: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """Configure package-wide logging to a rotating file handler."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if not logger.handlers:
        path = Path(log_file or LOG_FILE)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=3)
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the package logger, e.g. ``afrobiz_connect.api``."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
