"""Centralized logging configuration for Necessity Reminder.

Each component logs to its own rotating file under ``logs/`` and to the
console. Set LOG_LEVEL=DEBUG to see the scheduler's per-tick heartbeat.
"""

import logging
from logging.handlers import RotatingFileHandler
import os

from config import settings

LOG_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'logs')
os.makedirs(LOG_DIR, exist_ok=True)

LOG_FORMAT = '[%(asctime)s] %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _configured_level() -> int:
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logger(name: str, log_file: str = 'service.log') -> logging.Logger:
    """Return a logger writing to ``logs/<log_file>`` (10MB x 5 backups) and stderr.

    Args:
        name: Logger name (usually __name__)
        log_file: Log file name shared by a component (e.g. 'api.log', 'scheduler.log')
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level = _configured_level()
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, log_file),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    console_handler = logging.StreamHandler()

    for handler in (file_handler, console_handler):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def configure_root_logger():
    """Reduce third-party library noise."""
    for noisy in ('uvicorn', 'uvicorn.access', 'fastapi', 'sqlalchemy', 'httpx', 'httpcore'):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    # passlib warns about the bcrypt version on every import
    logging.getLogger('passlib').setLevel(logging.ERROR)


# Auto-configure on import
configure_root_logger()
