"""
Centralized Logging Utility

All notifier loggers hang off one package logger, ``notifier``, which owns the
handlers:
- Rotating file handler under LOGS_DIR (DEBUG and above)
- Console handler (LOG_LEVEL and above)

Module loggers only propagate, so a record is written once no matter how many
modules ask for a logger. Scripts run as ``__main__`` get a child logger too.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from notifier.config import LOG_BACKUP_COUNT, LOG_FILENAME, LOG_LEVEL, LOG_MAX_BYTES, LOGS_DIR

PACKAGE_LOGGER = "notifier"

_configured = False


def _configure_package_logger() -> logging.Logger:
    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(logging.DEBUG)

    logs_path = Path(LOGS_DIR)
    logs_path.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = RotatingFileHandler(
        logs_path / LOG_FILENAME,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get the logger for a module, configuring the package handlers on first use.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Logger under the ``notifier`` namespace

    Example:
        from notifier.logger import get_logger
        logger = get_logger(__name__)
        logger.info("Mail worker started")
    """
    global _configured
    if not _configured:
        _configure_package_logger()
        _configured = True

    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name.replace('__main__', 'scripts')}"
    return logging.getLogger(name)
