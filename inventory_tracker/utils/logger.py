"""Logging configuration for the application.

Four named loggers are used: ``api`` (store requests), ``inventory``
(service operations), ``webhook`` (change delivery) and ``error``. Outside
production each one writes to its own rotating file, and ERROR records from
all of them are also collected in the error log.
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from .config import get_config

# One handler per file path, shared by every logger writing to it
_file_handlers: Dict[str, RotatingFileHandler] = {}
_file_handlers_lock = threading.Lock()


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    config = get_config()

    with _file_handlers_lock:
        handler = _file_handlers.get(path)
        if handler is None:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                path,
                maxBytes=config.logging.max_bytes,
                backupCount=config.logging.backup_count
            )
            handler.setLevel(level)
            handler.setFormatter(formatter)
            _file_handlers[path] = handler
        return handler


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Setup a logger with a console handler and, outside production, file handlers.

    Args:
        name: Logger name
        log_file: Optional log file for all records of this logger
        level: Optional log level (overrides config)

    Returns:
        Configured logger instance
    """
    config = get_config()

    logger = logging.getLogger(name)
    log_level = level or config.logging.level
    logger.setLevel(getattr(logging, log_level.upper()))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    logger.propagate = False
    formatter = logging.Formatter(config.logging.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # No file logging in production; stdout is collected by the platform.
    if config.is_production:
        return logger

    error_file = config.logging.files.error
    if log_file and log_file != error_file:
        logger.addHandler(_file_handler(log_file, logging.DEBUG, formatter))
    logger.addHandler(_file_handler(error_file, logging.ERROR, formatter))

    return logger


def get_inventory_logger() -> logging.Logger:
    """Get logger for inventory service operations."""
    config = get_config()
    return setup_logger("inventory", config.logging.files.inventory)


def get_webhook_logger() -> logging.Logger:
    """Get logger for change webhook handling and event delivery."""
    config = get_config()
    return setup_logger("webhook", config.logging.files.webhook)


def get_error_logger() -> logging.Logger:
    """Get logger for unexpected failures; always at ERROR level."""
    return setup_logger("error", level="ERROR")


def get_api_logger() -> logging.Logger:
    """Get logger for remote store requests. Only errors reach a file."""
    return setup_logger("api")
