"""Logging configuration for the joinkeeper package."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import LoggingSettings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Set up a logger with the specified name and log level.

    Args:
        name: The name of the logger
        level: The logging level (default: logging.INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Don't add handlers if they're already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    return logger


def configure_logging(settings: LoggingSettings, debug: bool = False) -> logging.Logger:
    """Configure the package logger from settings.

    Args:
        settings: Logging section of the controller configuration
        debug: Force DEBUG level regardless of settings

    Returns:
        The ``joinkeeper`` logger
    """
    level = logging.DEBUG if debug else getattr(logging, settings.level, logging.INFO)
    logger = setup_logger("joinkeeper", level)

    if settings.file:
        log_file = Path(settings.file).expanduser().absolute()
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
            file_handler = RotatingFileHandler(
                filename=log_file,
                maxBytes=settings.max_size_mb * 1024 * 1024,
                backupCount=settings.backup_count
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            logger.addHandler(file_handler)
            logger.debug(f"Logging to file: {log_file}")

    # Disable debug logging for noisy libraries
    if not debug:
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('kubernetes').setLevel(logging.WARNING)
        logging.getLogger('kopf').setLevel(logging.WARNING)

    return logger
