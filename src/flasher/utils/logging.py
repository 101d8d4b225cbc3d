"""Rotating logger setup for the flasher service."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ISO_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

# Libraries that log every request or transfer at INFO/DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "usb")


def setup_logger(
    name: str = "flasher",
    log_file: str = "./logs/flasher.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: int = logging.INFO,
) -> logging.Logger:
    """Attach a rotating file handler and a console handler to ``name``.

    Service modules log through children of this logger
    (``flasher.connection``, ``flasher.orchestrator``, ...). Calling it
    again for the same name keeps the existing handlers and only applies
    the new level.

    Args:
        name: Logger name
        log_file: Path to log file (parent directory is created)
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Logging level

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=ISO_DATEFMT)
    for handler in (
        RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ),
        logging.StreamHandler(),
    ):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # The reporter posts every event; per-request lines would drown the log
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    return logger
