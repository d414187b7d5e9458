# hrv_live/utils/logging_utils.py
"""
Central logging utilities for the project.

Goals:
    - Consistent log format for every module.
    - Log files written under settings.paths.log_dir (default: <repo>/logs).
    - INFO / WARNING / ERROR level logging.

Usage:
    from hrv_live.utils.logging_utils import get_logger

    logger = get_logger(module_name="acquisition", logfile_name="acquisition.log")
    logger.info("Recording started.")
    logger.error("Unexpected error", exc_info=True)
"""

import logging
from logging.handlers import RotatingFileHandler

from hrv_live.config.settings import settings


LOG_DIR = settings.paths.log_dir


def get_logger(
    module_name: str,
    logfile_name: str,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Returns a file-backed logger for a given module.

    Args:
        module_name:
            Logger name (e.g. "acquisition", "device", "hrv_api").
        logfile_name:
            Log file name (e.g. "acquisition.log").
            The file is written into LOG_DIR.
        level:
            Log level (logging.INFO, logging.WARNING, logging.ERROR, ...).
        max_bytes:
            Maximum size of a log file before rotation (default: 5 MB).
        backup_count:
            Number of rotated files kept (acquisition.log.1, acquisition.log.2, ...).

    Returns:
        logging.Logger object.
    """
    logger = logging.getLogger(module_name)

    # Already configured: don't stack handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_path = LOG_DIR / logfile_name

    # Rotating file handler: rolls over once the file reaches max_bytes
    file_handler = RotatingFileHandler(
        filename=log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(formatter)

    logger.addHandler(file_handler)

    # Don't propagate to the root logger (avoid double logging)
    logger.propagate = False

    return logger
