from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER_NAME = "gfs_forecast"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_FILE_MAX_BYTES = 5_000_000
LOG_FILE_BACKUPS = 3


def _level_from_env() -> int:
    level_name = os.getenv("LOG_LEVEL", os.getenv("GFS_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_name, logging.INFO)


def _log_file_from_env() -> str:
    return os.getenv("GFS_LOG_FILE", "logs/gfs_forecast.log").strip()


def configure_logging(
    name: str = ROOT_LOGGER_NAME,
    level: int | None = None,
    log_file: str | None = None,
) -> logging.Logger:
    """Attach stream and rotating-file handlers to ``name`` once; later calls only adjust the level.

    ``download.py`` and ``app.py`` both call this at startup, and every module logs
    under ``gfs_forecast.<module>``. An empty ``log_file`` (or ``GFS_LOG_FILE=""``)
    disables the file handler.
    """
    level = _level_from_env() if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = _log_file_from_env() if log_file is None else log_file.strip()
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        logger.addHandler(handler)

    logger.propagate = False
    logger.info("Logger configured level=%s file=%s", logging.getLevelName(level), log_file or "disabled")
    return logger
