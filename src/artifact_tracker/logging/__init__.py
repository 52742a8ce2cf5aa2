from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from artifact_tracker.config.models import LoggingSettings

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _build_file_handler(settings: LoggingSettings, formatter: logging.Formatter) -> Optional[logging.Handler]:
    file_path = settings.file.path.strip()
    if not file_path:
        return None

    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        interval=1,
        backupCount=settings.file.rotation.backup_count,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    handler.setFormatter(formatter)
    return handler


def init_logging(settings: LoggingSettings) -> None:
    """
    Initialize application logging.

    Replaces any handlers on the root logger with a stream handler and, when a file
    path is configured, a daily rotating file handler.
    """

    level = _resolve_level(settings.level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    try:
        file_handler = _build_file_handler(settings, formatter)
    except OSError:
        root_logger.error("File logging handler failed to initialize. path=%s", settings.file.path, exc_info=True)
        file_handler = None
    if file_handler is not None:
        root_logger.addHandler(file_handler)

    # One line per request is noise below INFO.
    logging.getLogger("aiohttp.access").setLevel(max(level, logging.INFO))


__all__ = ["init_logging"]
