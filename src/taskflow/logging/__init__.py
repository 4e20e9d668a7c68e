"""
Process-wide logging for the taskflow CLI and library users that want the same setup.

Every module logs through `logging.getLogger(__name__)`; this module only decides
where records go and which loggers are verbose.
"""

from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional

from taskflow.config.models import FileLoggingSettings, LoggingSettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _parse_overrides(loggers: Mapping[str, str]) -> dict[str, int]:
    return {name: parse_level(level) for name, level in loggers.items()}


def _open_file_handler(settings: FileLoggingSettings) -> logging.Handler:
    path = Path(settings.path.strip())
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        backupCount=settings.rotation.backup_count,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    return handler


def init_logging(settings: LoggingSettings) -> None:
    """
    Send log records to stderr and, when `settings.file.path` is set, to a file rotated daily.

    The root logger gets `settings.level`; `settings.loggers` then sets individual
    loggers above or below it. Handlers carry no level of their own, so a logger
    raised to DEBUG is written out even when the root stays at INFO. Calling this
    again replaces the handlers of the previous call. Levels are validated before
    anything is changed.
    """
    root_level = parse_level(settings.level)
    overrides = _parse_overrides(settings.loggers)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_error: Optional[OSError] = None
    if settings.file.path.strip():
        try:
            handlers.append(_open_file_handler(settings.file))
        except OSError as e:
            file_error = e

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(root_level)

    for name, level in overrides.items():
        logging.getLogger(name).setLevel(level)

    if file_error is not None:
        logger.error("File logging disabled, handler failed to open. path=%s error=%s", settings.file.path, file_error)


__all__ = ["DATE_FORMAT", "LOG_FORMAT", "init_logging", "parse_level"]
