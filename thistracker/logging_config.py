"""Application-wide logging configuration utilities."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from thistracker import app_paths

_LOG_PATH: Optional[Path] = None

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def configure_logging(level: Union[int, str] = logging.INFO, path: Optional[Path] = None) -> Path:
    """Configure logging to write to the ThisTracker log file.

    Parameters
    ----------
    level:
        The minimum logging level for the root logger, either a number or a
        level name such as ``"DEBUG"``.  ``logging.INFO`` is used by default.
    path:
        Optional log file location.  Defaults to ``thistracker.log`` inside
        the application log directory.

    Returns
    -------
    pathlib.Path
        The path to the log file.
    """

    global _LOG_PATH

    if _LOG_PATH is not None:
        return _LOG_PATH

    numeric_level = _resolve_level(level)
    log_path = Path(path) if path is not None else app_paths.log_path()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.setLevel(numeric_level)
    else:
        root_logger.setLevel(min(root_logger.level, numeric_level))

    already_configured = any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_path.resolve())
        for handler in root_logger.handlers
    )
    if not already_configured:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)

    _LOG_PATH = log_path
    root_logger.debug("Logging configured. Writing to %s", log_path)
    return log_path


def get_log_path() -> Path:
    """Return the path to the ThisTracker log file, configuring logging if needed."""

    if _LOG_PATH is None:
        return configure_logging()
    return _LOG_PATH


__all__ = ["LOG_FORMAT", "configure_logging", "get_log_path"]
