"""Centralised helpers for managing ThisTracker application directories."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

_HOME_ENV_VAR = "THISTRACKER_HOME"
_APP_ENV_VARS: Iterable[str] = ("XDG_DATA_HOME", "LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    override = os.environ.get(_HOME_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "ThisTracker"
    return Path.home().resolve() / ".thistracker"


APP_DIR: Path = _detect_base_directory()
TOKENS_DIR: Path = APP_DIR / "tokens"
LOG_DIR: Path = APP_DIR / "logs"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def log_path(name: str = "thistracker.log") -> Path:
    ensure_directory(LOG_DIR)
    return LOG_DIR / name


__all__ = [
    "APP_DIR",
    "TOKENS_DIR",
    "LOG_DIR",
    "ensure_directory",
    "log_path",
]
