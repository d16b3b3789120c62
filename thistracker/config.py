"""Application configuration helpers for ThisTracker."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from thistracker import app_paths
from thistracker.codec import (
    CLIENT_HEADERS,
    PROJECT_HEADERS,
    SETTINGS_HEADERS,
    TASK_HEADERS,
    TIME_ENTRY_HEADERS,
)

logger = logging.getLogger(__name__)


CONFIG_PATH_ENV_VAR = "THISTRACKER_CONFIG_PATH"
TOKEN_PATH_ENV_VAR = "THISTRACKER_TOKEN_PATH"
CLIENT_SECRET_PATH_ENV_VAR = "THISTRACKER_CLIENT_SECRET_PATH"
LOG_LEVEL_ENV_VAR = "THISTRACKER_LOG_LEVEL"

DEFAULT_SPREADSHEET_NAME = "ThisTracker-Main"
DEFAULT_NAME_PREFIX = "ThisTracker"
DEFAULT_TAB_TITLE = "Sheet1"

_CLAMPED_FIELDS: Dict[str, Tuple[int, int]] = {
    "max_requests": (1, 600),
    "window_seconds": (1, 3600),
    "read_chunk_rows": (1, 10000),
}


def default_config_path() -> Path:
    override = os.getenv(CONFIG_PATH_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return app_paths.APP_DIR / "config.json"


def _default_token_path() -> str:
    return os.getenv(TOKEN_PATH_ENV_VAR) or str(app_paths.TOKENS_DIR / "token.json")


def _default_client_secret_path() -> str:
    return os.getenv(CLIENT_SECRET_PATH_ENV_VAR) or str(app_paths.APP_DIR / "client_secret.json")


def _default_log_level() -> str:
    return os.getenv(LOG_LEVEL_ENV_VAR) or "INFO"


@dataclass(frozen=True)
class SheetLayout:
    """Tab names of the tracker spreadsheet and the rules that apply to them."""

    clients: str = "Clients"
    projects: str = "Projects"
    tasks: str = "Tasks"
    time_entries: str = "Time Entries"
    settings: str = "Settings"
    default_tab: str = DEFAULT_TAB_TITLE
    spreadsheet_name: str = DEFAULT_SPREADSHEET_NAME
    name_prefix: str = DEFAULT_NAME_PREFIX

    @property
    def required_tabs(self) -> Tuple[str, ...]:
        """Tabs created on every initialisation and repaired by integrity checks."""

        return (self.clients, self.projects, self.tasks, self.settings)

    @property
    def lazy_tabs(self) -> Tuple[str, ...]:
        """Tabs that read as empty when missing and are created before writing."""

        return (self.tasks, self.time_entries)

    @property
    def all_tabs(self) -> Tuple[str, ...]:
        return (self.clients, self.projects, self.tasks, self.time_entries, self.settings)

    def headers_for(self, tab: str) -> Tuple[str, ...]:
        headers = {
            self.clients: CLIENT_HEADERS,
            self.projects: PROJECT_HEADERS,
            self.tasks: TASK_HEADERS,
            self.time_entries: TIME_ENTRY_HEADERS,
            self.settings: SETTINGS_HEADERS,
        }
        try:
            return headers[tab]
        except KeyError:
            raise KeyError(f"Unknown tab: {tab}") from None

    def collections(self) -> Dict[str, str]:
        """Return the logical collection name to tab name mapping."""

        return {
            "clients": self.clients,
            "projects": self.projects,
            "tasks": self.tasks,
            "timeEntries": self.time_entries,
            "settings": self.settings,
        }


@dataclass
class TrackerConfig:
    token_path: str = field(default_factory=_default_token_path)
    client_secret_path: str = field(default_factory=_default_client_secret_path)
    spreadsheet_name: str = DEFAULT_SPREADSHEET_NAME
    name_prefix: str = DEFAULT_NAME_PREFIX
    clients_tab: str = "Clients"
    projects_tab: str = "Projects"
    tasks_tab: str = "Tasks"
    time_entries_tab: str = "Time Entries"
    settings_tab: str = "Settings"
    default_tab_title: str = DEFAULT_TAB_TITLE
    max_requests: int = 50
    window_seconds: int = 60
    read_chunk_rows: int = 1000
    strict_booleans: bool = False
    log_level: str = field(default_factory=_default_log_level)

    def layout(self) -> SheetLayout:
        return SheetLayout(
            clients=self.clients_tab,
            projects=self.projects_tab,
            tasks=self.tasks_tab,
            time_entries=self.time_entries_tab,
            settings=self.settings_tab,
            default_tab=self.default_tab_title,
            spreadsheet_name=self.spreadsheet_name,
            name_prefix=self.name_prefix,
        )

    def to_json(self) -> Dict[str, object]:
        return asdict(self)


def _coerce_config(data: Mapping[str, object]) -> Dict[str, object]:
    defaults = TrackerConfig().to_json()
    merged: Dict[str, object] = dict(defaults)
    for key, value in data.items():
        if key not in defaults:
            logger.debug("Ignoring unknown configuration key %s", key)
            continue
        if key in _CLAMPED_FIELDS:
            low, high = _CLAMPED_FIELDS[key]
            try:
                merged[key] = max(low, min(high, int(value)))  # type: ignore[arg-type]
            except (TypeError, ValueError):
                merged[key] = defaults[key]
        elif key == "strict_booleans":
            if isinstance(value, bool):
                merged[key] = value
            elif isinstance(value, str):
                merged[key] = value.strip().lower() in {"true", "1", "yes"}
        elif isinstance(value, str) and value.strip():
            merged[key] = value
    return merged


def load_config(path: Optional[os.PathLike] = None) -> TrackerConfig:
    """Load the configuration, writing the defaults when the file does not exist."""

    target = Path(path) if path is not None else default_config_path()
    if not target.exists():
        config = TrackerConfig()
        save_config(config, target)
        return config

    try:
        with open(target, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unable to read configuration %s: %s; using defaults", target, exc)
        return TrackerConfig()
    if not isinstance(data, Mapping):
        logger.warning("Configuration %s is not a JSON object; using defaults", target)
        return TrackerConfig()

    merged = _coerce_config(data)
    return TrackerConfig(**merged)  # type: ignore[arg-type]


def save_config(config: TrackerConfig, path: Optional[os.PathLike] = None) -> Path:
    target = Path(path) if path is not None else default_config_path()
    if target.parent:
        target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as handle:
        json.dump(config.to_json(), handle, indent=2)
    return target


__all__ = [
    "CLIENT_SECRET_PATH_ENV_VAR",
    "CONFIG_PATH_ENV_VAR",
    "DEFAULT_NAME_PREFIX",
    "DEFAULT_SPREADSHEET_NAME",
    "DEFAULT_TAB_TITLE",
    "LOG_LEVEL_ENV_VAR",
    "TOKEN_PATH_ENV_VAR",
    "SheetLayout",
    "TrackerConfig",
    "default_config_path",
    "load_config",
    "save_config",
]
