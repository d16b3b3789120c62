"""Domain records persisted by ThisTracker.

Every record maps onto one row of a dedicated spreadsheet tab (see
:mod:`thistracker.codec` for the column layout).  Timestamps are always
timezone-aware UTC values truncated to millisecond precision, which is the
precision of the ISO-8601 strings stored in the sheet.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
PLACEHOLDER_ID_PREFIX = "error-"

_ID_ALPHABET = string.digits + string.ascii_lowercase


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# ---------------------------------------------------------------------------
# Time and identifier helpers
# ---------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return the current UTC time truncated to whole milliseconds."""

    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def format_timestamp(value: Optional[datetime]) -> str:
    """Return ``value`` as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` or ``""`` for ``None``."""

    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 value into an aware UTC datetime.

    ``None``, empty strings and unparseable text yield ``None`` rather than
    raising.  Naive values are assumed to be UTC.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(microsecond=(parsed.microsecond // 1000) * 1000)


def generate_id() -> str:
    """Return a new identifier: epoch milliseconds followed by 9 random base-36 characters."""

    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}{suffix}"


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class _Record:
    """Mixin shared by the entity dataclasses."""

    id: str
    source_row: Optional[List[str]]

    @property
    def is_placeholder(self) -> bool:
        """``True`` when the record stands in for a row that failed to decode."""

        return self.source_row is not None or self.id.startswith(PLACEHOLDER_ID_PREFIX)

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for name in self.__dataclass_fields__:  # type: ignore[attr-defined]
            if name == "source_row":
                continue
            payload[_camel_case(name)] = _json_value(getattr(self, name))
        return payload


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@dataclass(slots=True, kw_only=True)
class Client(_Record):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    is_active: bool = True
    source_row: Optional[List[str]] = field(default=None, compare=False, repr=False)


@dataclass(slots=True, kw_only=True)
class Project(_Record):
    id: str
    client_id: str
    name: str
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    hourly_rate: Optional[float] = None
    budget: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    is_active: bool = True
    source_row: Optional[List[str]] = field(default=None, compare=False, repr=False)


@dataclass(slots=True, kw_only=True)
class Task(_Record):
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    is_active: bool = True
    source_row: Optional[List[str]] = field(default=None, compare=False, repr=False)


@dataclass(slots=True, kw_only=True)
class TimeEntry(_Record):
    """A block of tracked time.

    ``project_id`` and ``client_id`` are copied from the task's project when
    the entry is created and are never re-derived afterwards.  ``duration``
    is in milliseconds and exists only for finished entries.
    """

    id: str
    task_id: str
    project_id: str
    client_id: str
    description: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    hourly_rate: Optional[float] = None
    total_amount: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    is_active: bool = True
    source_row: Optional[List[str]] = field(default=None, compare=False, repr=False)

    @property
    def is_running(self) -> bool:
        return self.end_time is None


@dataclass(slots=True)
class SettingRecord:
    """One row of the Settings tab."""

    key: str
    value: Any
    description: str
    type: str
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------
@dataclass
class ServiceResult(Generic[T]):
    """Uniform outcome returned by every :class:`~thistracker.service.DataService` call."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ServiceResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ServiceResult[T]":
        return cls(success=False, error=error)

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = _to_jsonable(self.data)
        if self.error is not None:
            payload["error"] = self.error
        return payload


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_json"):
        return value.to_json()
    if isinstance(value, dict):
        return {key: _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return _json_value(value)


__all__ = [
    "EPOCH",
    "PLACEHOLDER_ID_PREFIX",
    "Client",
    "Project",
    "ProjectStatus",
    "ServiceResult",
    "SettingRecord",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TimeEntry",
    "format_timestamp",
    "generate_id",
    "parse_timestamp",
    "utc_now",
]
