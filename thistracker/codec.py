"""Row codec between domain records and spreadsheet cells.

Each tab has a fixed column layout.  ``encode_*`` functions serialise a
record into an ordered list of strings; ``decode_*`` functions perform the
inverse operation and never raise.  A row that cannot describe a record (for
example because its ID is blank) decodes to :class:`Malformed` so that a
single corrupt row never aborts loading the rest of a collection.

Value conversion rules:

* timestamps are written as ISO-8601 UTC with milliseconds (``...000Z``),
* optional numbers are written as decimal strings, absent values as ``""``,
* booleans are written as ``"true"``/``"false"``,
* enums are written as their tag.

On the way back empty numeric and date cells become ``None``, unknown enum
tags fall back to a default, and boolean cells follow the lenient rule in
:func:`parse_bool`.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from thistracker.models import (
    EPOCH,
    PLACEHOLDER_ID_PREFIX,
    Client,
    Project,
    ProjectStatus,
    Task,
    TaskPriority,
    TaskStatus,
    TimeEntry,
    format_timestamp,
    parse_timestamp,
)

T = TypeVar("T")
E = TypeVar("E")

CLIENT_HEADERS: Tuple[str, ...] = (
    "ID",
    "Name",
    "Email",
    "Phone",
    "Address",
    "Notes",
    "CreatedAt",
    "UpdatedAt",
    "IsActive",
)

PROJECT_HEADERS: Tuple[str, ...] = (
    "ID",
    "ClientID",
    "Name",
    "Description",
    "Status",
    "HourlyRate",
    "Budget",
    "StartDate",
    "EndDate",
    "CreatedAt",
    "UpdatedAt",
    "IsActive",
)

TASK_HEADERS: Tuple[str, ...] = (
    "ID",
    "ProjectID",
    "Name",
    "Description",
    "Status",
    "Priority",
    "EstimatedHours",
    "CreatedAt",
    "UpdatedAt",
    "IsActive",
)

TIME_ENTRY_HEADERS: Tuple[str, ...] = (
    "ID",
    "TaskID",
    "ProjectID",
    "ClientID",
    "Description",
    "StartTime",
    "EndTime",
    "DurationMs",
    "HourlyRate",
    "TotalAmount",
    "Notes",
    "CreatedAt",
    "UpdatedAt",
    "IsActive",
)

SETTINGS_HEADERS: Tuple[str, ...] = ("Key", "Value", "Description", "Type", "UpdatedAt")

_FALSE_TOKENS = {"false", "0"}
_TRUE_TOKENS = {"true", "1"}
_INTEGER_RE = re.compile(r"^[+-]?\d+$")


# ---------------------------------------------------------------------------
# Decode results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Decoded(Generic[T]):
    """A row that decoded into a record."""

    entity: T


@dataclass(frozen=True)
class Malformed:
    """A row that could not describe a record, kept verbatim with the reason."""

    raw_row: List[str]
    reason: str


DecodeResult = Union[Decoded[T], Malformed]


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------
def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def pad_row(row: Sequence[Any], width: int) -> List[str]:
    """Return ``row`` as strings, padded with ``""`` to at least ``width`` cells."""

    cells = [_cell(value) for value in row]
    if len(cells) < width:
        cells.extend([""] * (width - len(cells)))
    return cells


def format_number(value: Optional[float]) -> str:
    """Return ``value`` as a decimal string; integral values drop the ``.0``."""

    if value is None:
        return ""
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, int):
        return str(value)
    number = float(value)
    if math.isfinite(number) and number.is_integer():
        return str(int(number))
    return repr(number)


def parse_number(value: Any) -> Optional[float]:
    """Return ``value`` as ``float``; blank or unparseable cells yield ``None``."""

    text = _cell(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_integer(value: Any) -> Optional[int]:
    number = parse_number(value)
    if number is None:
        return None
    return int(number)


def parse_bool(value: Any, *, lenient: bool = True) -> bool:
    """Decode a boolean cell.

    In lenient mode (the stored-data default) only ``"false"`` and ``"0"``
    decode to ``False``; blank, missing and unrecognised cells are ``True``.
    Strict mode accepts only ``"true"`` and ``"1"`` as ``True``.
    """

    text = _cell(value).strip().lower()
    if lenient:
        return text not in _FALSE_TOKENS
    return text in _TRUE_TOKENS


def _optional_text(value: str) -> Optional[str]:
    return value if value != "" else None


def _enum_or_default(enum_type: Type[E], value: str, default: E) -> E:
    try:
        return enum_type(value.strip().lower())  # type: ignore[call-arg]
    except ValueError:
        return default


def _timestamps(created_cell: str, updated_cell: str) -> Tuple[datetime, datetime]:
    created_at = parse_timestamp(created_cell) or EPOCH
    updated_at = parse_timestamp(updated_cell) or created_at
    return created_at, updated_at


def placeholder_id(row_number: int, raw_id: str) -> str:
    """Return the synthetic ID given to a row that failed to decode."""

    suffix = raw_id.strip() or "missing"
    return f"{PLACEHOLDER_ID_PREFIX}row{row_number}-{suffix}"


def _source_or(entity: Any, width: int, cells: List[str]) -> List[str]:
    source = getattr(entity, "source_row", None)
    if source is not None:
        return pad_row(source, width)
    return cells


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------
def encode_client(client: Client) -> List[str]:
    cells = [
        client.id,
        client.name,
        client.email or "",
        client.phone or "",
        client.address or "",
        client.notes or "",
        format_timestamp(client.created_at),
        format_timestamp(client.updated_at),
        _cell(bool(client.is_active)),
    ]
    return _source_or(client, len(CLIENT_HEADERS), cells)


def decode_client(row: Sequence[Any], *, lenient_booleans: bool = True) -> DecodeResult[Client]:
    cells = pad_row(row, len(CLIENT_HEADERS))
    if not cells[0].strip():
        return Malformed(cells, "missing client ID")
    if not cells[1].strip():
        return Malformed(cells, "missing client name")
    created_at, updated_at = _timestamps(cells[6], cells[7])
    return Decoded(
        Client(
            id=cells[0],
            name=cells[1],
            email=_optional_text(cells[2]),
            phone=_optional_text(cells[3]),
            address=_optional_text(cells[4]),
            notes=_optional_text(cells[5]),
            created_at=created_at,
            updated_at=updated_at,
            is_active=parse_bool(cells[8], lenient=lenient_booleans),
        )
    )


def placeholder_client(malformed: Malformed, row_number: int) -> Client:
    return Client(
        id=placeholder_id(row_number, malformed.raw_row[0] if malformed.raw_row else ""),
        name="Error Client",
        notes=f"Error parsing client data: {malformed.reason}",
        created_at=EPOCH,
        updated_at=EPOCH,
        is_active=False,
        source_row=list(malformed.raw_row),
    )


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------
def encode_project(project: Project) -> List[str]:
    cells = [
        project.id,
        project.client_id,
        project.name,
        project.description or "",
        ProjectStatus(project.status).value,
        format_number(project.hourly_rate),
        format_number(project.budget),
        format_timestamp(project.start_date),
        format_timestamp(project.end_date),
        format_timestamp(project.created_at),
        format_timestamp(project.updated_at),
        _cell(bool(project.is_active)),
    ]
    return _source_or(project, len(PROJECT_HEADERS), cells)


def decode_project(row: Sequence[Any], *, lenient_booleans: bool = True) -> DecodeResult[Project]:
    cells = pad_row(row, len(PROJECT_HEADERS))
    if not cells[0].strip():
        return Malformed(cells, "missing project ID")
    if not cells[1].strip():
        return Malformed(cells, "missing client ID")
    if not cells[2].strip():
        return Malformed(cells, "missing project name")
    created_at, updated_at = _timestamps(cells[9], cells[10])
    return Decoded(
        Project(
            id=cells[0],
            client_id=cells[1],
            name=cells[2],
            description=_optional_text(cells[3]),
            status=_enum_or_default(ProjectStatus, cells[4], ProjectStatus.ACTIVE),
            hourly_rate=parse_number(cells[5]),
            budget=parse_number(cells[6]),
            start_date=parse_timestamp(cells[7]),
            end_date=parse_timestamp(cells[8]),
            created_at=created_at,
            updated_at=updated_at,
            is_active=parse_bool(cells[11], lenient=lenient_booleans),
        )
    )


def placeholder_project(malformed: Malformed, row_number: int) -> Project:
    return Project(
        id=placeholder_id(row_number, malformed.raw_row[0] if malformed.raw_row else ""),
        client_id="",
        name="Error Project",
        description=f"Error parsing project data: {malformed.reason}",
        created_at=EPOCH,
        updated_at=EPOCH,
        is_active=False,
        source_row=list(malformed.raw_row),
    )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
def encode_task(task: Task) -> List[str]:
    cells = [
        task.id,
        task.project_id,
        task.name,
        task.description or "",
        TaskStatus(task.status).value,
        TaskPriority(task.priority).value,
        format_number(task.estimated_hours),
        format_timestamp(task.created_at),
        format_timestamp(task.updated_at),
        _cell(bool(task.is_active)),
    ]
    return _source_or(task, len(TASK_HEADERS), cells)


def decode_task(row: Sequence[Any], *, lenient_booleans: bool = True) -> DecodeResult[Task]:
    cells = pad_row(row, len(TASK_HEADERS))
    if not cells[0].strip():
        return Malformed(cells, "missing task ID")
    if not cells[1].strip():
        return Malformed(cells, "missing project ID")
    if not cells[2].strip():
        return Malformed(cells, "missing task name")
    created_at, updated_at = _timestamps(cells[7], cells[8])
    return Decoded(
        Task(
            id=cells[0],
            project_id=cells[1],
            name=cells[2],
            description=_optional_text(cells[3]),
            status=_enum_or_default(TaskStatus, cells[4], TaskStatus.TODO),
            priority=_enum_or_default(TaskPriority, cells[5], TaskPriority.MEDIUM),
            estimated_hours=parse_number(cells[6]),
            created_at=created_at,
            updated_at=updated_at,
            is_active=parse_bool(cells[9], lenient=lenient_booleans),
        )
    )


def placeholder_task(malformed: Malformed, row_number: int) -> Task:
    return Task(
        id=placeholder_id(row_number, malformed.raw_row[0] if malformed.raw_row else ""),
        project_id="",
        name="Error Task",
        description=f"Error parsing task data: {malformed.reason}",
        created_at=EPOCH,
        updated_at=EPOCH,
        is_active=False,
        source_row=list(malformed.raw_row),
    )


# ---------------------------------------------------------------------------
# Time entries
# ---------------------------------------------------------------------------
def encode_time_entry(entry: TimeEntry) -> List[str]:
    cells = [
        entry.id,
        entry.task_id,
        entry.project_id,
        entry.client_id,
        entry.description,
        format_timestamp(entry.start_time),
        format_timestamp(entry.end_time),
        format_number(entry.duration),
        format_number(entry.hourly_rate),
        format_number(entry.total_amount),
        entry.notes or "",
        format_timestamp(entry.created_at),
        format_timestamp(entry.updated_at),
        _cell(bool(entry.is_active)),
    ]
    return _source_or(entry, len(TIME_ENTRY_HEADERS), cells)


def decode_time_entry(row: Sequence[Any], *, lenient_booleans: bool = True) -> DecodeResult[TimeEntry]:
    cells = pad_row(row, len(TIME_ENTRY_HEADERS))
    if not cells[0].strip():
        return Malformed(cells, "missing time entry ID")
    if not cells[1].strip():
        return Malformed(cells, "missing task ID")
    start_time = parse_timestamp(cells[5])
    if start_time is None:
        return Malformed(cells, "missing or invalid start time")
    created_at, updated_at = _timestamps(cells[11], cells[12])
    return Decoded(
        TimeEntry(
            id=cells[0],
            task_id=cells[1],
            project_id=cells[2],
            client_id=cells[3],
            description=cells[4],
            start_time=start_time,
            end_time=parse_timestamp(cells[6]),
            duration=parse_integer(cells[7]),
            hourly_rate=parse_number(cells[8]),
            total_amount=parse_number(cells[9]),
            notes=_optional_text(cells[10]),
            created_at=created_at,
            updated_at=updated_at,
            is_active=parse_bool(cells[13], lenient=lenient_booleans),
        )
    )


def placeholder_time_entry(malformed: Malformed, row_number: int) -> TimeEntry:
    raw = malformed.raw_row
    return TimeEntry(
        id=placeholder_id(row_number, raw[0] if raw else ""),
        task_id=raw[1] if len(raw) > 1 else "",
        project_id=raw[2] if len(raw) > 2 else "",
        client_id=raw[3] if len(raw) > 3 else "",
        description="Error Time Entry",
        start_time=EPOCH,
        notes=f"Error parsing time entry data: {malformed.reason}",
        created_at=EPOCH,
        updated_at=EPOCH,
        is_active=False,
        source_row=list(raw),
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
def setting_type(value: Any) -> str:
    """Return the type tag recorded next to a setting value."""

    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def encode_setting(
    key: str,
    value: Any,
    updated_at: datetime,
    description: Optional[str] = None,
) -> List[str]:
    kind = setting_type(value)
    if kind == "object":
        text = json.dumps(value, sort_keys=True)
    elif kind == "boolean":
        text = "true" if value else "false"
    elif kind == "number":
        text = format_number(value)
    else:
        text = value
    return [key, text, description or f"Setting: {key}", kind, format_timestamp(updated_at)]


def decode_setting_row(row: Sequence[Any]) -> Optional[Tuple[str, Any]]:
    """Return ``(key, typed value)`` or ``None`` for rows without a key.

    A row with a key and a blank value cell decodes to ``(key, "")``.
    """

    cells = pad_row(row, len(SETTINGS_HEADERS))
    key, value, kind = cells[0], cells[1], cells[3].strip().lower()
    if not key:
        return None
    if not value:
        return key, ""
    if kind == "object":
        try:
            return key, json.loads(value)
        except ValueError:
            return key, value
    if kind == "number":
        if _INTEGER_RE.match(value.strip()):
            return key, int(value)
        number = parse_number(value)
        return key, value if number is None else number
    if kind == "boolean":
        return key, value.strip() == "true"
    return key, value


# ---------------------------------------------------------------------------
# Codec bundles
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class EntityCodec(Generic[T]):
    """Column layout plus conversion functions for one entity type."""

    name: str
    headers: Tuple[str, ...]
    encode: Callable[[T], List[str]]
    decode: Callable[..., DecodeResult[T]]
    placeholder: Callable[[Malformed, int], T]

    @property
    def width(self) -> int:
        return len(self.headers)


CLIENT_CODEC: EntityCodec[Client] = EntityCodec(
    "client", CLIENT_HEADERS, encode_client, decode_client, placeholder_client
)
PROJECT_CODEC: EntityCodec[Project] = EntityCodec(
    "project", PROJECT_HEADERS, encode_project, decode_project, placeholder_project
)
TASK_CODEC: EntityCodec[Task] = EntityCodec(
    "task", TASK_HEADERS, encode_task, decode_task, placeholder_task
)
TIME_ENTRY_CODEC: EntityCodec[TimeEntry] = EntityCodec(
    "time entry", TIME_ENTRY_HEADERS, encode_time_entry, decode_time_entry, placeholder_time_entry
)


__all__ = [
    "CLIENT_CODEC",
    "CLIENT_HEADERS",
    "PROJECT_CODEC",
    "PROJECT_HEADERS",
    "SETTINGS_HEADERS",
    "TASK_CODEC",
    "TASK_HEADERS",
    "TIME_ENTRY_CODEC",
    "TIME_ENTRY_HEADERS",
    "Decoded",
    "DecodeResult",
    "EntityCodec",
    "Malformed",
    "decode_client",
    "decode_project",
    "decode_setting_row",
    "decode_task",
    "decode_time_entry",
    "encode_client",
    "encode_project",
    "encode_setting",
    "encode_task",
    "encode_time_entry",
    "format_number",
    "pad_row",
    "parse_bool",
    "parse_integer",
    "parse_number",
    "placeholder_client",
    "placeholder_id",
    "placeholder_project",
    "placeholder_task",
    "placeholder_time_entry",
    "setting_type",
]
