"""Entity-level operations on top of the collection sync engine.

Every public data operation of :class:`DataService` returns a
:class:`~thistracker.models.ServiceResult`; tracker errors and unexpected
exceptions are converted into a failed result with a readable message.
:meth:`DataService.initialize` is the exception: failing to locate or create
the spreadsheet is fatal and raises.

Each mutation reads the whole collection, changes it in memory and writes it
back.  There is no referential integrity: deleting a client leaves its
projects, tasks and time entries in place.
"""

from __future__ import annotations

import functools
import logging
import re
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from thistracker.collection_sync import CollectionSync
from thistracker.config import TrackerConfig
from thistracker.errors import NotFoundError, TrackerError, ValidationError
from thistracker.models import (
    Client,
    Project,
    ProjectStatus,
    ServiceResult,
    Task,
    TaskPriority,
    TaskStatus,
    TimeEntry,
    generate_id,
    parse_timestamp,
    utc_now,
)
from thistracker.provisioning import ProvisionResult, SpreadsheetProvisioner
from thistracker.transport import SheetsTransport, build_transport

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., ServiceResult])

MS_PER_HOUR = 3_600_000
DEFAULT_PAGE_SIZE = 1000

# Field kinds understood by ``_coerce_value``.
TEXT = "text"
REQUIRED_TEXT = "required_text"
NUMBER = "number"
TIMESTAMP = "timestamp"
REQUIRED_TIMESTAMP = "required_timestamp"
BOOLEAN = "boolean"

_CLIENT_FIELDS: Dict[str, Any] = {
    "name": REQUIRED_TEXT,
    "email": TEXT,
    "phone": TEXT,
    "address": TEXT,
    "notes": TEXT,
    "is_active": BOOLEAN,
}

_PROJECT_FIELDS: Dict[str, Any] = {
    "client_id": REQUIRED_TEXT,
    "name": REQUIRED_TEXT,
    "description": TEXT,
    "status": ProjectStatus,
    "hourly_rate": NUMBER,
    "budget": NUMBER,
    "start_date": TIMESTAMP,
    "end_date": TIMESTAMP,
    "is_active": BOOLEAN,
}

_TASK_FIELDS: Dict[str, Any] = {
    "project_id": REQUIRED_TEXT,
    "name": REQUIRED_TEXT,
    "description": TEXT,
    "status": TaskStatus,
    "priority": TaskPriority,
    "estimated_hours": NUMBER,
    "is_active": BOOLEAN,
}

_TIME_ENTRY_FIELDS: Dict[str, Any] = {
    "task_id": REQUIRED_TEXT,
    "description": REQUIRED_TEXT,
    "start_time": REQUIRED_TIMESTAMP,
    "end_time": TIMESTAMP,
    "hourly_rate": NUMBER,
    "notes": TEXT,
    "is_active": BOOLEAN,
}

# Fields maintained by the service itself.
_MANAGED_FIELDS = frozenset(
    {"id", "created_at", "updated_at", "duration", "total_amount", "source_row", "is_placeholder", "is_running"}
)
# Denormalised on time entries at creation and frozen afterwards.
_FROZEN_TIME_ENTRY_FIELDS = frozenset({"project_id", "client_id"})

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _label(field_name: str) -> str:
    return field_name.replace("_", " ")


def _coerce_value(entity: str, field_name: str, kind: Any, value: Any) -> Any:
    if isinstance(kind, type) and issubclass(kind, Enum):
        try:
            return kind(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid {entity} {_label(field_name)}: {value}") from None

    if kind in (TEXT, REQUIRED_TEXT):
        if value is None or (isinstance(value, str) and not value.strip()):
            if kind == REQUIRED_TEXT:
                raise ValidationError(f"{entity.capitalize()} {_label(field_name)} is required")
            return None
        return value if isinstance(value, str) else str(value)

    if kind == NUMBER:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if isinstance(value, bool):
            raise ValidationError(f"{entity.capitalize()} {_label(field_name)} must be a number")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{entity.capitalize()} {_label(field_name)} must be a number") from None

    if kind in (TIMESTAMP, REQUIRED_TIMESTAMP):
        if value is None or (isinstance(value, str) and not value.strip()):
            if kind == REQUIRED_TIMESTAMP:
                raise ValidationError(f"{entity.capitalize()} {_label(field_name)} is required")
            return None
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValidationError(f"{entity.capitalize()} {_label(field_name)} is not a valid timestamp")
        return parsed

    if kind == BOOLEAN:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in {"true", "1"}:
            return True
        if text in {"false", "0"}:
            return False
        raise ValidationError(f"{entity.capitalize()} {_label(field_name)} must be true or false")

    raise ValidationError(f"Unsupported field {field_name}")


def _prepare_fields(
    entity: str,
    data: Optional[Mapping[str, Any]],
    allowed: Mapping[str, Any],
    *,
    frozen: Iterable[str] = (),
    creating: bool,
) -> Dict[str, Any]:
    """Normalise ``data`` keys, reject unknown or protected keys and coerce values."""

    frozen_fields = set(frozen)
    prepared: Dict[str, Any] = {}
    for raw_key, value in (data or {}).items():
        key = _snake_case(str(raw_key))
        if key in _MANAGED_FIELDS or key in frozen_fields or (creating and key == "is_active"):
            raise ValidationError(f"Field '{raw_key}' cannot be set on a {entity}")
        if key not in allowed:
            raise ValidationError(f"Unknown {entity} field '{raw_key}'")
        prepared[key] = _coerce_value(entity, key, allowed[key], value)

    if creating:
        for key, kind in allowed.items():
            if key not in prepared and kind in (REQUIRED_TEXT, REQUIRED_TIMESTAMP):
                raise ValidationError(f"{entity.capitalize()} {_label(key)} is required")
    return prepared


def compute_billing(
    start_time: datetime,
    end_time: Optional[datetime],
    hourly_rate: Optional[float],
) -> Tuple[Optional[int], Optional[float]]:
    """Return ``(duration_ms, total_amount)`` for a time entry.

    Running entries have neither.  A finished entry always has a duration and
    has a total only when an hourly rate is known.
    """

    if end_time is None:
        return None, None
    duration = (end_time - start_time) // timedelta(milliseconds=1)
    if duration < 0:
        raise ValidationError("Time entry end time must not be before its start time")
    if hourly_rate is None:
        return duration, None
    return duration, duration / MS_PER_HOUR * hourly_rate


def _find(items: List[Any], entity_id: str) -> int:
    for index, item in enumerate(items):
        if item.id == entity_id:
            return index
    return -1


def _latest(items: Iterable[Any]) -> Optional[datetime]:
    stamps = [item.updated_at for item in items]
    return max(stamps) if stamps else None


def service_call(description: str) -> Callable[[F], F]:
    """Convert exceptions raised by a façade method into a failed result."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: "DataService", *args: Any, **kwargs: Any) -> ServiceResult:
            try:
                return func(self, *args, **kwargs)
            except TrackerError as exc:
                logger.warning("%s failed: %s", description, exc)
                return ServiceResult.fail(str(exc))
            except Exception as exc:
                logger.error("%s failed unexpectedly", description, exc_info=True)
                return ServiceResult.fail(str(exc) or "Unknown error")

        return wrapper  # type: ignore[return-value]

    return decorator


class DataService:
    """CRUD façade for one principal's tracker spreadsheet.

    Create one instance per request with :func:`create_data_service`; an
    instance is bound to the credentials its transport was built with.
    """

    def __init__(
        self,
        transport: SheetsTransport,
        config: Optional[TrackerConfig] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self.transport = transport
        self.config = config or TrackerConfig()
        self.layout = self.config.layout()
        self.provisioner = SpreadsheetProvisioner(transport, self.layout)
        self._clock = clock
        self._id_factory = id_factory
        self._sync: Optional[CollectionSync] = None
        self.provision_result: Optional[ProvisionResult] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self) -> ProvisionResult:
        result = self.provisioner.initialize()
        self.provision_result = result
        self._sync = CollectionSync(
            self.transport,
            result.spreadsheet_id,
            self.provisioner,
            self.layout,
            self.config,
        )
        try:
            self.provisioner.verify_integrity()
        except TrackerError as exc:
            logger.warning("Integrity check after initialisation failed: %s", exc)
        return result

    def _ready(self) -> CollectionSync:
        if self._sync is None:
            self.initialize()
        assert self._sync is not None
        return self._sync

    @property
    def sync(self) -> CollectionSync:
        return self._ready()

    @property
    def spreadsheet_id(self) -> str:
        return self.sync.spreadsheet_id

    def _now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------
    @service_call("Create client")
    def create_client(self, data: Mapping[str, Any]) -> ServiceResult[Client]:
        fields = _prepare_fields("client", data, _CLIENT_FIELDS, creating=True)
        now = self._now()
        client = Client(id=self._id_factory(), created_at=now, updated_at=now, is_active=True, **fields)
        clients = self.sync.get_clients()
        clients.append(client)
        self.sync.sync_clients(clients)
        logger.info("Created client %s", client.id)
        return ServiceResult.ok(client)

    @service_call("List clients")
    def get_clients(self) -> ServiceResult[List[Client]]:
        return ServiceResult.ok(self.sync.get_clients())

    @service_call("Update client")
    def update_client(self, client_id: str, data: Mapping[str, Any]) -> ServiceResult[Client]:
        fields = _prepare_fields("client", data, _CLIENT_FIELDS, creating=False)
        clients = self.sync.get_clients()
        index = _find(clients, client_id)
        if index < 0:
            raise NotFoundError("Client not found")
        client = self._apply(clients[index], fields)
        self.sync.sync_clients(clients)
        return ServiceResult.ok(client)

    @service_call("Delete client")
    def delete_client(self, client_id: str) -> ServiceResult[None]:
        clients = self.sync.get_clients()
        self.sync.sync_clients([client for client in clients if client.id != client_id])
        return ServiceResult.ok()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------
    @service_call("Create project")
    def create_project(self, data: Mapping[str, Any]) -> ServiceResult[Project]:
        fields = _prepare_fields("project", data, _PROJECT_FIELDS, creating=True)
        now = self._now()
        project = Project(id=self._id_factory(), created_at=now, updated_at=now, is_active=True, **fields)
        projects = self.sync.get_projects()
        projects.append(project)
        self.sync.sync_projects(projects)
        logger.info("Created project %s for client %s", project.id, project.client_id)
        return ServiceResult.ok(project)

    @service_call("List projects")
    def get_projects(self, client_id: Optional[str] = None) -> ServiceResult[List[Project]]:
        projects = self.sync.get_projects()
        if client_id:
            projects = [project for project in projects if project.client_id == client_id]
        return ServiceResult.ok(projects)

    @service_call("Update project")
    def update_project(self, project_id: str, data: Mapping[str, Any]) -> ServiceResult[Project]:
        fields = _prepare_fields("project", data, _PROJECT_FIELDS, creating=False)
        projects = self.sync.get_projects()
        index = _find(projects, project_id)
        if index < 0:
            raise NotFoundError("Project not found")
        project = self._apply(projects[index], fields)
        self.sync.sync_projects(projects)
        return ServiceResult.ok(project)

    @service_call("Delete project")
    def delete_project(self, project_id: str) -> ServiceResult[None]:
        projects = self.sync.get_projects()
        self.sync.sync_projects([project for project in projects if project.id != project_id])
        return ServiceResult.ok()

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    @service_call("Create task")
    def create_task(self, data: Mapping[str, Any]) -> ServiceResult[Task]:
        fields = _prepare_fields("task", data, _TASK_FIELDS, creating=True)
        now = self._now()
        task = Task(id=self._id_factory(), created_at=now, updated_at=now, is_active=True, **fields)
        tasks = self.sync.get_tasks()
        tasks.append(task)
        self.sync.sync_tasks(tasks)
        logger.info("Created task %s for project %s", task.id, task.project_id)
        return ServiceResult.ok(task)

    @service_call("List tasks")
    def get_tasks(self, project_id: Optional[str] = None) -> ServiceResult[List[Task]]:
        tasks = self.sync.get_tasks()
        if project_id:
            tasks = [task for task in tasks if task.project_id == project_id]
        return ServiceResult.ok(tasks)

    @service_call("Update task")
    def update_task(self, task_id: str, data: Mapping[str, Any]) -> ServiceResult[Task]:
        fields = _prepare_fields("task", data, _TASK_FIELDS, creating=False)
        tasks = self.sync.get_tasks()
        index = _find(tasks, task_id)
        if index < 0:
            raise NotFoundError("Task not found")
        task = self._apply(tasks[index], fields)
        self.sync.sync_tasks(tasks)
        return ServiceResult.ok(task)

    @service_call("Delete task")
    def delete_task(self, task_id: str) -> ServiceResult[None]:
        tasks = self.sync.get_tasks()
        self.sync.sync_tasks([task for task in tasks if task.id != task_id])
        return ServiceResult.ok()

    # ------------------------------------------------------------------
    # Time entries
    # ------------------------------------------------------------------
    @service_call("Create time entry")
    def create_time_entry(self, data: Mapping[str, Any]) -> ServiceResult[TimeEntry]:
        fields = _prepare_fields("time entry", data, _TIME_ENTRY_FIELDS, creating=True)

        tasks = self.sync.get_tasks()
        task_index = _find(tasks, fields["task_id"])
        if task_index < 0:
            raise NotFoundError("Task not found")
        task = tasks[task_index]

        projects = self.sync.get_projects()
        project_index = _find(projects, task.project_id)
        if project_index < 0:
            raise NotFoundError("Project not found")
        project = projects[project_index]

        hourly_rate = fields.pop("hourly_rate", None)
        if hourly_rate is None:
            hourly_rate = project.hourly_rate
        duration, total_amount = compute_billing(fields["start_time"], fields.get("end_time"), hourly_rate)

        now = self._now()
        entry = TimeEntry(
            id=self._id_factory(),
            project_id=task.project_id,
            client_id=project.client_id,
            duration=duration,
            hourly_rate=hourly_rate,
            total_amount=total_amount,
            created_at=now,
            updated_at=now,
            is_active=True,
            **fields,
        )
        entries = self.sync.get_time_entries()
        entries.append(entry)
        self.sync.sync_time_entries(entries)
        logger.info("Created time entry %s for task %s", entry.id, entry.task_id)
        return ServiceResult.ok(entry)

    @service_call("List time entries")
    def get_time_entries(
        self,
        client_id: Optional[str] = None,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        start_date: Optional[Any] = None,
        end_date: Optional[Any] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        page: int = 1,
    ) -> ServiceResult[List[TimeEntry]]:
        if limit < 1 or page < 1:
            raise ValidationError("limit and page must be positive")
        start = _coerce_value("time entry filter", "start_date", TIMESTAMP, start_date)
        end = _coerce_value("time entry filter", "end_date", TIMESTAMP, end_date)

        entries = self.sync.get_time_entries()
        if client_id:
            entries = [entry for entry in entries if entry.client_id == client_id]
        if project_id:
            entries = [entry for entry in entries if entry.project_id == project_id]
        if task_id:
            entries = [entry for entry in entries if entry.task_id == task_id]
        if start is not None:
            entries = [entry for entry in entries if entry.start_time >= start]
        if end is not None:
            entries = [entry for entry in entries if entry.start_time <= end]

        offset = (page - 1) * limit
        return ServiceResult.ok(entries[offset : offset + limit])

    @service_call("Update time entry")
    def update_time_entry(self, entry_id: str, data: Mapping[str, Any]) -> ServiceResult[TimeEntry]:
        fields = _prepare_fields(
            "time entry",
            data,
            _TIME_ENTRY_FIELDS,
            frozen=_FROZEN_TIME_ENTRY_FIELDS,
            creating=False,
        )
        entries = self.sync.get_time_entries()
        index = _find(entries, entry_id)
        if index < 0:
            raise NotFoundError("Time entry not found")
        entry = entries[index]
        self._reject_placeholder(entry)

        times_changed = "start_time" in fields or "end_time" in fields
        rate_changed = "hourly_rate" in fields
        start_time = fields.get("start_time", entry.start_time)
        end_time = fields.get("end_time", entry.end_time)
        hourly_rate = fields.get("hourly_rate", entry.hourly_rate)
        if times_changed or rate_changed:
            duration, total_amount = compute_billing(start_time, end_time, hourly_rate)
            entry.duration = duration
            entry.total_amount = total_amount

        self._apply(entry, fields)
        self.sync.sync_time_entries(entries)
        return ServiceResult.ok(entry)

    @service_call("Delete time entry")
    def delete_time_entry(self, entry_id: str) -> ServiceResult[None]:
        entries = self.sync.get_time_entries()
        self.sync.sync_time_entries([entry for entry in entries if entry.id != entry_id])
        return ServiceResult.ok()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @service_call("Read settings")
    def get_settings(self) -> ServiceResult[Dict[str, Any]]:
        return ServiceResult.ok(self.sync.get_settings())

    @service_call("Update settings")
    def update_settings(self, settings: Mapping[str, Any]) -> ServiceResult[Dict[str, Any]]:
        if not isinstance(settings, Mapping):
            raise ValidationError("Settings must be a mapping of keys to values")
        records = self.sync.get_setting_records()
        merged: Dict[str, Any] = {record.key: record.value for record in records}
        descriptions = {record.key: record.description for record in records if record.description}
        for key, value in settings.items():
            if not str(key).strip():
                raise ValidationError("Setting keys must not be empty")
            merged[str(key)] = value
        self.sync.sync_settings(merged, descriptions)
        return ServiceResult.ok(merged)

    # ------------------------------------------------------------------
    # Related reads
    # ------------------------------------------------------------------
    @service_call("Read client with projects")
    def get_client_with_projects(self, client_id: str) -> ServiceResult[Dict[str, Any]]:
        clients = self.sync.get_clients()
        index = _find(clients, client_id)
        if index < 0:
            raise NotFoundError("Client not found")
        projects = [project for project in self.sync.get_projects() if project.client_id == client_id]
        return ServiceResult.ok({"client": clients[index], "projects": projects})

    @service_call("Read project with tasks")
    def get_project_with_tasks(self, project_id: str) -> ServiceResult[Dict[str, Any]]:
        projects = self.sync.get_projects()
        index = _find(projects, project_id)
        if index < 0:
            raise NotFoundError("Project not found")
        tasks = [task for task in self.sync.get_tasks() if task.project_id == project_id]
        return ServiceResult.ok({"project": projects[index], "tasks": tasks})

    @service_call("Read all data")
    def get_all_data(self) -> ServiceResult[Dict[str, Any]]:
        return ServiceResult.ok(
            {
                "clients": self.sync.get_clients(),
                "projects": self.sync.get_projects(),
                "tasks": self.sync.get_tasks(),
                "timeEntries": self.sync.get_time_entries(),
                "settings": self.sync.get_settings(),
            }
        )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    @service_call("Read spreadsheet info")
    def get_spreadsheet_info(self) -> ServiceResult[Dict[str, Any]]:
        self._ready()
        return ServiceResult.ok(self.provisioner.metadata().to_json())

    @service_call("Verify integrity")
    def verify_integrity(self) -> ServiceResult[Dict[str, Any]]:
        self._ready()
        return ServiceResult.ok(self.provisioner.verify_integrity().to_json())

    @service_call("Read data overview")
    def get_data_overview(self) -> ServiceResult[Dict[str, Any]]:
        self._ready()
        info = self.provisioner.metadata().to_json()
        clients = self.sync.get_clients()
        projects = self.sync.get_projects()
        tasks = self.sync.get_tasks()
        entries = self.sync.get_time_entries()
        return ServiceResult.ok(
            {
                "spreadsheetInfo": info,
                "counts": {
                    "clients": len(clients),
                    "projects": len(projects),
                    "tasks": len(tasks),
                    "timeEntries": len(entries),
                },
                "recentActivity": {
                    "lastClient": _latest(clients),
                    "lastProject": _latest(projects),
                    "lastTask": _latest(tasks),
                    "lastTimeEntry": _latest(entries),
                },
            }
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _reject_placeholder(entity: Any) -> None:
        if entity.is_placeholder:
            raise ValidationError(f"Row {entity.id} could not be read and can only be deleted")

    def _apply(self, entity: Any, fields: Mapping[str, Any]) -> Any:
        self._reject_placeholder(entity)
        for name, value in fields.items():
            setattr(entity, name, value)
        entity.updated_at = self._now()
        return entity


def create_data_service(credentials, config: Optional[TrackerConfig] = None) -> DataService:
    """Build and initialise a :class:`DataService` for one principal's request.

    A new transport and façade are created on every call so that no state is
    shared between principals.
    """

    config = config or TrackerConfig()
    service = DataService(build_transport(credentials, config), config)
    service.initialize()
    return service


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "DataService",
    "compute_billing",
    "create_data_service",
    "service_call",
]
