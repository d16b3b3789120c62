from __future__ import annotations

from datetime import datetime, timezone

import pytest

from thistracker.errors import TransportError, ValidationError
from thistracker.service import DataService, compute_billing


@pytest.fixture
def service(transport, fixed_clock, sequential_ids) -> DataService:
    data_service = DataService(transport, clock=fixed_clock, id_factory=sequential_ids)
    data_service.initialize()
    return data_service


@pytest.fixture
def billing_chain(service):
    client = service.create_client({"name": "Acme"}).data
    project = service.create_project({"client_id": client.id, "name": "Website", "hourly_rate": 100}).data
    task = service.create_task({"project_id": project.id, "name": "Design"}).data
    return client, project, task


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------
def test_create_client_sets_managed_fields(service, fixed_clock) -> None:
    result = service.create_client({"name": "Acme", "email": "ops@acme.test"})

    assert result.success is True
    client = result.data
    assert client.id == "id-1"
    assert client.is_active is True
    assert client.created_at == client.updated_at == fixed_clock()
    assert service.get_clients().data == [client]


def test_create_client_requires_a_name(service) -> None:
    result = service.create_client({"email": "nobody@example.test"})

    assert result.success is False
    assert result.error == "Client name is required"
    assert service.get_clients().data == []


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"name": "Acme", "id": "forced"}, "Field 'id' cannot be set on a client"),
        ({"name": "Acme", "isActive": False}, "Field 'isActive' cannot be set on a client"),
        ({"name": "Acme", "colour": "red"}, "Unknown client field 'colour'"),
    ],
)
def test_create_client_rejects_protected_and_unknown_fields(service, payload, message) -> None:
    result = service.create_client(payload)

    assert result.success is False
    assert result.error == message


def test_update_client_touches_updated_at_only(service, fixed_clock) -> None:
    created = service.create_client({"name": "Acme"}).data
    later = fixed_clock.advance(hours=1)

    updated = service.update_client(created.id, {"name": "Acme Ltd", "isActive": "false"}).data

    assert updated.name == "Acme Ltd"
    assert updated.is_active is False
    assert updated.created_at == created.created_at
    assert updated.updated_at == later
    assert service.get_clients().data[0].name == "Acme Ltd"


def test_update_missing_client_fails(service) -> None:
    result = service.update_client("nope", {"name": "x"})

    assert result.success is False
    assert result.error == "Client not found"


def test_delete_is_idempotent(service) -> None:
    client = service.create_client({"name": "Acme"}).data

    assert service.delete_client(client.id).success is True
    assert service.delete_client(client.id).success is True
    assert service.get_clients().data == []


# ---------------------------------------------------------------------------
# Projects and tasks
# ---------------------------------------------------------------------------
def test_project_for_unknown_client_is_accepted_and_listed(service) -> None:
    project = service.create_project({"clientId": "ghost", "name": "Orphan", "hourlyRate": "80"}).data

    assert project.client_id == "ghost"
    assert project.hourly_rate == 80.0
    assert service.get_projects("ghost").data == [project]
    assert service.get_projects("someone-else").data == []


def test_deleting_a_client_does_not_cascade(service) -> None:
    client = service.create_client({"name": "Acme"}).data
    service.create_project({"client_id": client.id, "name": "Website"})

    service.delete_client(client.id)

    assert len(service.get_projects(client.id).data) == 1


def test_invalid_project_status_is_rejected(service) -> None:
    result = service.create_project({"client_id": "c", "name": "X", "status": "archived"})

    assert result.success is False
    assert result.error == "Invalid project status: archived"


def test_task_defaults_and_filter(service) -> None:
    first = service.create_task({"project_id": "p1", "name": "One"}).data
    service.create_task({"project_id": "p2", "name": "Two", "priority": "HIGH"})

    assert first.status.value == "todo"
    assert first.priority.value == "medium"
    assert [task.name for task in service.get_tasks("p1").data] == ["One"]
    assert service.get_tasks("p2").data[0].priority.value == "high"


def test_non_numeric_rate_is_rejected(service) -> None:
    result = service.create_project({"client_id": "c", "name": "X", "hourly_rate": "lots"})

    assert result.success is False
    assert result.error == "Project hourly rate must be a number"


# ---------------------------------------------------------------------------
# Time entries
# ---------------------------------------------------------------------------
def test_time_entry_for_unknown_task_fails(service) -> None:
    result = service.create_time_entry(
        {"task_id": "missing", "description": "Work", "start_time": "2024-01-01T10:00:00Z"}
    )

    assert result.success is False
    assert result.error == "Task not found"


def test_time_entry_for_task_without_project_fails(service) -> None:
    task = service.create_task({"project_id": "ghost", "name": "Loose"}).data

    result = service.create_time_entry(
        {"task_id": task.id, "description": "Work", "start_time": "2024-01-01T10:00:00Z"}
    )

    assert result.error == "Project not found"


def test_finished_entry_is_billed_at_project_rate(service, billing_chain) -> None:
    client, project, task = billing_chain

    entry = service.create_time_entry(
        {
            "task_id": task.id,
            "description": "Wireframes",
            "start_time": "2024-01-01T10:00:00Z",
            "end_time": "2024-01-01T12:30:00Z",
        }
    ).data

    assert entry.duration == 9_000_000
    assert entry.hourly_rate == 100
    assert entry.total_amount == pytest.approx(250.0)
    assert entry.project_id == project.id
    assert entry.client_id == client.id
    assert service.get_time_entries().data == [entry]


def test_entry_rate_overrides_project_rate(service, billing_chain) -> None:
    _client, _project, task = billing_chain

    entry = service.create_time_entry(
        {
            "task_id": task.id,
            "description": "Review",
            "start_time": "2024-01-01T10:00:00Z",
            "end_time": "2024-01-01T12:30:00Z",
            "hourly_rate": 50,
        }
    ).data

    assert entry.total_amount == pytest.approx(125.0)


def test_running_entry_has_no_billing(service, billing_chain) -> None:
    entry = service.create_time_entry(
        {"task_id": billing_chain[2].id, "description": "Ongoing", "start_time": "2024-01-01T10:00:00Z"}
    ).data

    assert entry.is_running is True
    assert entry.duration is None
    assert entry.total_amount is None


def test_setting_end_time_recomputes_billing(service, billing_chain, fixed_clock) -> None:
    entry = service.create_time_entry(
        {"task_id": billing_chain[2].id, "description": "Ongoing", "start_time": "2024-01-01T10:00:00Z"}
    ).data
    fixed_clock.advance(minutes=5)

    updated = service.update_time_entry(entry.id, {"endTime": "2024-01-01T11:00:00Z"}).data

    assert updated.duration == 3_600_000
    assert updated.total_amount == pytest.approx(100.0)
    assert updated.updated_at > updated.created_at
    assert service.get_time_entries().data[0].duration == 3_600_000


def test_denormalised_ids_are_frozen(service, billing_chain) -> None:
    entry = service.create_time_entry(
        {"task_id": billing_chain[2].id, "description": "Work", "start_time": "2024-01-01T10:00:00Z"}
    ).data

    result = service.update_time_entry(entry.id, {"projectId": "elsewhere"})

    assert result.success is False
    assert result.error == "Field 'projectId' cannot be set on a time entry"


def test_entry_keeps_ids_when_its_task_moves_to_another_project(service, billing_chain) -> None:
    client, project, task = billing_chain
    other_client = service.create_client({"name": "Globex"}).data
    other_project = service.create_project({"client_id": other_client.id, "name": "Intranet"}).data
    entry = service.create_time_entry(
        {"task_id": task.id, "description": "Work", "start_time": "2024-01-01T10:00:00Z"}
    ).data

    moved = service.update_task(task.id, {"project_id": other_project.id})
    updated = service.update_time_entry(entry.id, {"endTime": "2024-01-01T11:00:00Z"}).data

    assert moved.data.project_id == other_project.id
    assert updated.project_id == project.id
    assert updated.client_id == client.id
    stored = service.get_time_entries(task_id=task.id).data[0]
    assert (stored.project_id, stored.client_id) == (project.id, client.id)


def test_end_before_start_is_rejected(service, billing_chain) -> None:
    result = service.create_time_entry(
        {
            "task_id": billing_chain[2].id,
            "description": "Backwards",
            "start_time": "2024-01-01T12:00:00Z",
            "end_time": "2024-01-01T10:00:00Z",
        }
    )

    assert result.success is False
    assert "must not be before" in result.error


def test_update_missing_time_entry_fails(service) -> None:
    assert service.update_time_entry("nope", {"notes": "x"}).error == "Time entry not found"


def test_time_entry_filters_and_pagination(service, billing_chain) -> None:
    task = billing_chain[2]
    other_task = service.create_task({"project_id": billing_chain[1].id, "name": "Build"}).data
    for day, task_id in [(1, task.id), (2, other_task.id), (3, task.id)]:
        service.create_time_entry(
            {"task_id": task_id, "description": f"Day {day}", "start_time": f"2024-01-0{day}T09:00:00Z"}
        )

    first_page = service.get_time_entries(limit=2, page=1).data
    second_page = service.get_time_entries(limit=2, page=2).data
    by_task = service.get_time_entries(task_id=task.id).data
    from_day_two = service.get_time_entries(start_date="2024-01-02T00:00:00Z").data
    until_day_two = service.get_time_entries(end_date="2024-01-02T23:59:59Z").data

    assert [entry.description for entry in first_page] == ["Day 3", "Day 2"]
    assert [entry.description for entry in second_page] == ["Day 1"]
    assert [entry.description for entry in by_task] == ["Day 3", "Day 1"]
    assert [entry.description for entry in from_day_two] == ["Day 3", "Day 2"]
    assert [entry.description for entry in until_day_two] == ["Day 2", "Day 1"]
    assert len(service.get_time_entries(client_id=billing_chain[0].id).data) == 3
    assert service.get_time_entries(limit=0).success is False


# ---------------------------------------------------------------------------
# Settings, related reads and diagnostics
# ---------------------------------------------------------------------------
def test_update_settings_merges_with_stored_values(service) -> None:
    merged = service.update_settings({"currency": "EUR", "roundTo": 15}).data

    stored = service.get_settings().data
    assert stored == merged
    assert stored["currency"] == "EUR"
    assert stored["roundTo"] == 15
    assert stored["appName"] == "ThisTracker"


def test_empty_setting_value_survives_a_reload(service) -> None:
    assert service.update_settings({"note": ""}).data["note"] == ""

    stored = service.get_settings().data

    assert stored["note"] == ""


def test_related_reads(service, billing_chain) -> None:
    client, project, task = billing_chain

    with_projects = service.get_client_with_projects(client.id).data
    with_tasks = service.get_project_with_tasks(project.id).data

    assert with_projects["client"] == client
    assert with_projects["projects"] == [project]
    assert with_tasks["tasks"] == [task]
    assert service.get_client_with_projects("nope").error == "Client not found"
    assert service.get_project_with_tasks("nope").error == "Project not found"


def test_get_all_data_returns_every_collection(service, billing_chain) -> None:
    data = service.get_all_data().data

    assert set(data) == {"clients", "projects", "tasks", "timeEntries", "settings"}
    assert len(data["clients"]) == 1
    assert data["timeEntries"] == []


def test_data_overview_counts_and_recent_activity(service, billing_chain, fixed_clock) -> None:
    overview = service.get_data_overview().data

    assert overview["counts"] == {"clients": 1, "projects": 1, "tasks": 1, "timeEntries": 0}
    assert overview["recentActivity"]["lastClient"] == fixed_clock()
    assert overview["recentActivity"]["lastTimeEntry"] is None
    assert overview["spreadsheetInfo"]["title"] == "ThisTracker-Main"


def test_verify_integrity_reports_intact_spreadsheet(service) -> None:
    report = service.verify_integrity().data

    assert report["isIntact"] is True
    assert report["missing"] == []


def test_placeholder_rows_can_only_be_deleted(service, drive) -> None:
    client = service.create_client({"name": "Acme"}).data
    drive.spreadsheets[service.spreadsheet_id].tabs["Clients"].grid[1][1] = ""
    placeholder = service.get_clients().data[0]
    assert placeholder.id == f"error-row2-{client.id}"

    result = service.update_client(placeholder.id, {"name": "Fixed"})

    assert result.success is False
    assert "can only be deleted" in result.error
    assert service.delete_client(placeholder.id).success is True
    assert service.get_clients().data == []


def test_unexpected_errors_become_failed_results(service, transport) -> None:
    transport.fail_next("read_range", RuntimeError("kaput"))

    result = service.get_clients()

    assert result.success is False
    assert result.error == "kaput"


def test_transport_errors_become_failed_results(service, transport) -> None:
    transport.fail_next("read_range", TransportError("Sheets API values.get failed", status=503))

    result = service.get_projects()

    assert result.error == "Sheets API values.get failed (HTTP 503)"


def test_initialize_failure_raises(transport, fixed_clock) -> None:
    transport.fail_next("search_owned_spreadsheets", TransportError("offline", status=503))

    with pytest.raises(TransportError):
        DataService(transport, clock=fixed_clock).initialize()


def test_compute_billing_edges() -> None:
    start = _utc(2024, 1, 1, 10)

    assert compute_billing(start, None, 100.0) == (None, None)
    assert compute_billing(start, start, 100.0) == (0, 0.0)
    assert compute_billing(start, _utc(2024, 1, 1, 11), None) == (3_600_000, None)
    with pytest.raises(ValidationError):
        compute_billing(start, _utc(2024, 1, 1, 9), 10.0)
