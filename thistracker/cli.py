"""Command line interface for the ThisTracker data layer."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Optional

from thistracker import google_credentials
from thistracker.config import TrackerConfig, load_config
from thistracker.errors import TrackerError
from thistracker.logging_config import configure_logging
from thistracker.models import ServiceResult
from thistracker.service import DataService, create_data_service
from thistracker.version import __version__


def _load(args: argparse.Namespace) -> TrackerConfig:
    config = load_config(args.config)
    if args.token:
        config.token_path = args.token
    return config


def open_service(config: TrackerConfig) -> DataService:
    credentials = google_credentials.load_user_credentials(config.token_path)
    return create_data_service(credentials, config)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _emit(result: ServiceResult) -> int:
    payload = result.to_json()
    if not result.success:
        print(f"Error: {payload.get('error', 'Unknown error')}", file=sys.stderr)
        return 1
    _print_json(payload.get("data"))
    return 0


def _run(args: argparse.Namespace, action) -> int:
    try:
        service = open_service(_load(args))
    except (TrackerError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return _emit(action(service))


def _fields(**values: Any) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def command_login(args: argparse.Namespace) -> int:
    config = _load(args)
    secret_path = args.client_secret or config.client_secret_path
    try:
        google_credentials.authorize(secret_path, config.token_path)
    except (TrackerError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Stored credentials at: {config.token_path}")
    return 0


def command_init(args: argparse.Namespace) -> int:
    try:
        service = open_service(_load(args))
    except (TrackerError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    result = service.provision_result
    assert result is not None
    print(f"Spreadsheet   : {result.spreadsheet_id}")
    print(f"State         : {result.state.value}")
    return 0


def command_info(args: argparse.Namespace) -> int:
    return _run(args, lambda service: service.get_spreadsheet_info())


def command_verify(args: argparse.Namespace) -> int:
    return _run(args, lambda service: service.verify_integrity())


def command_overview(args: argparse.Namespace) -> int:
    return _run(args, lambda service: service.get_data_overview())


def command_clients(args: argparse.Namespace) -> int:
    return _run(args, lambda service: service.get_clients())


def command_projects(args: argparse.Namespace) -> int:
    return _run(args, lambda service: service.get_projects(args.client))


def command_tasks(args: argparse.Namespace) -> int:
    return _run(args, lambda service: service.get_tasks(args.project))


def command_entries(args: argparse.Namespace) -> int:
    return _run(
        args,
        lambda service: service.get_time_entries(
            client_id=args.client,
            project_id=args.project,
            task_id=args.task,
            start_date=args.start_date,
            end_date=args.end_date,
            limit=args.limit,
            page=args.page,
        ),
    )


def command_add_client(args: argparse.Namespace) -> int:
    data = _fields(name=args.name, email=args.email, phone=args.phone, address=args.address, notes=args.notes)
    return _run(args, lambda service: service.create_client(data))


def command_add_project(args: argparse.Namespace) -> int:
    data = _fields(
        client_id=args.client_id,
        name=args.name,
        description=args.description,
        status=args.status,
        hourly_rate=args.rate,
        budget=args.budget,
    )
    return _run(args, lambda service: service.create_project(data))


def command_add_task(args: argparse.Namespace) -> int:
    data = _fields(
        project_id=args.project_id,
        name=args.name,
        description=args.description,
        status=args.status,
        priority=args.priority,
        estimated_hours=args.estimate,
    )
    return _run(args, lambda service: service.create_task(data))


def command_log_time(args: argparse.Namespace) -> int:
    data = _fields(
        task_id=args.task_id,
        description=args.description,
        start_time=args.start,
        end_time=args.end,
        hourly_rate=args.rate,
        notes=args.notes,
    )
    return _run(args, lambda service: service.create_time_entry(data))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ThisTracker spreadsheet data tool")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to the configuration JSON file")
    parser.add_argument("--token", help="Path to the stored OAuth token JSON file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Authorise access to Google Sheets")
    login_parser.add_argument("--client-secret", help="OAuth client secret JSON downloaded from Google Cloud")
    login_parser.set_defaults(func=command_login)

    init_parser = subparsers.add_parser("init", help="Locate or create the tracker spreadsheet")
    init_parser.set_defaults(func=command_init)

    info_parser = subparsers.add_parser("info", help="Show spreadsheet metadata")
    info_parser.set_defaults(func=command_info)

    verify_parser = subparsers.add_parser("verify", help="Recreate missing tabs")
    verify_parser.set_defaults(func=command_verify)

    overview_parser = subparsers.add_parser("overview", help="Show record counts and recent activity")
    overview_parser.set_defaults(func=command_overview)

    clients_parser = subparsers.add_parser("clients", help="List clients")
    clients_parser.set_defaults(func=command_clients)

    projects_parser = subparsers.add_parser("projects", help="List projects")
    projects_parser.add_argument("--client", help="Only projects of this client ID")
    projects_parser.set_defaults(func=command_projects)

    tasks_parser = subparsers.add_parser("tasks", help="List tasks")
    tasks_parser.add_argument("--project", help="Only tasks of this project ID")
    tasks_parser.set_defaults(func=command_tasks)

    entries_parser = subparsers.add_parser("entries", help="List time entries")
    entries_parser.add_argument("--client", help="Filter by client ID")
    entries_parser.add_argument("--project", help="Filter by project ID")
    entries_parser.add_argument("--task", help="Filter by task ID")
    entries_parser.add_argument("--from", dest="start_date", help="Earliest start time (ISO-8601)")
    entries_parser.add_argument("--to", dest="end_date", help="Latest start time (ISO-8601)")
    entries_parser.add_argument("--limit", type=int, default=1000, help="Page size")
    entries_parser.add_argument("--page", type=int, default=1, help="Page number, starting at 1")
    entries_parser.set_defaults(func=command_entries)

    add_client_parser = subparsers.add_parser("add-client", help="Create a client")
    add_client_parser.add_argument("name")
    add_client_parser.add_argument("--email")
    add_client_parser.add_argument("--phone")
    add_client_parser.add_argument("--address")
    add_client_parser.add_argument("--notes")
    add_client_parser.set_defaults(func=command_add_client)

    add_project_parser = subparsers.add_parser("add-project", help="Create a project")
    add_project_parser.add_argument("client_id")
    add_project_parser.add_argument("name")
    add_project_parser.add_argument("--description")
    add_project_parser.add_argument("--status")
    add_project_parser.add_argument("--rate", type=float, help="Hourly rate")
    add_project_parser.add_argument("--budget", type=float)
    add_project_parser.set_defaults(func=command_add_project)

    add_task_parser = subparsers.add_parser("add-task", help="Create a task")
    add_task_parser.add_argument("project_id")
    add_task_parser.add_argument("name")
    add_task_parser.add_argument("--description")
    add_task_parser.add_argument("--status")
    add_task_parser.add_argument("--priority")
    add_task_parser.add_argument("--estimate", type=float, help="Estimated hours")
    add_task_parser.set_defaults(func=command_add_task)

    log_time_parser = subparsers.add_parser("log-time", help="Record a time entry")
    log_time_parser.add_argument("task_id")
    log_time_parser.add_argument("description")
    log_time_parser.add_argument("--start", required=True, help="Start time (ISO-8601)")
    log_time_parser.add_argument("--end", help="End time (ISO-8601); omit for a running entry")
    log_time_parser.add_argument("--rate", type=float, help="Hourly rate overriding the project's")
    log_time_parser.add_argument("--notes")
    log_time_parser.set_defaults(func=command_log_time)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(_load(args).log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
