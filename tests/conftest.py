from __future__ import annotations

import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from thistracker.errors import TabNotFoundError, TransportError  # noqa: E402

_RANGE_RE = re.compile(r"^([A-Z]+)(\d+):([A-Z]+)(\d+)$")


def _column_index(letters: str) -> int:
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - 64)
    return index


def _split_range(range_spec: str):
    tab, _, cells = range_spec.rpartition("!")
    if tab.startswith("'") and tab.endswith("'"):
        tab = tab[1:-1].replace("''", "'")
    match = _RANGE_RE.match(cells)
    if not match:
        raise TransportError(f"Unable to parse range: {range_spec}", status=400)
    first_col, first_row, last_col, last_row = match.groups()
    return tab, int(first_row), _column_index(first_col), int(last_row), _column_index(last_col)


class FakeTab:
    def __init__(self, tab_id: int) -> None:
        self.id = tab_id
        self.grid: List[List[str]] = []

    def write(self, first_row: int, first_col: int, values: List[List[Any]]) -> None:
        for row_offset, row in enumerate(values):
            row_index = first_row - 1 + row_offset
            while len(self.grid) <= row_index:
                self.grid.append([])
            target = self.grid[row_index]
            for col_offset, value in enumerate(row):
                col_index = first_col - 1 + col_offset
                while len(target) <= col_index:
                    target.append("")
                target[col_index] = "" if value is None else str(value)

    def read(self, first_row: int, first_col: int, last_row: int, last_col: int) -> List[List[str]]:
        rows: List[List[str]] = []
        for row in self.grid[first_row - 1 : last_row]:
            cells = list(row[first_col - 1 : last_col])
            while cells and cells[-1] == "":
                cells.pop()
            rows.append(cells)
        while rows and not rows[-1]:
            rows.pop()
        return rows


class FakeSpreadsheet:
    def __init__(self, spreadsheet_id: str, name: str, owner: str, created_time: str) -> None:
        self.id = spreadsheet_id
        self.name = name
        self.owner = owner
        self.created_time = created_time
        self.tabs: Dict[str, FakeTab] = {}
        self._next_tab_id = 0

    def add_tab(self, title: str) -> FakeTab:
        if title in self.tabs:
            raise TransportError(f"A sheet with the name \"{title}\" already exists", status=400)
        tab = FakeTab(self._next_tab_id)
        self._next_tab_id += 1
        self.tabs[title] = tab
        return tab

    def rows(self, title: str) -> List[List[str]]:
        return self.tabs[title].read(1, 1, 100000, 26)


class FakeDrive:
    """In-memory store of spreadsheets shared by every principal's transport."""

    def __init__(self) -> None:
        self.spreadsheets: Dict[str, FakeSpreadsheet] = {}
        self._counter = 0
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def add_spreadsheet(self, name: str, owner: str, *, default_tab: bool = True) -> FakeSpreadsheet:
        self._counter += 1
        created = self._epoch + timedelta(minutes=self._counter)
        spreadsheet = FakeSpreadsheet(
            f"sheet-{self._counter}",
            name,
            owner,
            created.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        )
        if default_tab:
            spreadsheet.add_tab("Sheet1")
        self.spreadsheets[spreadsheet.id] = spreadsheet
        return spreadsheet

    def owned_by(self, owner: str) -> List[FakeSpreadsheet]:
        return [sheet for sheet in self.spreadsheets.values() if sheet.owner == owner]


class FakeTransport:
    """:class:`~thistracker.transport.SheetsTransport` double with Sheets grid semantics."""

    def __init__(self, drive: FakeDrive, principal: str = "alice") -> None:
        self.drive = drive
        self.principal = principal
        self.calls: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = {}

    def fail_next(self, method: str, error: Exception, times: int = 1) -> None:
        self.failures.setdefault(method, []).extend([error] * times)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method,) + args)
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def calls_to(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    def _spreadsheet(self, spreadsheet_id: str) -> FakeSpreadsheet:
        spreadsheet = self.drive.spreadsheets.get(spreadsheet_id)
        if spreadsheet is None:
            raise TransportError("Requested entity was not found.", status=404)
        return spreadsheet

    def _tab(self, spreadsheet: FakeSpreadsheet, title: str) -> FakeTab:
        tab = spreadsheet.tabs.get(title)
        if tab is None:
            raise TabNotFoundError("Unable to parse range", status=400)
        return tab

    def read_range(self, spreadsheet_id: str, range_spec: str) -> Dict[str, Any]:
        self._record("read_range", spreadsheet_id, range_spec)
        title, first_row, first_col, last_row, last_col = _split_range(range_spec)
        tab = self._tab(self._spreadsheet(spreadsheet_id), title)
        values = tab.read(first_row, first_col, last_row, last_col)
        return {"values": values} if values else {}

    def write_range(self, spreadsheet_id: str, range_spec: str, values: List[List[str]]) -> Dict[str, Any]:
        self._record("write_range", spreadsheet_id, range_spec, values)
        title, first_row, first_col, _last_row, _last_col = _split_range(range_spec)
        tab = self._tab(self._spreadsheet(spreadsheet_id), title)
        tab.write(first_row, first_col, values)
        return {"updatedRows": len(values)}

    def create_tab(self, spreadsheet_id: str, title: str) -> Dict[str, Any]:
        self._record("create_tab", spreadsheet_id, title)
        tab = self._spreadsheet(spreadsheet_id).add_tab(title)
        return {"title": title, "id": tab.id}

    def delete_tab(self, spreadsheet_id: str, tab_id: int) -> Dict[str, Any]:
        self._record("delete_tab", spreadsheet_id, tab_id)
        spreadsheet = self._spreadsheet(spreadsheet_id)
        for title, tab in list(spreadsheet.tabs.items()):
            if tab.id == tab_id:
                del spreadsheet.tabs[title]
                return {}
        raise TransportError("No sheet with that ID", status=400)

    def create_spreadsheet(self, name: str) -> Dict[str, Any]:
        self._record("create_spreadsheet", name)
        spreadsheet = self.drive.add_spreadsheet(name, self.principal)
        return {"spreadsheetId": spreadsheet.id}

    def get_spreadsheet_metadata(self, spreadsheet_id: str) -> Dict[str, Any]:
        self._record("get_spreadsheet_metadata", spreadsheet_id)
        spreadsheet = self._spreadsheet(spreadsheet_id)
        return {
            "title": spreadsheet.name,
            "tabs": [
                {"title": title, "id": tab.id, "rowCount": 1000, "columnCount": 26}
                for title, tab in spreadsheet.tabs.items()
            ],
        }

    def search_owned_spreadsheets(self, name: str, *, exact: bool) -> List[Dict[str, Any]]:
        self._record("search_owned_spreadsheets", name, exact)
        matches = []
        for sheet in self.drive.owned_by(self.principal):
            if (exact and sheet.name == name) or (not exact and name in sheet.name):
                matches.append({"id": sheet.id, "name": sheet.name, "createdTime": sheet.created_time})
        matches.sort(key=lambda item: item["createdTime"], reverse=True)
        return matches


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def make_transport(drive: FakeDrive):
    def factory(principal: str = "alice") -> FakeTransport:
        return FakeTransport(drive, principal)

    return factory


@pytest.fixture
def transport(make_transport) -> FakeTransport:
    return make_transport("alice")


@pytest.fixture
def fixed_clock():
    moments = {"now": datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)}

    def clock() -> datetime:
        return moments["now"]

    def advance(**delta: float) -> datetime:
        moments["now"] = moments["now"] + timedelta(**delta)
        return moments["now"]

    clock.advance = advance  # type: ignore[attr-defined]
    return clock


@pytest.fixture
def sequential_ids():
    counter = {"value": 0}

    def factory() -> str:
        counter["value"] += 1
        return f"id-{counter['value']}"

    return factory


def rows_of(drive: FakeDrive, spreadsheet_id: str, title: str) -> List[List[str]]:
    return drive.spreadsheets[spreadsheet_id].rows(title)


@pytest.fixture
def sheet_rows(drive: FakeDrive):
    def reader(spreadsheet_id: str, title: str) -> List[List[str]]:
        return rows_of(drive, spreadsheet_id, title)

    return reader
