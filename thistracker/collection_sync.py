"""Full-collection reads and writes against the tabs of the tracker spreadsheet.

Writes replace the whole tab: the previous content is first overwritten with
blank cells and the header plus one row per record is then written from
``A1``.  Reads fetch the tab in chunks and decode every non-blank row.

There is no locking and no version token: two concurrent read-modify-write
cycles against the same tab race and the last writer wins.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, TypeVar

from thistracker.codec import (
    CLIENT_CODEC,
    PROJECT_CODEC,
    SETTINGS_HEADERS,
    TASK_CODEC,
    TIME_ENTRY_CODEC,
    EntityCodec,
    Malformed,
    decode_setting_row,
    encode_setting,
    pad_row,
    setting_type,
)
from thistracker.config import SheetLayout, TrackerConfig
from thistracker.errors import TabNotFoundError, TransportError
from thistracker.models import Client, Project, SettingRecord, Task, TimeEntry, parse_timestamp, utc_now
from thistracker.provisioning import SpreadsheetProvisioner
from thistracker.ranges import block_range, sheet_range
from thistracker.transport import SheetsTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

READ_LAST_COLUMN = "Z"


def _is_blank(row: Sequence[Any]) -> bool:
    return all(str(cell).strip() == "" for cell in row)


class CollectionSync:
    """Read and replace whole entity collections."""

    def __init__(
        self,
        transport: SheetsTransport,
        spreadsheet_id: str,
        provisioner: SpreadsheetProvisioner,
        layout: Optional[SheetLayout] = None,
        config: Optional[TrackerConfig] = None,
    ) -> None:
        self.transport = transport
        self.spreadsheet_id = spreadsheet_id
        self.provisioner = provisioner
        self.config = config or TrackerConfig()
        self.layout = layout or self.config.layout()

    # ------------------------------------------------------------------
    # Raw rows
    # ------------------------------------------------------------------
    def _read_from(self, tab: str, start_row: int) -> List[List[Any]]:
        chunk = max(1, int(self.config.read_chunk_rows))
        rows: List[List[Any]] = []
        # Trailing blank rows of a chunk are omitted from the response; they
        # are only materialised once a later chunk proves data follows them.
        skipped = 0
        while True:
            end_row = start_row + chunk - 1
            result = self.transport.read_range(
                self.spreadsheet_id,
                sheet_range(tab, f"A{start_row}:{READ_LAST_COLUMN}{end_row}"),
            )
            values = result.get("values", []) if isinstance(result, dict) else []
            if not values:
                break
            rows.extend([] for _ in range(skipped))
            rows.extend(list(map(list, values)))
            skipped = chunk - len(values)
            start_row += chunk
        return rows

    def read_rows(self, tab: str) -> List[List[Any]]:
        """Return the data rows of ``tab`` (everything below the header)."""

        try:
            return self._read_from(tab, 2)
        except TabNotFoundError:
            if tab in self.layout.lazy_tabs:
                logger.info("Tab %s does not exist yet; reading it as empty", tab)
                return []
            raise

    def _clear(self, tab: str) -> None:
        try:
            existing = self._read_from(tab, 1)
        except TransportError as exc:
            logger.warning("Could not read %s before clearing: %s", tab, exc)
            return
        if not existing:
            return
        width = max(1, max(len(row) for row in existing))
        blanks = [[""] * width for _ in existing]
        try:
            self.transport.write_range(self.spreadsheet_id, block_range(tab, 1, len(blanks), width), blanks)
        except TransportError as exc:
            logger.warning("Could not clear %s before writing: %s", tab, exc)

    def write_rows(self, tab: str, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        """Replace the content of ``tab`` with ``headers`` followed by ``rows``."""

        if tab in self.layout.lazy_tabs:
            self.provisioner.ensure_tab(tab)

        self._clear(tab)

        matrix = [list(headers)] + [list(row) for row in rows]
        width = max(len(row) for row in matrix)
        matrix = [pad_row(row, width) for row in matrix]
        target = block_range(tab, 1, len(matrix), width)
        try:
            self.transport.write_range(self.spreadsheet_id, target, matrix)
        except TabNotFoundError:
            logger.warning("Tab %s disappeared; recreating it and retrying the write", tab)
            self.provisioner.ensure_tab(tab)
            self.transport.write_range(self.spreadsheet_id, target, matrix)
        logger.debug("Wrote %d rows to %s", len(rows), tab)

    # ------------------------------------------------------------------
    # Entity collections
    # ------------------------------------------------------------------
    def read_all(self, tab: str, codec: EntityCodec[T]) -> List[T]:
        items: List[T] = []
        lenient = not self.config.strict_booleans
        for offset, raw in enumerate(self.read_rows(tab)):
            if _is_blank(raw):
                continue
            result = codec.decode(raw, lenient_booleans=lenient)
            if isinstance(result, Malformed):
                row_number = offset + 2
                logger.warning("Malformed %s row %d in %s: %s", codec.name, row_number, tab, result.reason)
                items.append(codec.placeholder(result, row_number))
            else:
                items.append(result.entity)
        return items

    def write_all(self, tab: str, items: Sequence[T], codec: EntityCodec[T]) -> None:
        self.write_rows(tab, codec.headers, [codec.encode(item) for item in items])

    def get_clients(self) -> List[Client]:
        return self.read_all(self.layout.clients, CLIENT_CODEC)

    def sync_clients(self, clients: Sequence[Client]) -> None:
        self.write_all(self.layout.clients, clients, CLIENT_CODEC)

    def get_projects(self) -> List[Project]:
        return self.read_all(self.layout.projects, PROJECT_CODEC)

    def sync_projects(self, projects: Sequence[Project]) -> None:
        self.write_all(self.layout.projects, projects, PROJECT_CODEC)

    def get_tasks(self) -> List[Task]:
        tasks = self.read_all(self.layout.tasks, TASK_CODEC)
        tasks.sort(key=lambda task: task.created_at, reverse=True)
        return tasks

    def sync_tasks(self, tasks: Sequence[Task]) -> None:
        self.write_all(self.layout.tasks, tasks, TASK_CODEC)

    def get_time_entries(self) -> List[TimeEntry]:
        entries = self.read_all(self.layout.time_entries, TIME_ENTRY_CODEC)
        entries.sort(key=lambda entry: entry.start_time, reverse=True)
        return entries

    def sync_time_entries(self, entries: Sequence[TimeEntry]) -> None:
        self.write_all(self.layout.time_entries, entries, TIME_ENTRY_CODEC)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_setting_records(self) -> List[SettingRecord]:
        records: List[SettingRecord] = []
        for raw in self.read_rows(self.layout.settings):
            decoded = decode_setting_row(raw)
            if decoded is None:
                continue
            key, value = decoded
            cells = pad_row(raw, len(SETTINGS_HEADERS))
            records.append(
                SettingRecord(
                    key=key,
                    value=value,
                    description=cells[2],
                    type=cells[3] or setting_type(value),
                    updated_at=parse_timestamp(cells[4]),
                )
            )
        return records

    def get_settings(self) -> Dict[str, Any]:
        return {record.key: record.value for record in self.get_setting_records()}

    def sync_settings(
        self,
        settings: Mapping[str, Any],
        descriptions: Optional[Mapping[str, str]] = None,
    ) -> None:
        now = utc_now()
        descriptions = descriptions or {}
        rows = [
            encode_setting(key, value, now, descriptions.get(key))
            for key, value in settings.items()
        ]
        self.write_rows(self.layout.settings, SETTINGS_HEADERS, rows)


__all__ = ["CollectionSync", "READ_LAST_COLUMN"]
