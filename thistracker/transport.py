"""Spreadsheet transport: the capability interface and its Google implementation.

The rest of the package only talks to :class:`SheetsTransport`.  The Google
implementation wraps a Sheets v4 and a Drive v3 ``googleapiclient`` service,
throttles every request through a shared :class:`SlidingWindowRateLimiter`
and translates :class:`HttpError` into the tracker's error types.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from thistracker.config import TrackerConfig
from thistracker.errors import AuthRequiredError, TabNotFoundError, TrackerError, TransportError
from thistracker.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
_UNPARSEABLE_RANGE = "Unable to parse range"


class SheetsTransport(Protocol):
    """Operations the tracker needs from a spreadsheet backend."""

    def read_range(self, spreadsheet_id: str, range_spec: str) -> Dict[str, Any]:
        ...

    def write_range(self, spreadsheet_id: str, range_spec: str, values: List[List[str]]) -> Dict[str, Any]:
        ...

    def create_tab(self, spreadsheet_id: str, title: str) -> Dict[str, Any]:
        ...

    def delete_tab(self, spreadsheet_id: str, tab_id: int) -> Dict[str, Any]:
        ...

    def create_spreadsheet(self, name: str) -> Dict[str, Any]:
        ...

    def get_spreadsheet_metadata(self, spreadsheet_id: str) -> Dict[str, Any]:
        ...

    def search_owned_spreadsheets(self, name: str, *, exact: bool) -> List[Dict[str, Any]]:
        ...


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            return 0
    resp = getattr(exc, "resp", None)
    if resp is not None:
        try:
            return int(getattr(resp, "status", 0))
        except (TypeError, ValueError):
            return 0
    return 0


def _error_details(exc: HttpError) -> str:
    content = getattr(exc, "content", b"")
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content or "")


def translate_http_error(exc: HttpError, description: str) -> TrackerError:
    """Return the tracker error that corresponds to ``exc``."""

    status = _http_status(exc)
    details = _error_details(exc)
    if status == 401:
        return AuthRequiredError(f"Google rejected the credentials during {description}.")
    if status == 400 and _UNPARSEABLE_RANGE in details:
        return TabNotFoundError(f"Sheets API {description} failed: {_UNPARSEABLE_RANGE}", status=status)
    return TransportError(f"Sheets API {description} failed", status=status or None)


def _escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


# ---------------------------------------------------------------------------
# Google implementation
# ---------------------------------------------------------------------------
class GoogleSheetsTransport:
    """:class:`SheetsTransport` backed by the Google Sheets and Drive APIs."""

    def __init__(
        self,
        sheets_service,
        drive_service,
        limiter: Optional[SlidingWindowRateLimiter] = None,
    ) -> None:
        self._sheets = sheets_service
        self._drive = drive_service
        self._limiter = limiter or SlidingWindowRateLimiter()

    def _execute(self, factory: Callable[[], Any], description: str) -> Dict[str, Any]:
        self._limiter.acquire()
        try:
            result = factory().execute()
        except HttpError as exc:
            error = translate_http_error(exc, description)
            logger.debug("Sheets API %s failed: %s", description, error)
            raise error from exc
        return result or {}

    def read_range(self, spreadsheet_id: str, range_spec: str) -> Dict[str, Any]:
        return self._execute(
            lambda: self._sheets.spreadsheets().values().get(
                spreadsheetId=spreadsheet_id,
                range=range_spec,
                majorDimension="ROWS",
            ),
            "values.get",
        )

    def write_range(self, spreadsheet_id: str, range_spec: str, values: List[List[str]]) -> Dict[str, Any]:
        return self._execute(
            lambda: self._sheets.spreadsheets().values().update(
                spreadsheetId=spreadsheet_id,
                range=range_spec,
                valueInputOption="RAW",
                body={"values": [list(row) for row in values]},
            ),
            "values.update",
        )

    def _batch_update(self, spreadsheet_id: str, requests: Sequence[Dict[str, Any]], description: str) -> Dict[str, Any]:
        return self._execute(
            lambda: self._sheets.spreadsheets().batchUpdate(
                spreadsheetId=spreadsheet_id,
                body={"requests": list(requests)},
            ),
            description,
        )

    def create_tab(self, spreadsheet_id: str, title: str) -> Dict[str, Any]:
        response = self._batch_update(
            spreadsheet_id,
            [{"addSheet": {"properties": {"title": title}}}],
            "addSheet",
        )
        replies = response.get("replies") or [{}]
        properties = (replies[0].get("addSheet") or {}).get("properties") or {}
        return {"title": properties.get("title", title), "id": properties.get("sheetId")}

    def delete_tab(self, spreadsheet_id: str, tab_id: int) -> Dict[str, Any]:
        return self._batch_update(
            spreadsheet_id,
            [{"deleteSheet": {"sheetId": tab_id}}],
            "deleteSheet",
        )

    def create_spreadsheet(self, name: str) -> Dict[str, Any]:
        response = self._execute(
            lambda: self._sheets.spreadsheets().create(
                body={"properties": {"title": name}},
                fields="spreadsheetId",
            ),
            "spreadsheets.create",
        )
        spreadsheet_id = response.get("spreadsheetId")
        if not spreadsheet_id:
            raise TransportError("Sheets API spreadsheets.create returned no spreadsheet ID")
        return {"spreadsheetId": spreadsheet_id}

    def get_spreadsheet_metadata(self, spreadsheet_id: str) -> Dict[str, Any]:
        response = self._execute(
            lambda: self._sheets.spreadsheets().get(
                spreadsheetId=spreadsheet_id,
                includeGridData=False,
                fields="properties.title,sheets.properties",
            ),
            "spreadsheets.get",
        )
        tabs: List[Dict[str, Any]] = []
        for sheet in response.get("sheets", []) or []:
            properties = sheet.get("properties", {}) if isinstance(sheet, dict) else {}
            grid = properties.get("gridProperties", {}) or {}
            tabs.append(
                {
                    "title": properties.get("title", ""),
                    "id": properties.get("sheetId"),
                    "rowCount": grid.get("rowCount", 0),
                    "columnCount": grid.get("columnCount", 0),
                }
            )
        title = (response.get("properties") or {}).get("title", "")
        return {"title": title, "tabs": tabs}

    def search_owned_spreadsheets(self, name: str, *, exact: bool) -> List[Dict[str, Any]]:
        escaped = _escape_query_value(name)
        name_clause = f"name = '{escaped}'" if exact else f"name contains '{escaped}'"
        query = " and ".join(
            [
                name_clause,
                f"mimeType = '{SPREADSHEET_MIME_TYPE}'",
                "'me' in owners",
                "trashed = false",
            ]
        )

        files: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            token = page_token
            response = self._execute(
                lambda: self._drive.files().list(
                    q=query,
                    spaces="drive",
                    fields="nextPageToken, files(id, name, createdTime)",
                    orderBy="createdTime desc",
                    pageToken=token,
                ),
                "files.list",
            )
            files.extend(response.get("files", []) or [])
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return [
            {"id": item.get("id"), "name": item.get("name", ""), "createdTime": item.get("createdTime", "")}
            for item in files
            if item.get("id")
        ]


@functools.lru_cache(maxsize=None)
def shared_limiter(max_requests: int, window_seconds: float) -> SlidingWindowRateLimiter:
    """Return the process-wide limiter for the given budget."""

    return SlidingWindowRateLimiter(max_requests, window_seconds)


def build_transport(
    credentials,
    config: Optional[TrackerConfig] = None,
    *,
    limiter: Optional[SlidingWindowRateLimiter] = None,
) -> GoogleSheetsTransport:
    """Build a transport bound to ``credentials``; a new one per request."""

    if credentials is None:
        raise AuthRequiredError("Google credentials are required.")
    config = config or TrackerConfig()
    sheets_service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
    drive_service = build("drive", "v3", credentials=credentials, cache_discovery=False)
    limiter = limiter or shared_limiter(config.max_requests, float(config.window_seconds))
    return GoogleSheetsTransport(sheets_service, drive_service, limiter)


__all__ = [
    "SPREADSHEET_MIME_TYPE",
    "GoogleSheetsTransport",
    "SheetsTransport",
    "build_transport",
    "shared_limiter",
    "translate_http_error",
]
