"""Locate or create the principal's tracker spreadsheet and keep its tabs in shape.

:meth:`SpreadsheetProvisioner.initialize` runs a small state machine:

1. adopt a spreadsheet owned by the principal named exactly
   ``ThisTracker-Main``;
2. otherwise adopt the most recently created owned spreadsheet whose name
   starts with ``ThisTracker``;
3. otherwise generate a free name and create a new spreadsheet.

Whichever way the spreadsheet was obtained the required tabs are then
ensured.  A freshly created spreadsheet additionally receives the Time
Entries tab, loses the provider's default ``Sheet1`` tab and gets a settings
snapshot.  Every search goes through
:meth:`~thistracker.transport.SheetsTransport.search_owned_spreadsheets`, so a
principal can never adopt a spreadsheet owned by somebody else.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from thistracker.codec import SETTINGS_HEADERS, encode_setting
from thistracker.config import SheetLayout
from thistracker.errors import AuthRequiredError, IntegrityError, TabNotFoundError, TrackerError, TransportError
from thistracker.models import EPOCH, format_timestamp, parse_timestamp, utc_now
from thistracker.ranges import block_range, header_range, sheet_range
from thistracker.transport import SheetsTransport
from thistracker.version import DATA_STRUCTURE_VERSION, __version__

logger = logging.getLogger(__name__)

APP_NAME = "ThisTracker"
MAX_NAME_ATTEMPTS = 10
_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
SPREADSHEET_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/edit"


class ProvisionState(str, Enum):
    ADOPTED = "adopted"
    CREATED = "created"


@dataclass(frozen=True)
class ProvisionResult:
    spreadsheet_id: str
    state: ProvisionState


@dataclass
class IntegrityReport:
    """Outcome of :meth:`SpreadsheetProvisioner.verify_integrity`."""

    is_intact: bool
    missing: List[str] = field(default_factory=list)
    repaired: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.is_intact:
            return "All required tabs are present"
        return "Recreated missing tabs: " + ", ".join(self.repaired)

    def to_json(self) -> Dict[str, Any]:
        return {
            "isIntact": self.is_intact,
            "message": self.message,
            "missing": list(self.missing),
            "repaired": list(self.repaired),
        }


@dataclass
class SpreadsheetInfo:
    spreadsheet_id: str
    title: str
    tabs: List[Dict[str, Any]]
    url: str

    def to_json(self) -> Dict[str, Any]:
        return {
            "spreadsheetId": self.spreadsheet_id,
            "title": self.title,
            "tabs": [dict(tab) for tab in self.tabs],
            "url": self.url,
        }


def _random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


class SpreadsheetProvisioner:
    """Guarantee that the principal owns one tracker spreadsheet with every required tab."""

    def __init__(
        self,
        transport: SheetsTransport,
        layout: Optional[SheetLayout] = None,
        *,
        spreadsheet_id: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        suffix_factory: Callable[[], str] = _random_suffix,
    ) -> None:
        self.transport = transport
        self.layout = layout or SheetLayout()
        self._spreadsheet_id = spreadsheet_id
        self._clock = clock
        self._suffix_factory = suffix_factory

    @property
    def spreadsheet_id(self) -> str:
        if not self._spreadsheet_id:
            raise TrackerError("Spreadsheet has not been initialised")
        return self._spreadsheet_id

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def initialize(self) -> ProvisionResult:
        existing = self.locate()
        if existing:
            self._spreadsheet_id = existing
            logger.info("Adopted existing spreadsheet %s", existing)
            self._ensure_required_tabs()
            return ProvisionResult(existing, ProvisionState.ADOPTED)

        name = self.generate_name()
        response = self.transport.create_spreadsheet(name)
        spreadsheet_id = response.get("spreadsheetId")
        if not spreadsheet_id:
            raise TransportError("Spreadsheet creation returned no spreadsheet ID")
        self._spreadsheet_id = spreadsheet_id
        logger.info("Created spreadsheet %s named %s", spreadsheet_id, name)

        self._ensure_required_tabs()
        try:
            self.ensure_tab(self.layout.time_entries)
        except AuthRequiredError:
            raise
        except TrackerError as exc:
            logger.warning("Could not create tab %s: %s", self.layout.time_entries, exc)
        self._delete_default_tab()
        self._seed_settings()
        return ProvisionResult(spreadsheet_id, ProvisionState.CREATED)

    def locate(self) -> Optional[str]:
        """Return the ID of the spreadsheet to adopt, or ``None``."""

        exact = self.transport.search_owned_spreadsheets(self.layout.spreadsheet_name, exact=True)
        if exact:
            return exact[0]["id"]

        prefix = self.layout.name_prefix
        candidates = [
            item
            for item in self.transport.search_owned_spreadsheets(prefix, exact=False)
            if str(item.get("name", "")).startswith(prefix)
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda item: parse_timestamp(item.get("createdTime")) or EPOCH, reverse=True)
        return candidates[0]["id"]

    def _name_is_free(self, name: str) -> bool:
        return not self.transport.search_owned_spreadsheets(name, exact=True)

    def generate_name(self) -> str:
        main_name = self.layout.spreadsheet_name
        if self._name_is_free(main_name):
            return main_name

        prefix = self.layout.name_prefix
        now = self._clock()
        date_part = now.strftime("%Y-%m-%d")
        for attempt in range(MAX_NAME_ATTEMPTS):
            candidate = f"{prefix}-{date_part}-{self._suffix_factory()}"
            if self._name_is_free(candidate):
                return candidate
            logger.debug("Spreadsheet name %s is taken (attempt %d)", candidate, attempt + 1)

        fallback = f"{prefix}-{date_part}-{int(now.timestamp() * 1000)}"
        logger.info("Using fallback spreadsheet name %s", fallback)
        return fallback

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------
    def ensure_tab(self, title: str) -> bool:
        """Create ``title`` with its header row when it does not exist.

        Returns ``True`` when the tab had to be created.
        """

        try:
            self.transport.read_range(self.spreadsheet_id, sheet_range(title, "A1:A1"))
        except TabNotFoundError:
            self._create_tab_with_headers(title)
            return True
        return False

    def _create_tab_with_headers(self, title: str) -> None:
        headers = self.layout.headers_for(title)
        self.transport.create_tab(self.spreadsheet_id, title)
        self.transport.write_range(self.spreadsheet_id, header_range(title, len(headers)), [list(headers)])
        logger.info("Created tab %s", title)

    def _ensure_required_tabs(self) -> None:
        for title in self.layout.required_tabs:
            try:
                self.ensure_tab(title)
            except AuthRequiredError:
                raise
            except TrackerError as exc:
                logger.warning("Ensuring tab %s failed (%s); retrying", title, exc)
                try:
                    self.ensure_tab(title)
                except AuthRequiredError:
                    raise
                except TrackerError as retry_exc:
                    logger.error("Tab %s is still missing: %s", title, retry_exc)

    def _delete_default_tab(self) -> None:
        try:
            metadata = self.transport.get_spreadsheet_metadata(self.spreadsheet_id)
            for tab in metadata.get("tabs", []):
                if tab.get("title") == self.layout.default_tab and tab.get("id") is not None:
                    self.transport.delete_tab(self.spreadsheet_id, tab["id"])
                    logger.info("Deleted default tab %s", self.layout.default_tab)
                    return
        except TransportError as exc:
            logger.warning("Could not delete default tab %s: %s", self.layout.default_tab, exc)

    def _seed_settings(self) -> None:
        now = self._clock()
        stamp = format_timestamp(now)
        seed: Dict[str, Any] = {
            "appName": APP_NAME,
            "version": __version__,
            "createdAt": stamp,
            "lastUpdated": stamp,
            "dataStructureVersion": DATA_STRUCTURE_VERSION,
            "collections": self.layout.collections(),
        }
        rows = [list(SETTINGS_HEADERS)] + [encode_setting(key, value, now) for key, value in seed.items()]
        tab = self.layout.settings
        try:
            self.transport.write_range(self.spreadsheet_id, block_range(tab, 1, len(rows), len(SETTINGS_HEADERS)), rows)
        except TransportError as exc:
            logger.warning("Could not seed settings: %s", exc)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def verify_integrity(self) -> IntegrityReport:
        """Recreate every missing required tab.

        Raises :class:`IntegrityError` when a missing tab cannot be recreated.
        """

        metadata = self.transport.get_spreadsheet_metadata(self.spreadsheet_id)
        existing = {tab.get("title") for tab in metadata.get("tabs", [])}
        missing = [title for title in self.layout.required_tabs if title not in existing]
        repaired: List[str] = []
        for title in missing:
            try:
                self._create_tab_with_headers(title)
            except TransportError as exc:
                raise IntegrityError(f"Unable to recreate tab {title}: {exc}") from exc
            repaired.append(title)
        if missing:
            logger.warning("Recreated missing tabs: %s", ", ".join(repaired))
        return IntegrityReport(is_intact=not missing, missing=missing, repaired=repaired)

    def metadata(self) -> SpreadsheetInfo:
        spreadsheet_id = self.spreadsheet_id
        payload = self.transport.get_spreadsheet_metadata(spreadsheet_id)
        return SpreadsheetInfo(
            spreadsheet_id=spreadsheet_id,
            title=payload.get("title", ""),
            tabs=list(payload.get("tabs", [])),
            url=SPREADSHEET_URL.format(spreadsheet_id=spreadsheet_id),
        )


__all__ = [
    "APP_NAME",
    "MAX_NAME_ATTEMPTS",
    "IntegrityReport",
    "ProvisionResult",
    "ProvisionState",
    "SpreadsheetInfo",
    "SpreadsheetProvisioner",
]
