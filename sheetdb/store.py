"""High level entry point combining token handling with the sheet services."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from sheetdb import google_auth
from sheetdb.config_store import ConfigStore
from sheetdb.data_service import DataService, Record
from sheetdb.errors import ConfigurationError
from sheetdb.metadata import MetadataClient, SpreadsheetSummary
from sheetdb.schema_service import SchemaService, ValidationResult
from sheetdb.settings import StoreSettings
from sheetdb.setup_manager import (
    SetupProgress,
    SheetsSetupManager,
    load_setup_progress,
    mark_setup_complete,
    reset_setup,
    start_setup,
)
from sheetdb.sheets_client import GoogleSheetsClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], GoogleSheetsClient]


class SheetDB:
    """Spreadsheet-backed record store.

    Every operation first obtains a valid access token (refreshing it when
    needed) and then builds a client for that token, so long-lived instances
    keep working across token expiry.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        spreadsheet_id: Optional[str] = None,
        *,
        client_factory: ClientFactory = GoogleSheetsClient.from_access_token,
        refresh: google_auth.RefreshFunc = google_auth.refresh_access_token,
        now: Optional[Callable[[], datetime]] = None,
        sheet_delay: float = 0.2,
        setup_timeout: float = 180,
    ) -> None:
        self._store = config_store
        self._spreadsheet_id = spreadsheet_id
        self._client_factory = client_factory
        self._refresh = refresh
        self._now = now
        self._sheet_delay = sheet_delay
        self._setup_timeout = setup_timeout

    @classmethod
    def from_settings(cls, settings: StoreSettings, **kwargs: Any) -> "SheetDB":
        store = ConfigStore(settings.config_db_path, settings.encryption_key or None)
        kwargs.setdefault("sheet_delay", settings.sheet_delay_seconds)
        kwargs.setdefault("setup_timeout", settings.setup_timeout_seconds)
        return cls(store, settings.spreadsheet_id or None, **kwargs)

    @property
    def config_store(self) -> ConfigStore:
        return self._store

    @property
    def spreadsheet_id(self) -> str:
        spreadsheet_id = self._spreadsheet_id or google_auth.load_selected_spreadsheet(self._store)
        if not spreadsheet_id:
            raise ConfigurationError("No spreadsheet selected")
        return spreadsheet_id

    def _access_token(self) -> str:
        now = self._now() if self._now is not None else None
        return google_auth.ensure_valid_token(self._store, refresh=self._refresh, now=now)

    def _client(self) -> GoogleSheetsClient:
        return self._client_factory(self._access_token())

    # ------------------------------------------------------------------
    # Metadata and schema
    # ------------------------------------------------------------------
    def list_spreadsheets(self) -> List[SpreadsheetSummary]:
        return MetadataClient(self._client()).list_spreadsheets()

    def sheet_exists(self, title: str) -> bool:
        return MetadataClient(self._client()).sheet_exists(self.spreadsheet_id, title)

    def create_sheet_with_headers(self, title: str, headers, column_defs) -> None:
        SchemaService(self._client()).create_sheet_with_headers(self.spreadsheet_id, title, headers, column_defs)

    def validate_sheet_structure(self) -> ValidationResult:
        return SchemaService(self._client()).validate_sheet_structure(self.spreadsheet_id)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def get_sheet_data(self, title: str, include_private_columns: bool = False) -> List[Record]:
        return DataService(self._client()).get_sheet_data(self.spreadsheet_id, title, include_private_columns)

    def get_record(self, title: str, object_id: str, include_private_columns: bool = False) -> Record:
        return DataService(self._client()).get_record(
            self.spreadsheet_id, title, object_id, include_private_columns
        )

    def append_row(self, title: str, record: Mapping[str, Any]) -> None:
        DataService(self._client()).append_row(self.spreadsheet_id, title, record)

    def update_row(self, title: str, object_id: str, partial: Mapping[str, Any]) -> None:
        DataService(self._client()).update_row(self.spreadsheet_id, title, object_id, partial)

    def get_config_values(self, names: Optional[Iterable[str]] = None) -> Dict[str, str]:
        return DataService(self._client()).get_config_values(self.spreadsheet_id, names)

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------
    def _setup_manager(self) -> SheetsSetupManager:
        return SheetsSetupManager(self._client(), self.spreadsheet_id, delay=self._sheet_delay)

    def setup_sheets(self, progress_callback=None) -> SetupProgress:
        return self._setup_manager().setup_sheets(progress_callback)

    def start_setup(self, *, block: bool = False) -> str:
        # Fail fast on missing credentials or spreadsheet before going async.
        self._access_token()
        spreadsheet_id = self.spreadsheet_id
        logger.info("Starting sheet setup for %s", spreadsheet_id)
        return start_setup(self._store, self._setup_manager, self._setup_timeout, block=block)

    def setup_progress(self, stale_after: Optional[float] = None) -> Optional[SetupProgress]:
        return load_setup_progress(self._store, stale_after=stale_after)

    def reset_setup(self) -> SetupProgress:
        return reset_setup(self._store)

    def mark_setup_complete(self) -> List[str]:
        return mark_setup_complete(self._store, MetadataClient(self._client()), self.spreadsheet_id)


__all__ = ["SheetDB"]
