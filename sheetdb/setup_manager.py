"""Idempotent provisioning of the base sheets with persisted progress.

:class:`SheetsSetupManager` walks the compiled-in schemas one by one, creating
missing sheets, reconciling the header and type rows, freezing and styling
them and seeding ``_Config``.  Progress snapshots are handed to a callback
after every step.

The module level helpers (:func:`start_setup`, :func:`load_setup_progress`,
:func:`reset_setup`, :func:`mark_setup_complete`) run provisioning on a
background thread and keep the latest snapshot in a
:class:`~sheetdb.config_store.ConfigStore` so other callers can poll it.
"""
from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sheetdb.column_codec import encode_column, schema_rows_equal
from sheetdb.config_store import ConfigStore
from sheetdb.errors import RemoteApiError, SheetDBError
from sheetdb.metadata import MetadataClient
from sheetdb.schemas import (
    BASE_SCHEMAS,
    CONFIG_SEED_RANGE,
    CONFIG_SHEET_NAME,
    Schema,
    default_config_rows,
)
from sheetdb.sheets_client import GoogleSheetsClient, a1_range, column_letter

logger = logging.getLogger(__name__)

SETUP_PROGRESS_KEY = "sheet_setup_progress"
SETUP_ID_KEY = "sheet_setup_id"
SETUP_STATUS_KEY = "sheet_setup_status"
SHEETS_INITIALIZED_KEY = "sheets_initialized"

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

FROZEN_ROWS = 2
DEFAULT_SHEET_DELAY = 0.2
DEFAULT_SETUP_TIMEOUT = 180

HEADER_STYLE: Dict[str, Any] = {
    "backgroundColor": {"red": 0.9, "green": 0.9, "blue": 1.0},
    "textFormat": {"bold": True, "fontSize": 11},
    "horizontalAlignment": "CENTER",
}
TYPE_STYLE: Dict[str, Any] = {
    "backgroundColor": {"red": 0.95, "green": 0.95, "blue": 0.95},
    "textFormat": {"italic": True, "fontSize": 10},
    "horizontalAlignment": "CENTER",
}


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SetupProgress:
    current_sheet: str = ""
    current_step: str = ""
    completed_sheets: List[str] = field(default_factory=list)
    total_sheets: int = 0
    progress: int = 0
    status: str = STATUS_IDLE
    error: Optional[str] = None
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "currentSheet": self.current_sheet,
            "currentStep": self.current_step,
            "completedSheets": list(self.completed_sheets),
            "totalSheets": self.total_sheets,
            "progress": self.progress,
            "status": self.status,
        }
        if self.error:
            payload["error"] = self.error
        if self.updated_at:
            payload["updatedAt"] = self.updated_at
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SetupProgress":
        completed = data.get("completedSheets") or []
        try:
            progress = int(data.get("progress", 0) or 0)
        except (TypeError, ValueError):
            progress = 0
        try:
            total = int(data.get("totalSheets", 0) or 0)
        except (TypeError, ValueError):
            total = 0
        return cls(
            current_sheet=str(data.get("currentSheet", "") or ""),
            current_step=str(data.get("currentStep", "") or ""),
            completed_sheets=[str(name) for name in completed] if isinstance(completed, list) else [],
            total_sheets=total,
            progress=progress,
            status=str(data.get("status", STATUS_IDLE) or STATUS_IDLE),
            error=data.get("error") or None,
            updated_at=str(data.get("updatedAt", "") or ""),
        )

    def copy(self, **changes: Any) -> "SetupProgress":
        data = {
            "current_sheet": self.current_sheet,
            "current_step": self.current_step,
            "completed_sheets": list(self.completed_sheets),
            "total_sheets": self.total_sheets,
            "progress": self.progress,
            "status": self.status,
            "error": self.error,
            "updated_at": self.updated_at,
        }
        data.update(changes)
        return SetupProgress(**data)


ProgressCallback = Callable[[SetupProgress], None]


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return int(round(done / total * 100))


class SheetsSetupManager:
    """Provision every base schema in order, reporting progress as it goes."""

    def __init__(
        self,
        client: GoogleSheetsClient,
        spreadsheet_id: str,
        *,
        metadata: Optional[MetadataClient] = None,
        schemas: Sequence[Schema] = BASE_SCHEMAS,
        delay: float = DEFAULT_SHEET_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._metadata = metadata or MetadataClient(client)
        self._spreadsheet_id = spreadsheet_id
        self._schemas = tuple(schemas)
        self._delay = delay
        self._sleep = sleep

    @property
    def schemas(self) -> Sequence[Schema]:
        return self._schemas

    def setup_sheets(self, progress_callback: Optional[ProgressCallback] = None) -> SetupProgress:
        """Provision the base sheets and return the final snapshot.

        Errors never propagate: the first failing schema stops the run and the
        returned snapshot carries ``status="error"`` together with the sheets
        that were completed before the failure.
        """

        total = len(self._schemas)
        completed: List[str] = []

        def emit(snapshot: SetupProgress) -> None:
            if progress_callback is not None:
                progress_callback(snapshot.copy(updated_at=_utc_timestamp()))

        try:
            existing = {sheet.title for sheet in self._metadata.list_sheets(self._spreadsheet_id)}
            for index, schema in enumerate(self._schemas):
                logger.info("Processing schema %d/%d: %s", index + 1, total, schema.name)
                progress = SetupProgress(
                    current_sheet=schema.name,
                    current_step="Checking sheet...",
                    completed_sheets=list(completed),
                    total_sheets=total,
                    progress=_percent(index, total),
                    status=STATUS_RUNNING,
                )
                emit(progress)
                try:
                    self._process_schema(schema, schema.name in existing, progress, emit)
                except Exception as exc:
                    logger.exception("Error processing schema %s", schema.name)
                    raise SheetDBError(f"Failed to process schema {schema.name}: {exc}") from exc

                existing.add(schema.name)
                completed.append(schema.name)
                emit(
                    SetupProgress(
                        current_sheet=schema.name,
                        current_step="Completed",
                        completed_sheets=list(completed),
                        total_sheets=total,
                        progress=_percent(len(completed), total),
                        status=STATUS_RUNNING,
                    )
                )
                self._sleep(self._delay)
        except Exception as exc:
            failure = SetupProgress(
                current_sheet="",
                current_step="An error occurred",
                completed_sheets=list(completed),
                total_sheets=total,
                progress=_percent(len(completed), total),
                status=STATUS_ERROR,
                error=str(exc) or exc.__class__.__name__,
            )
            emit(failure)
            return failure.copy(updated_at=_utc_timestamp())

        final = SetupProgress(
            current_sheet="",
            current_step="Completed",
            completed_sheets=list(completed),
            total_sheets=total,
            progress=100,
            status=STATUS_COMPLETED,
        )
        emit(final)
        logger.info("Sheet setup completed (%d sheets)", total)
        return final.copy(updated_at=_utc_timestamp())

    # ------------------------------------------------------------------
    # Per-schema steps
    # ------------------------------------------------------------------
    def _process_schema(
        self,
        schema: Schema,
        exists: bool,
        progress: SetupProgress,
        emit: Callable[[SetupProgress], None],
    ) -> None:
        if not exists:
            progress.current_step = "Creating sheet..."
            emit(progress)
            self._create_sheet(schema.name)

        progress.current_step = "Checking header rows..."
        emit(progress)
        self._reconcile_header_rows(schema)

        progress.current_step = "Freezing header rows..."
        emit(progress)
        self._freeze_header_rows(schema.name)

        progress.current_step = "Styling header rows..."
        emit(progress)
        self._style_header_rows(schema)

        if schema.name == CONFIG_SHEET_NAME:
            progress.current_step = "Adding initial configuration..."
            emit(progress)
            self._seed_config_rows()

    def _create_sheet(self, title: str) -> None:
        self._client.batch_update(self._spreadsheet_id, [{"addSheet": {"properties": {"title": title}}}])
        logger.info("Created sheet %s", title)

    def _read_range(self, title: str, range_spec: str) -> List[List[Any]]:
        try:
            return self._client.get_values(self._spreadsheet_id, a1_range(title, range_spec))
        except RemoteApiError as exc:
            if exc.status == 404:
                return []
            raise

    def _reconcile_header_rows(self, schema: Schema) -> None:
        headers = schema.headers
        types = [encode_column(column) for column in schema.columns]
        last = column_letter(len(headers))

        existing = self._read_range(schema.name, f"A1:{last}2")
        current_headers = [str(cell) for cell in existing[0]] if len(existing) > 0 else []
        current_types = list(existing[1]) if len(existing) > 1 else []

        updates: List[Dict[str, Any]] = []
        if current_headers != headers:
            updates.append({"range": a1_range(schema.name, f"A1:{last}1"), "values": [headers]})
        if not current_types or not schema_rows_equal(current_types, types):
            updates.append({"range": a1_range(schema.name, f"A2:{last}2"), "values": [types]})

        if not updates:
            logger.debug("Header rows of %s are up to date", schema.name)
            return
        logger.info("Updating %d header row(s) of %s", len(updates), schema.name)
        self._client.batch_update_values(self._spreadsheet_id, updates)

    def _freeze_header_rows(self, title: str) -> None:
        try:
            sheet_id = self._metadata.get_sheet_id_by_title(self._spreadsheet_id, title)
            self._client.batch_update(
                self._spreadsheet_id,
                [
                    {
                        "updateSheetProperties": {
                            "properties": {"sheetId": sheet_id, "gridProperties": {"frozenRowCount": FROZEN_ROWS}},
                            "fields": "gridProperties.frozenRowCount",
                        }
                    }
                ],
            )
        except Exception as exc:
            logger.warning(
                "Continuing setup despite header freeze error on %s: %s", title, exc, exc_info=True
            )

    def _style_header_rows(self, schema: Schema) -> None:
        try:
            sheet_id = self._metadata.get_sheet_id_by_title(self._spreadsheet_id, schema.name)
            columns = len(schema.columns)
            self._client.batch_update(
                self._spreadsheet_id,
                [
                    _style_request(sheet_id, 0, columns, HEADER_STYLE),
                    _style_request(sheet_id, 1, columns, TYPE_STYLE),
                ],
            )
        except Exception as exc:
            logger.warning(
                "Continuing setup despite header styling error on %s: %s", schema.name, exc, exc_info=True
            )

    def _seed_config_rows(self) -> None:
        try:
            existing = self._read_range(CONFIG_SHEET_NAME, CONFIG_SEED_RANGE)
            if existing:
                logger.debug("Configuration rows already present; skipping seed")
                return
            self._client.batch_update_values(
                self._spreadsheet_id,
                [{"range": a1_range(CONFIG_SHEET_NAME, CONFIG_SEED_RANGE), "values": default_config_rows()}],
            )
            logger.info("Seeded default configuration rows")
        except Exception as exc:
            logger.warning("Continuing setup despite initial configuration error: %s", exc, exc_info=True)


def _style_request(sheet_id: int, row_index: int, columns: int, style: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "repeatCell": {
            "range": {
                "sheetId": sheet_id,
                "startRowIndex": row_index,
                "endRowIndex": row_index + 1,
                "startColumnIndex": 0,
                "endColumnIndex": columns,
            },
            "cell": {"userEnteredFormat": dict(style)},
            "fields": "userEnteredFormat(backgroundColor,textFormat,horizontalAlignment)",
        }
    }


# ----------------------------------------------------------------------
# Persisted progress and background runner
# ----------------------------------------------------------------------
def save_setup_progress(store: ConfigStore, progress: SetupProgress) -> None:
    snapshot = progress if progress.updated_at else progress.copy(updated_at=_utc_timestamp())
    store.set(SETUP_PROGRESS_KEY, json.dumps(snapshot.to_dict()))
    if snapshot.status == STATUS_COMPLETED:
        store.set(SETUP_STATUS_KEY, STATUS_COMPLETED)
        store.set(SHEETS_INITIALIZED_KEY, "true")
    elif snapshot.status == STATUS_ERROR:
        store.set(SETUP_STATUS_KEY, STATUS_ERROR)


def load_setup_progress(store: ConfigStore, stale_after: Optional[float] = None) -> Optional[SetupProgress]:
    """Return the persisted snapshot, or ``None`` when no run was recorded.

    With ``stale_after`` (seconds), a ``running`` snapshot that has not been
    updated within that window is reported as an error.
    """

    raw = store.get(SETUP_PROGRESS_KEY)
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable setup progress snapshot")
        return None
    if not isinstance(data, dict):
        return None
    progress = SetupProgress.from_dict(data)

    if stale_after is not None and progress.status == STATUS_RUNNING and progress.updated_at:
        try:
            updated = datetime.fromisoformat(progress.updated_at)
        except ValueError:
            return progress
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        if datetime.now(timezone.utc) - updated > timedelta(seconds=stale_after):
            progress.status = STATUS_ERROR
            progress.error = f"Setup stalled: no progress for more than {stale_after:g} seconds"
    return progress


def reset_setup(store: ConfigStore) -> SetupProgress:
    store.set(SETUP_STATUS_KEY, "")
    store.set(SHEETS_INITIALIZED_KEY, "")
    progress = SetupProgress(
        current_step="Reset Complete",
        total_sheets=len(BASE_SCHEMAS),
        status=STATUS_IDLE,
    )
    save_setup_progress(store, progress)
    logger.info("Sheet setup state reset")
    return progress


def mark_setup_complete(
    store: ConfigStore,
    metadata: MetadataClient,
    spreadsheet_id: str,
    schemas: Sequence[Schema] = BASE_SCHEMAS,
) -> List[str]:
    """Record completion when every base sheet already exists.

    Returns the missing sheet names; an empty list means completion was
    recorded.
    """

    found = {sheet.title for sheet in metadata.list_sheets(spreadsheet_id)}
    required = [schema.name for schema in schemas]
    missing = [name for name in required if name not in found]
    if missing:
        logger.info("Cannot mark setup complete; missing sheets: %s", ", ".join(missing))
        return missing

    save_setup_progress(
        store,
        SetupProgress(
            current_step="Complete",
            completed_sheets=required,
            total_sheets=len(required),
            progress=100,
            status=STATUS_COMPLETED,
        ),
    )
    return []


class SetupRunner:
    """Run :meth:`SheetsSetupManager.setup_sheets` on a worker thread.

    A supervisor thread waits for the worker up to ``timeout`` seconds.  When
    the deadline passes an error snapshot is persisted and later snapshots
    from the abandoned worker are discarded.
    """

    def __init__(
        self,
        store: ConfigStore,
        manager_factory: Callable[[], SheetsSetupManager],
        timeout: float = DEFAULT_SETUP_TIMEOUT,
    ) -> None:
        self._store = store
        self._factory = manager_factory
        self._timeout = timeout
        self._abandoned = threading.Event()
        self._lock = threading.Lock()
        self._supervisor: Optional[threading.Thread] = None
        self.setup_id = str(uuid.uuid4())
        self.result: Optional[SetupProgress] = None

    def start(self) -> str:
        if self._supervisor is not None:
            return self.setup_id
        self._store.set(SETUP_ID_KEY, self.setup_id)
        self._store.set(SETUP_STATUS_KEY, STATUS_RUNNING)
        save_setup_progress(
            self._store,
            SetupProgress(
                current_step="Initializing...",
                total_sheets=len(BASE_SCHEMAS),
                status=STATUS_RUNNING,
            ),
        )
        self._supervisor = threading.Thread(target=self._supervise, name="SheetSetupSupervisor", daemon=True)
        self._supervisor.start()
        logger.info("Sheet setup %s started", self.setup_id)
        return self.setup_id

    def wait(self, timeout: Optional[float] = None) -> Optional[SetupProgress]:
        if self._supervisor is not None:
            self._supervisor.join(timeout)
        return self.result

    def _persist(self, progress: SetupProgress) -> None:
        with self._lock:
            if self._abandoned.is_set():
                return
            try:
                save_setup_progress(self._store, progress)
            except Exception:
                logger.exception("Failed to persist setup progress")

    def _work(self) -> None:
        try:
            manager = self._factory()
            outcome = manager.setup_sheets(self._persist)
        except Exception as exc:
            logger.exception("Sheet setup %s failed", self.setup_id)
            outcome = self._failure(str(exc) or exc.__class__.__name__)
            self._persist(outcome)
        with self._lock:
            if not self._abandoned.is_set():
                self.result = outcome

    def _supervise(self) -> None:
        worker = threading.Thread(target=self._work, name="SheetSetupWorker", daemon=True)
        worker.start()
        worker.join(self._timeout)
        if not worker.is_alive():
            return
        with self._lock:
            current = load_setup_progress(self._store)
            finished = self.result is not None or (current is not None and current.status != STATUS_RUNNING)
            if not finished:
                self._abandoned.set()
                failure = self._failure(f"Setup timeout after {self._timeout:g} seconds")
                save_setup_progress(self._store, failure)
                self.result = failure
        if finished:
            # The worker already persisted its outcome and is about to record it.
            worker.join()
            return
        logger.error("Sheet setup %s timed out after %s seconds", self.setup_id, self._timeout)

    def _failure(self, message: str) -> SetupProgress:
        current = load_setup_progress(self._store) or SetupProgress(total_sheets=len(BASE_SCHEMAS))
        return current.copy(
            current_step="An error occurred",
            status=STATUS_ERROR,
            error=message,
            updated_at=_utc_timestamp(),
        )


def start_setup(
    store: ConfigStore,
    manager_factory: Callable[[], SheetsSetupManager],
    timeout: float = DEFAULT_SETUP_TIMEOUT,
    *,
    block: bool = False,
) -> str:
    """Start provisioning in the background and return the new setup id.

    With ``block=True`` the call returns only once the run finished or timed
    out.
    """

    runner = SetupRunner(store, manager_factory, timeout)
    setup_id = runner.start()
    if block:
        runner.wait()
    return setup_id


__all__ = [
    "SETUP_PROGRESS_KEY",
    "SetupProgress",
    "SetupRunner",
    "SheetsSetupManager",
    "load_setup_progress",
    "mark_setup_complete",
    "reset_setup",
    "save_setup_progress",
    "start_setup",
]
