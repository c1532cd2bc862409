from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import httplib2

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from google_fakes import FakeSheetsService  # noqa: E402
from sheetdb.config_store import ConfigStore  # noqa: E402
from sheetdb.metadata import MetadataClient  # noqa: E402
from sheetdb.schemas import BASE_SCHEMAS, CONFIG_SCHEMA, DEFAULT_CONFIG_VALUES, Column, Schema  # noqa: E402
from sheetdb.setup_manager import (  # noqa: E402
    SETUP_PROGRESS_KEY,
    SetupProgress,
    SetupRunner,
    SheetsSetupManager,
    load_setup_progress,
    mark_setup_complete,
    reset_setup,
    save_setup_progress,
    start_setup,
)
from sheetdb.sheets_client import GoogleSheetsClient  # noqa: E402


def _manager(fake: FakeSheetsService, sleeps: List[float] | None = None) -> SheetsSetupManager:
    recorder = sleeps if sleeps is not None else []
    return SheetsSetupManager(GoogleSheetsClient(fake), "spreadsheet", sleep=recorder.append)


def test_setup_creates_every_base_sheet() -> None:
    fake = FakeSheetsService()
    sleeps: List[float] = []
    snapshots: List[SetupProgress] = []

    result = _manager(fake, sleeps).setup_sheets(snapshots.append)

    assert result.status == "completed"
    assert result.progress == 100
    assert result.completed_sheets == ["_User", "_Session", "_Config", "_Role"]
    assert list(fake.sheets) == ["_User", "_Session", "_Config", "_Role"]
    assert sleeps == [0.2] * 4
    for schema in BASE_SCHEMAS:
        rows = fake.rows(schema.name)
        assert rows[0] == schema.headers
        assert fake.sheets[schema.name]["grid"]["frozenRowCount"] == 2

    config_rows = fake.rows("_Config")[2:]
    assert [row[0] for row in config_rows] == [name for name, _ in DEFAULT_CONFIG_VALUES]
    assert all(len(row) == len(CONFIG_SCHEMA.columns) for row in config_rows)

    steps = [snapshot.current_step for snapshot in snapshots]
    assert steps[0] == "Checking sheet..."
    assert "Creating sheet..." in steps
    assert "Adding initial configuration..." in steps
    assert snapshots[-1].status == "completed"
    running = [snapshot.progress for snapshot in snapshots if snapshot.current_step == "Completed"]
    assert running == [25, 50, 75, 100, 100]
    assert all(snapshot.updated_at for snapshot in snapshots)


def test_second_run_writes_no_header_rows() -> None:
    fake = FakeSheetsService()
    _manager(fake).setup_sheets()
    fake.calls.clear()

    result = _manager(fake).setup_sheets()

    assert result.status == "completed"
    assert fake.calls_named("values.batchUpdate") == []
    add_requests = [
        request
        for body in fake.calls_named("spreadsheets.batchUpdate")
        for request in body["requests"]
        if "addSheet" in request
    ]
    assert add_requests == []


def test_schema_wider_than_z_is_reconciled_once() -> None:
    fake = FakeSheetsService()
    wide = Schema("_Wide", tuple(Column(f"field_{index}") for index in range(30)))

    SheetsSetupManager(GoogleSheetsClient(fake), "spreadsheet", schemas=[wide], sleep=lambda _: None).setup_sheets()
    assert fake.rows("_Wide")[0][-1] == "field_29"
    fake.calls.clear()

    result = SheetsSetupManager(GoogleSheetsClient(fake), "spreadsheet", schemas=[wide], sleep=lambda _: None).setup_sheets()

    assert result.status == "completed"
    assert fake.calls_named("values.batchUpdate") == []
    assert "'_Wide'!A1:AD2" in fake.calls_named("values.get")


def test_equivalent_type_rows_are_left_alone() -> None:
    fake = FakeSheetsService()
    schema = BASE_SCHEMAS[3]
    type_row = ['{"type":"%s"}' % column.type if not column.constraints() else None for column in schema.columns]
    manager = SheetsSetupManager(GoogleSheetsClient(fake), "spreadsheet", schemas=[schema], sleep=lambda _: None)
    manager.setup_sheets()
    stored_types = fake.rows(schema.name)[1]
    fake.rows(schema.name)[1] = [
        rewritten or stored for rewritten, stored in zip(type_row, stored_types)
    ]
    fake.calls.clear()

    manager.setup_sheets()

    assert fake.calls_named("values.batchUpdate") == []


def test_outdated_header_row_is_rewritten_alone() -> None:
    fake = FakeSheetsService()
    schema = BASE_SCHEMAS[3]
    fake.add_sheet(schema.name, [["name", "users"]])
    manager = SheetsSetupManager(GoogleSheetsClient(fake), "spreadsheet", schemas=[schema], sleep=lambda _: None)

    manager.setup_sheets()

    updates = fake.calls_named("values.batchUpdate")
    assert len(updates) == 1
    assert [entry["range"] for entry in updates[0]["data"]] == ["'_Role'!A1:K1", "'_Role'!A2:K2"]
    assert fake.rows(schema.name)[0] == schema.headers


def test_failure_on_second_schema_reports_partial_progress() -> None:
    fake = FakeSheetsService()
    fake.fail["addSheet:_Session"] = 500
    snapshots: List[SetupProgress] = []

    result = _manager(fake).setup_sheets(snapshots.append)

    assert result.status == "error"
    assert result.completed_sheets == ["_User"]
    assert result.progress == 25
    assert result.error and result.error.startswith("Failed to process schema _Session:")
    assert snapshots[-1].status == "error"
    assert "_Config" not in fake.sheets


def test_cosmetic_failures_do_not_abort_setup() -> None:
    fake = FakeSheetsService()
    fake.fail["repeatCell"] = 500
    fake.fail["updateSheetProperties"] = 500

    result = _manager(fake).setup_sheets()

    assert result.status == "completed"
    assert len(result.completed_sheets) == 4


def test_transport_failures_in_cosmetic_steps_do_not_abort_setup() -> None:
    fake = FakeSheetsService()
    fake.fail["repeatCell"] = TimeoutError("The read operation timed out")
    fake.fail["updateSheetProperties"] = httplib2.ServerNotFoundError("Unable to find the server")

    result = _manager(fake).setup_sheets()

    assert result.status == "completed"
    assert result.error is None
    assert result.completed_sheets == ["_User", "_Session", "_Config", "_Role"]


def test_unexpected_cosmetic_errors_are_logged_and_skipped(caplog) -> None:
    fake = FakeSheetsService()
    fake.fail["repeatCell"] = KeyError("sheetId")

    with caplog.at_level(logging.WARNING):
        result = _manager(fake).setup_sheets()

    assert result.status == "completed"
    assert "header styling error on _User" in caplog.text


def test_existing_config_rows_are_not_reseeded() -> None:
    fake = FakeSheetsService()
    custom = ["MAX_FILE_SIZE", "MAX_FILE_SIZE", "1", "", "", "false", "false", "[]", "[]", "[]", "[]"]
    fake.add_sheet("_Config", [[], [], custom])

    _manager(fake).setup_sheets()

    assert fake.rows("_Config")[2:] == [custom]


def test_progress_persistence_and_reset(tmp_path: Path) -> None:
    store = ConfigStore(tmp_path / "config.db")
    save_setup_progress(store, SetupProgress(current_sheet="_User", status="running", total_sheets=4))

    loaded = load_setup_progress(store)
    assert loaded is not None and loaded.status == "running"
    assert "updatedAt" in json.loads(store.get(SETUP_PROGRESS_KEY))

    reset = reset_setup(store)
    assert reset.status == "idle"
    assert load_setup_progress(store).current_step == "Reset Complete"
    assert store.get("sheet_setup_status") == ""


def test_stale_running_snapshot_is_reported_as_error() -> None:
    store = ConfigStore()
    old = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()
    save_setup_progress(store, SetupProgress(status="running", total_sheets=4, updated_at=old))

    assert load_setup_progress(store).status == "running"
    stale = load_setup_progress(store, stale_after=60)
    assert stale.status == "error"
    assert "stalled" in stale.error


def test_background_setup_persists_completion() -> None:
    store = ConfigStore()
    fake = FakeSheetsService()

    runner = SetupRunner(store, lambda: _manager(fake), timeout=10)
    setup_id = runner.start()
    result = runner.wait(10)

    assert result is not None and result.status == "completed"
    assert store.get("sheet_setup_id") == setup_id
    assert store.get("sheet_setup_status") == "completed"
    assert store.get("sheets_initialized") == "true"
    assert load_setup_progress(store).progress == 100


def test_start_setup_blocking_records_failure() -> None:
    store = ConfigStore()
    fake = FakeSheetsService()
    fake.fail["spreadsheets.get"] = 503

    setup_id = start_setup(store, lambda: _manager(fake), timeout=10, block=True)

    assert setup_id
    progress = load_setup_progress(store)
    assert progress.status == "error"
    assert store.get("sheet_setup_status") == "error"


class _HangingManager:
    def __init__(self) -> None:
        self.release = threading.Event()
        self.finished = threading.Event()

    def setup_sheets(self, progress_callback=None) -> SetupProgress:
        progress_callback(SetupProgress(current_sheet="_User", current_step="Checking sheet...", status="running", total_sheets=4))
        self.release.wait(5)
        done = SetupProgress(current_step="Completed", status="completed", progress=100, total_sheets=4)
        progress_callback(done)
        self.finished.set()
        return done


def test_timeout_records_error_and_ignores_late_progress() -> None:
    store = ConfigStore()
    manager = _HangingManager()

    runner = SetupRunner(store, lambda: manager, timeout=0.5)
    runner.start()
    result = runner.wait(5)

    assert result is not None
    assert result.status == "error"
    assert result.error == "Setup timeout after 0.5 seconds"
    assert result.current_sheet == "_User"

    manager.release.set()
    assert manager.finished.wait(5)
    persisted = load_setup_progress(store)
    assert persisted.status == "error"
    assert store.get("sheet_setup_status") == "error"
    assert store.get("sheets_initialized") is None


class _SlowReturningManager:
    def setup_sheets(self, progress_callback=None) -> SetupProgress:
        done = SetupProgress(current_step="Completed", status="completed", progress=100, total_sheets=4)
        progress_callback(done)
        threading.Event().wait(1.0)
        return done


def test_timeout_keeps_outcome_persisted_before_the_deadline() -> None:
    store = ConfigStore()

    runner = SetupRunner(store, lambda: _SlowReturningManager(), timeout=0.2)
    runner.start()
    result = runner.wait(5)

    assert result is not None and result.status == "completed"
    assert load_setup_progress(store).status == "completed"
    assert store.get("sheet_setup_status") == "completed"
    assert store.get("sheets_initialized") == "true"


def test_mark_setup_complete_requires_every_sheet() -> None:
    store = ConfigStore()
    fake = FakeSheetsService()
    fake.add_sheet("_User")
    metadata = MetadataClient(GoogleSheetsClient(fake))

    assert mark_setup_complete(store, metadata, "spreadsheet") == ["_Session", "_Config", "_Role"]
    assert load_setup_progress(store) is None

    for name in ("_Session", "_Config", "_Role"):
        fake.add_sheet(name)
    assert mark_setup_complete(store, metadata, "spreadsheet") == []
    assert load_setup_progress(store).status == "completed"
    assert store.get("sheets_initialized") == "true"
