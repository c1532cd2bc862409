from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from google_fakes import FakeDriveService, FakeSheetsService  # noqa: E402
from sheetdb.errors import NotFoundError  # noqa: E402
from sheetdb.metadata import MetadataClient  # noqa: E402
from sheetdb.sheets_client import GoogleSheetsClient  # noqa: E402


def _file(index: int, modified: str) -> dict:
    return {
        "id": f"id-{index}",
        "name": f"Sheet {index}",
        "webViewLink": f"https://docs.google.com/spreadsheets/d/id-{index}",
        "createdTime": "2024-01-01T00:00:00Z",
        "modifiedTime": modified,
    }


def test_list_spreadsheets_follows_every_page() -> None:
    drive = FakeDriveService(
        [
            [_file(1, "2024-03-01T00:00:00Z"), _file(2, "2024-02-01T00:00:00Z")],
            [_file(3, "2024-05-01T00:00:00Z")],
            [_file(4, "2024-01-01T00:00:00Z")],
        ]
    )
    metadata = MetadataClient(GoogleSheetsClient(FakeSheetsService(), drive))

    summaries = metadata.list_spreadsheets()

    assert [item.id for item in summaries] == ["id-3", "id-1", "id-2", "id-4"]
    assert len(drive.requests) == 3
    assert "pageToken" not in drive.requests[0]
    assert [request.get("pageToken") for request in drive.requests[1:]] == ["1", "2"]
    first = drive.requests[0]
    assert first["q"] == "mimeType='application/vnd.google-apps.spreadsheet'"
    assert first["orderBy"] == "modifiedTime desc"
    assert first["pageSize"] == 100
    assert summaries[0].to_dict()["url"].endswith("id-3")


def test_list_spreadsheets_with_no_files() -> None:
    metadata = MetadataClient(GoogleSheetsClient(FakeSheetsService(), FakeDriveService([[]])))

    assert metadata.list_spreadsheets() == []


def test_spreadsheet_metadata_and_lookups() -> None:
    service = FakeSheetsService(title="Records")
    users_id = service.add_sheet("_Users", [["object_id"]], rowCount=1000, columnCount=7)
    service.add_sheet("_Roles")
    metadata = MetadataClient(GoogleSheetsClient(service))

    info = metadata.get_spreadsheet_metadata("spreadsheet")

    assert info.name == "Records"
    assert info.titles == ["_Users", "_Roles"]
    users = info.find("_Users")
    assert users is not None
    assert (users.sheet_id, users.row_count, users.column_count) == (users_id, 1000, 7)
    assert metadata.sheet_exists("spreadsheet", "_Roles")
    assert not metadata.sheet_exists("spreadsheet", "_Files")
    assert metadata.get_sheet_id_by_title("spreadsheet", "_Users") == users_id
    assert [sheet.title for sheet in metadata.list_sheets("spreadsheet")] == ["_Users", "_Roles"]


def test_missing_sheet_id_raises_not_found() -> None:
    metadata = MetadataClient(GoogleSheetsClient(FakeSheetsService()))

    with pytest.raises(NotFoundError, match='Sheet "_Files" not found'):
        metadata.get_sheet_id_by_title("spreadsheet", "_Files")
