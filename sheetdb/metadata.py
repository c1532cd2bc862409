"""Spreadsheet and sheet metadata lookups."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sheetdb.errors import NotFoundError
from sheetdb.sheets_client import GoogleSheetsClient

logger = logging.getLogger(__name__)

SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
LIST_PAGE_SIZE = 100
METADATA_FIELDS = "spreadsheetId,properties.title,sheets(properties(sheetId,title,index,gridProperties))"


@dataclass(slots=True)
class SpreadsheetSummary:
    id: str
    name: str
    url: str = ""
    created_time: str = ""
    modified_time: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "createdTime": self.created_time,
            "modifiedTime": self.modified_time,
        }


@dataclass(slots=True)
class SheetProperties:
    sheet_id: int
    title: str
    index: int = 0
    row_count: int = 0
    column_count: int = 0


@dataclass(slots=True)
class SpreadsheetInfo:
    id: str
    name: str
    sheets: List[SheetProperties] = field(default_factory=list)

    def find(self, title: str) -> Optional[SheetProperties]:
        return next((sheet for sheet in self.sheets if sheet.title == title), None)

    @property
    def titles(self) -> List[str]:
        return [sheet.title for sheet in self.sheets]


def _sheet_from_payload(payload: Dict[str, Any]) -> SheetProperties:
    properties = payload.get("properties", {}) or {}
    grid = properties.get("gridProperties", {}) or {}
    return SheetProperties(
        sheet_id=int(properties.get("sheetId", 0)),
        title=str(properties.get("title", "")),
        index=int(properties.get("index", 0)),
        row_count=int(grid.get("rowCount", 0)),
        column_count=int(grid.get("columnCount", 0)),
    )


class MetadataClient:
    """Resolve spreadsheets, sheet titles and numeric sheet ids."""

    def __init__(self, client: GoogleSheetsClient) -> None:
        self._client = client

    def list_spreadsheets(self) -> List[SpreadsheetSummary]:
        """Return every spreadsheet visible to the token, newest first.

        The Drive listing is paginated; all pages are accumulated before the
        result is returned.
        """

        files: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {
                "q": f"mimeType='{SPREADSHEET_MIME_TYPE}'",
                "fields": "files(id,name,webViewLink,createdTime,modifiedTime),nextPageToken",
                "orderBy": "modifiedTime desc",
                "pageSize": LIST_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token
            response = self._client.list_files(**params)
            files.extend(response.get("files", []) or [])
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.info("Listed %d spreadsheets", len(files))
        summaries = [
            SpreadsheetSummary(
                id=str(item.get("id", "")),
                name=str(item.get("name", "")),
                url=str(item.get("webViewLink", "")),
                created_time=str(item.get("createdTime", "")),
                modified_time=str(item.get("modifiedTime", "")),
            )
            for item in files
        ]
        summaries.sort(key=lambda item: item.modified_time, reverse=True)
        return summaries

    def get_spreadsheet_metadata(self, spreadsheet_id: str) -> SpreadsheetInfo:
        data = self._client.get_spreadsheet(spreadsheet_id, fields=METADATA_FIELDS)
        return SpreadsheetInfo(
            id=str(data.get("spreadsheetId", spreadsheet_id)),
            name=str((data.get("properties") or {}).get("title", "")),
            sheets=[_sheet_from_payload(sheet) for sheet in data.get("sheets", []) or []],
        )

    def list_sheets(self, spreadsheet_id: str) -> List[SheetProperties]:
        data = self._client.get_spreadsheet(spreadsheet_id, fields="sheets.properties")
        return [_sheet_from_payload(sheet) for sheet in data.get("sheets", []) or []]

    def sheet_exists(self, spreadsheet_id: str, title: str) -> bool:
        return self.get_spreadsheet_metadata(spreadsheet_id).find(title) is not None

    def get_sheet_id_by_title(self, spreadsheet_id: str, title: str) -> int:
        sheet = self.get_spreadsheet_metadata(spreadsheet_id).find(title)
        if sheet is None:
            raise NotFoundError(f'Sheet "{title}" not found')
        return sheet.sheet_id


__all__ = [
    "MetadataClient",
    "SheetProperties",
    "SpreadsheetInfo",
    "SpreadsheetSummary",
]
