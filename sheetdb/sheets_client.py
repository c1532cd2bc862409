"""Google Sheets / Drive client helpers with robust A1 range handling.

This module centralises all direct interactions with the Google APIs used by
SheetDB.  It provides a small, well defined surface area that the services
can rely on without needing to know about googleapiclient internals:

* Normalising worksheet titles and A1 ranges.  Titles are always quoted
  the way the Sheets A1 notation expects and column references are calculated
  with a dedicated helper, so tables with more than 26 columns work.
* Providing a clean failure surface.  Every ``HttpError`` is translated into
  :class:`~sheetdb.errors.RemoteApiError` carrying the HTTP status and the
  response body.

Higher level services (metadata, schema, data, setup) are expected to build
their behaviour on top of :class:`GoogleSheetsClient`; this layer only knows
about HTTP interactions and value shapes.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, MutableSequence, Optional, Sequence

import httplib2
from google.auth.exceptions import TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from sheetdb.errors import RemoteApiError

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = (
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
)
VALUE_INPUT_OPTION = "RAW"


def column_letter(index: int) -> str:
    """Convert a 1-based column index into its A1 letters (1 -> A, 27 -> AA)."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise ValueError("Worksheet title must not be empty")
    if len(safe) >= 2 and safe[0] == safe[-1] == "'":
        safe = safe[1:-1].replace("''", "'")
    return "'" + safe.replace("'", "''") + "'"


def a1_range(title: str, range_spec: str) -> str:
    return f"{quote_title(title)}!{range_spec}"


def header_range(title: str) -> str:
    return a1_range(title, "1:1")


def data_range(title: str, *, columns: int) -> str:
    """Return the open-ended range covering every data row (row 3 onward)."""

    return a1_range(title, f"A3:{column_letter(max(1, columns))}")


def row_range(title: str, row_number: int, *, columns: int) -> str:
    if row_number < 1:
        raise ValueError("Row number must be >= 1")
    last = column_letter(max(1, columns))
    return a1_range(title, f"A{row_number}:{last}{row_number}")


def append_range(title: str, *, columns: int) -> str:
    return a1_range(title, f"A:{column_letter(max(1, columns))}")


def credentials_from_token(access_token: str) -> Credentials:
    return Credentials(token=access_token, scopes=list(SCOPES))


def build_sheets_service(access_token: str):
    return build("sheets", "v4", credentials=credentials_from_token(access_token), cache_discovery=False)


def build_drive_service(access_token: str):
    return build("drive", "v3", credentials=credentials_from_token(access_token), cache_discovery=False)


def _http_error_details(exc: HttpError) -> tuple[Optional[int], str]:
    status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    content = getattr(exc, "content", b"") or b""
    if isinstance(content, bytes):
        body = content.decode("utf-8", errors="replace")
    else:
        body = str(content)
    return status, body


class GoogleSheetsClient:
    """Concrete helper that speaks to Google Sheets and Drive using the REST API."""

    def __init__(self, sheets_service, drive_service=None) -> None:
        self._sheets = sheets_service
        self._drive = drive_service

    @classmethod
    def from_access_token(cls, access_token: str) -> "GoogleSheetsClient":
        return cls(build_sheets_service(access_token), build_drive_service(access_token))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_values(self, spreadsheet_id: str, range_: str) -> List[List[Any]]:
        response = self._execute(
            self._sheets.spreadsheets().values().get(spreadsheetId=spreadsheet_id, range=range_),
            f"Failed to get values for {range_}",
        )
        values = response.get("values", []) if isinstance(response, dict) else []
        return [list(row) for row in values]

    def update_values(self, spreadsheet_id: str, range_: str, values: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        return self._execute(
            self._sheets.spreadsheets()
            .values()
            .update(
                spreadsheetId=spreadsheet_id,
                range=range_,
                valueInputOption=VALUE_INPUT_OPTION,
                body={"values": [list(row) for row in values]},
            ),
            f"Failed to update values for {range_}",
        )

    def append_values(self, spreadsheet_id: str, range_: str, values: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        return self._execute(
            self._sheets.spreadsheets()
            .values()
            .append(
                spreadsheetId=spreadsheet_id,
                range=range_,
                valueInputOption=VALUE_INPUT_OPTION,
                body={"values": [list(row) for row in values]},
            ),
            f"Failed to append values to {range_}",
        )

    def batch_update_values(self, spreadsheet_id: str, data: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        """Write several ranges in a single ``values.batchUpdate`` request."""

        body = {"valueInputOption": VALUE_INPUT_OPTION, "data": [dict(entry) for entry in data]}
        return self._execute(
            self._sheets.spreadsheets().values().batchUpdate(spreadsheetId=spreadsheet_id, body=body),
            "Failed to update sheet data",
        )

    def batch_update(self, spreadsheet_id: str, requests: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        """Send structural/formatting requests (``spreadsheets.batchUpdate``)."""

        return self._execute(
            self._sheets.spreadsheets().batchUpdate(
                spreadsheetId=spreadsheet_id, body={"requests": [dict(item) for item in requests]}
            ),
            "Failed to apply spreadsheet update",
        )

    def get_spreadsheet(self, spreadsheet_id: str, *, fields: str) -> Dict[str, Any]:
        return self._execute(
            self._sheets.spreadsheets().get(spreadsheetId=spreadsheet_id, fields=fields),
            f"Failed to get spreadsheet {spreadsheet_id}",
        )

    def list_files(self, **params: Any) -> Dict[str, Any]:
        if self._drive is None:
            raise RemoteApiError("Drive service is not configured for this client")
        return self._execute(self._drive.files().list(**params), "Failed to list spreadsheets")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _execute(request, message: str) -> Dict[str, Any]:
        try:
            response = request.execute()
        except HttpError as exc:
            status, body = _http_error_details(exc)
            logger.error("%s: HTTP %s", message, status)
            raise RemoteApiError(message, status=status, body=body) from exc
        except (OSError, httplib2.HttpLib2Error, TransportError) as exc:
            logger.error("%s: transport failure: %s", message, exc)
            raise RemoteApiError(f"{message}: {exc}") from exc
        return response if isinstance(response, dict) else {}


__all__ = [
    "GoogleSheetsClient",
    "SCOPES",
    "a1_range",
    "append_range",
    "build_drive_service",
    "build_sheets_service",
    "column_letter",
    "data_range",
    "header_range",
    "quote_title",
    "row_range",
]
