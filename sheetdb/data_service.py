"""Translate record reads and writes into A1 range operations."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sheetdb.errors import NotFoundError
from sheetdb.schemas import CONFIG_SHEET_NAME, is_private_column
from sheetdb.sheets_client import (
    GoogleSheetsClient,
    append_range,
    data_range,
    header_range,
    row_range,
)

logger = logging.getLogger(__name__)

# Rows 1 and 2 hold the header and type rows.
FIRST_DATA_ROW = 3

Record = Dict[str, Any]


def _cell(row: Sequence[Any], index: int) -> Any:
    return row[index] if index < len(row) else ""


class DataService:
    """Read, append and update records stored one per sheet row."""

    def __init__(self, client: GoogleSheetsClient) -> None:
        self._client = client

    def _headers(self, spreadsheet_id: str, title: str) -> List[str]:
        rows = self._client.get_values(spreadsheet_id, header_range(title))
        headers = [str(cell) for cell in rows[0]] if rows else []
        if not headers:
            raise NotFoundError(f'Sheet "{title}" has no header row')
        return headers

    def _data_rows(self, spreadsheet_id: str, title: str, columns: int) -> List[List[Any]]:
        return self._client.get_values(spreadsheet_id, data_range(title, columns=columns))

    @staticmethod
    def _to_record(headers: Sequence[str], row: Sequence[Any], include_private_columns: bool) -> Record:
        record: Record = {}
        for index, header in enumerate(headers):
            if not include_private_columns and is_private_column(header):
                continue
            record[header] = _cell(row, index)
        return record

    def get_sheet_data(
        self,
        spreadsheet_id: str,
        title: str,
        include_private_columns: bool = False,
    ) -> List[Record]:
        """Return every data row of ``title`` as a mapping keyed by header.

        Columns whose name starts with ``_`` are hidden unless
        ``include_private_columns`` is set.  Short rows are padded with ``""``.
        """

        headers = self._headers(spreadsheet_id, title)
        rows = self._data_rows(spreadsheet_id, title, len(headers))
        logger.debug("Read %d rows from %r", len(rows), title)
        return [self._to_record(headers, row, include_private_columns) for row in rows]

    def get_record(
        self,
        spreadsheet_id: str,
        title: str,
        object_id: str,
        include_private_columns: bool = False,
    ) -> Record:
        headers = self._headers(spreadsheet_id, title)
        rows = self._data_rows(spreadsheet_id, title, len(headers))
        _, row = self._find_row(rows, object_id, title)
        return self._to_record(headers, row, include_private_columns)

    def append_row(self, spreadsheet_id: str, title: str, record: Mapping[str, Any]) -> None:
        headers = self._headers(spreadsheet_id, title)
        unknown = [key for key in record if key not in headers]
        if unknown:
            logger.debug("Ignoring fields not present in %r: %s", title, ", ".join(unknown))
        values = [record.get(header, "") for header in headers]
        self._client.append_values(spreadsheet_id, append_range(title, columns=len(headers)), [values])
        logger.info("Appended row to %r", title)

    def update_row(
        self,
        spreadsheet_id: str,
        title: str,
        object_id: str,
        partial: Mapping[str, Any],
    ) -> None:
        """Merge ``partial`` into the row whose first cell equals ``object_id``.

        The row is located by a linear scan and rewritten in a single range
        write.  Concurrent writers are not detected; the last write wins.
        """

        headers = self._headers(spreadsheet_id, title)
        rows = self._data_rows(spreadsheet_id, title, len(headers))
        index, row = self._find_row(rows, object_id, title)

        merged = [
            partial[header] if header in partial else _cell(row, position)
            for position, header in enumerate(headers)
        ]
        row_number = index + FIRST_DATA_ROW
        self._client.update_values(
            spreadsheet_id,
            row_range(title, row_number, columns=len(headers)),
            [merged],
        )
        logger.info("Updated row %d of %r", row_number, title)

    def get_config_values(
        self,
        spreadsheet_id: str,
        names: Optional[Iterable[str]] = None,
    ) -> Dict[str, str]:
        """Return ``_Config`` values keyed by setting name."""

        wanted = set(names) if names is not None else None
        values: Dict[str, str] = {}
        for record in self.get_sheet_data(spreadsheet_id, CONFIG_SHEET_NAME):
            name = str(record.get("name", ""))
            if not name or (wanted is not None and name not in wanted):
                continue
            values[name] = str(record.get("value", ""))
        return values

    @staticmethod
    def _find_row(rows: Sequence[Sequence[Any]], object_id: str, title: str) -> Tuple[int, Sequence[Any]]:
        for index, row in enumerate(rows):
            if row and str(row[0]) == str(object_id):
                return index, row
        raise NotFoundError(f'Row with object_id "{object_id}" not found in sheet "{title}"')


__all__ = ["DataService", "FIRST_DATA_ROW"]
