"""Sheet creation with header/type rows and structural validation."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from sheetdb.column_codec import encode_definition
from sheetdb.errors import RemoteApiError, ValidationError
from sheetdb.metadata import MetadataClient
from sheetdb.schemas import FILES_SHEET, ROLES_SHEET, USERS_SHEET
from sheetdb.sheets_client import GoogleSheetsClient, a1_range, column_letter

logger = logging.getLogger(__name__)

INITIAL_ROW_COUNT = 1000
FROZEN_ROW_COUNT = 2

HEADER_ROW_FORMAT: Dict[str, Any] = {
    "backgroundColor": {"red": 0.9, "green": 0.9, "blue": 0.9},
    "textFormat": {"bold": True},
}
TYPE_ROW_FORMAT: Dict[str, Any] = {
    "backgroundColor": {"red": 0.85, "green": 0.92, "blue": 0.95},
    "textFormat": {"italic": True, "fontSize": 9},
}


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    has_users_sheet: bool = False
    has_roles_sheet: bool = False
    has_files_sheet: bool = False

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "hasUsersSheet": self.has_users_sheet,
            "hasRolesSheet": self.has_roles_sheet,
            "hasFilesSheet": self.has_files_sheet,
        }


def _row_format_request(sheet_id: int, row_index: int, fmt: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "repeatCell": {
            "range": {"sheetId": sheet_id, "startRowIndex": row_index, "endRowIndex": row_index + 1},
            "cell": {"userEnteredFormat": dict(fmt)},
            "fields": "userEnteredFormat(backgroundColor,textFormat)",
        }
    }


class SchemaService:
    """Create schema-carrying sheets and check that a spreadsheet is usable."""

    def __init__(self, client: GoogleSheetsClient, metadata: MetadataClient | None = None) -> None:
        self._client = client
        self._metadata = metadata or MetadataClient(client)

    def create_sheet_with_headers(
        self,
        spreadsheet_id: str,
        title: str,
        headers: Sequence[str],
        column_defs: Sequence[Mapping[str, Any]],
    ) -> None:
        """Create ``title`` with header and type rows.

        The three remote steps run strictly in order.  Creating the sheet and
        writing rows 1-2 must succeed; a formatting failure is only logged.
        """

        if not headers:
            raise ValueError("At least one header is required")
        if len(column_defs) != len(headers):
            raise ValueError("Each header needs exactly one column definition")

        logger.info("Creating sheet %r with %d columns", title, len(headers))

        self._client.batch_update(
            spreadsheet_id,
            [
                {
                    "addSheet": {
                        "properties": {
                            "title": title,
                            "gridProperties": {
                                "rowCount": INITIAL_ROW_COUNT,
                                "columnCount": len(headers),
                                "frozenRowCount": FROZEN_ROW_COUNT,
                            },
                        }
                    }
                }
            ],
        )
        logger.debug("Step 1/3: sheet %r created", title)

        type_row = [encode_definition(definition) for definition in column_defs]
        self._client.update_values(
            spreadsheet_id,
            a1_range(title, f"A1:{column_letter(len(headers))}2"),
            [list(headers), type_row],
        )
        logger.debug("Step 2/3: headers and column definitions written to %r", title)

        try:
            sheet_id = self._metadata.get_sheet_id_by_title(spreadsheet_id, title)
            self._client.batch_update(
                spreadsheet_id,
                [
                    _row_format_request(sheet_id, 0, HEADER_ROW_FORMAT),
                    _row_format_request(sheet_id, 1, TYPE_ROW_FORMAT),
                ],
            )
        except Exception as exc:
            logger.warning("Formatting sheet %r failed; continuing: %s", title, exc, exc_info=True)
        else:
            logger.debug("Step 3/3: formatting applied to %r", title)
        logger.info("Sheet %r created", title)

    def validate_sheet_structure(self, spreadsheet_id: str) -> ValidationResult:
        metadata = self._metadata.get_spreadsheet_metadata(spreadsheet_id)

        users_sheet = metadata.find(USERS_SHEET.title)
        roles_sheet = metadata.find(ROLES_SHEET.title)
        files_sheet = metadata.find(FILES_SHEET.title)

        errors: List[str] = []
        warnings: List[str] = []
        for required, found in ((USERS_SHEET, users_sheet), (ROLES_SHEET, roles_sheet), (FILES_SHEET, files_sheet)):
            if found is None:
                errors.append(f'Required sheet "{required.title}" not found')

        if users_sheet is not None:
            try:
                rows = self._client.get_values(
                    spreadsheet_id, a1_range(USERS_SHEET.title, f"A1:{column_letter(26)}1")
                )
            except RemoteApiError as exc:
                warnings.append(f"Could not read {USERS_SHEET.title} header row: {exc}")
            else:
                columns = [str(cell) for cell in rows[0]] if rows else []
                for column in USERS_SHEET.headers:
                    if column not in columns:
                        errors.append(f"{USERS_SHEET.title} sheet missing required column: {column}")

        result = ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            has_users_sheet=users_sheet is not None,
            has_roles_sheet=roles_sheet is not None,
            has_files_sheet=files_sheet is not None,
        )
        if errors:
            logger.info("Spreadsheet %s failed validation: %s", spreadsheet_id, "; ".join(errors))
        return result


__all__ = ["SchemaService", "ValidationResult"]
