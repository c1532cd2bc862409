"""Compiled-in table definitions for the spreadsheet record store.

Two families of tables exist:

``BASE_SCHEMAS``
    The system tables provisioned by :mod:`sheetdb.setup_manager`.  Each is a
    :class:`Schema` whose columns carry their type and constraints; the type
    row (row 2) of the sheet is derived from them.

``REQUIRED_SHEETS``
    The account/file tables created through
    :meth:`sheetdb.schema_service.SchemaService.create_sheet_with_headers` and
    checked by structural validation.  These are described with plain header
    lists and column-definition mappings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

PRIVATE_PREFIX = "_"

COLUMN_TYPES: Tuple[str, ...] = (
    "string",
    "number",
    "datetime",
    "boolean",
    "array",
    "object",
    "json",
    "image",
    "email",
    "pointer",
)

# Order in which constraints are serialised into the type row.
CONSTRAINT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("required", "required"),
    ("unique", "unique"),
    ("pattern", "pattern"),
    ("min_length", "minLength"),
    ("max_length", "maxLength"),
    ("min", "min"),
    ("max", "max"),
    ("default", "default"),
)


@dataclass(frozen=True)
class Column:
    """One positional column of a sheet-backed table."""

    name: str
    type: str = "string"
    required: bool = False
    unique: bool = False
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    default: Any = None

    def __post_init__(self) -> None:
        if self.type not in COLUMN_TYPES:
            raise ValueError(f"Unsupported column type {self.type!r} for column {self.name!r}")

    @property
    def is_private(self) -> bool:
        return is_private_column(self.name)

    def constraints(self) -> Dict[str, Any]:
        """Return the present constraints keyed by their serialised names."""

        present: Dict[str, Any] = {}
        for attribute, key in CONSTRAINT_KEYS:
            value = getattr(self, attribute)
            if attribute in ("required", "unique"):
                if value:
                    present[key] = True
            elif attribute == "pattern":
                if value:
                    present[key] = value
            elif value is not None:
                present[key] = value
        return present


@dataclass(frozen=True)
class Schema:
    name: str
    columns: Tuple[Column, ...] = field(default_factory=tuple)

    @property
    def headers(self) -> List[str]:
        return [column.name for column in self.columns]


@dataclass(frozen=True)
class RequiredSheet:
    title: str
    headers: Tuple[str, ...]
    column_defs: Tuple[Dict[str, Any], ...]


def is_private_column(name: str) -> bool:
    return bool(name) and name.startswith(PRIVATE_PREFIX)


def _acl_columns() -> Tuple[Column, ...]:
    return (
        Column("public_read", "boolean"),
        Column("public_write", "boolean"),
        Column("role_read", "array"),
        Column("role_write", "array"),
        Column("user_read", "array"),
        Column("user_write", "array"),
    )


EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

USER_SCHEMA = Schema(
    "_User",
    (
        Column("id", "string", required=True, unique=True),
        Column("name", "string", required=True),
        Column("email", "string", required=True, unique=True, pattern=EMAIL_PATTERN),
        Column("given_name", "string"),
        Column("family_name", "string"),
        Column("nickname", "string"),
        Column("picture", "string"),
        Column("email_verified", "boolean"),
        Column("locale", "string"),
        Column("created_at", "datetime", required=True),
        Column("updated_at", "datetime", required=True),
    )
    + _acl_columns(),
)

SESSION_SCHEMA = Schema(
    "_Session",
    (
        Column("id", "string", required=True, unique=True),
        Column("user_id", "string", required=True),
        Column("token", "string", required=True),
        Column("expires_at", "datetime", required=True),
        Column("created_at", "datetime", required=True),
        Column("updated_at", "datetime", required=True),
    ),
)

CONFIG_SCHEMA = Schema(
    "_Config",
    (
        Column("id", "string", required=True, unique=True),
        Column("name", "string", required=True, unique=True),
        Column("value", "string", required=True),
        Column("created_at", "datetime", required=True),
        Column("updated_at", "datetime", required=True),
    )
    + _acl_columns(),
)

ROLE_SCHEMA = Schema(
    "_Role",
    (
        Column("name", "string", required=True, unique=True),
        Column("users", "array"),
        Column("roles", "array"),
        Column("created_at", "datetime", required=True),
        Column("updated_at", "datetime", required=True),
    )
    + _acl_columns(),
)

BASE_SCHEMAS: Tuple[Schema, ...] = (USER_SCHEMA, SESSION_SCHEMA, CONFIG_SCHEMA, ROLE_SCHEMA)

CONFIG_SHEET_NAME = CONFIG_SCHEMA.name
CONFIG_SEED_RANGE = "A3:K13"

DEFAULT_CONFIG_VALUES: Tuple[Tuple[str, str], ...] = (
    ("CREATE_SHEET_BY_API", "false"),
    ("CREATE_SHEET_USER", "[]"),
    ("CREATE_SHEET_ROLE", "[]"),
    ("MODIFY_COLUMNS_BY_API", "false"),
    ("MODIFY_SHEET_USER", "[]"),
    ("MODIFY_SHEET_ROLE", "[]"),
    ("ANONYMOUS_FILE_UPLOAD", "false"),
    ("MAX_FILE_SIZE", "10485760"),
    ("FILE_UPLOAD_PUBLIC", "true"),
    ("ALLOW_UPLOAD_EXTENSION", "image/*"),
    ("SESSION_EXPIRED_SECONDS", "3600"),
)


def default_config_rows(now: Optional[datetime] = None) -> List[List[str]]:
    """Return the seed rows written to an empty ``_Config`` sheet."""

    timestamp = (now or datetime.now(timezone.utc)).isoformat().replace("+00:00", "Z")
    rows: List[List[str]] = []
    for name, value in DEFAULT_CONFIG_VALUES:
        rows.append([name, name, value, timestamp, timestamp, "false", "false", "[]", "[]", "[]", "[]"])
    return rows


USERS_SHEET = RequiredSheet(
    title="_Users",
    headers=(
        "object_id",
        "username",
        "_password_hash",
        "email",
        "name",
        "status",
        "created_at",
    ),
    column_defs=(
        {"type": "string", "unique": True},
        {"type": "string", "unique": True, "required": True},
        {"type": "string", "required": True},
        {"type": "email", "unique": True},
        {"type": "string"},
        {"type": "string"},
        {"type": "datetime"},
    ),
)

ROLES_SHEET = RequiredSheet(
    title="_Roles",
    headers=("object_id", "name", "users", "created_at"),
    column_defs=(
        {"type": "string", "unique": True},
        {"type": "string", "unique": True, "required": True},
        {"type": "array"},
        {"type": "datetime"},
    ),
)

FILES_SHEET = RequiredSheet(
    title="_Files",
    headers=(
        "object_id",
        "original_name",
        "storage_provider",
        "storage_path",
        "content_type",
        "size_bytes",
        "owner_id",
        "public_read",
        "public_write",
        "users_read",
        "users_write",
        "roles_read",
        "roles_write",
        "created_at",
    ),
    column_defs=(
        {"type": "string", "unique": True},
        {"type": "string", "required": True},
        {"type": "string", "pattern": "^(r2|google_drive)$"},
        {"type": "string"},
        {"type": "string"},
        {"type": "number", "min": 0},
        {"type": "string"},
        {"type": "boolean"},
        {"type": "boolean"},
        {"type": "array"},
        {"type": "array"},
        {"type": "array"},
        {"type": "array"},
        {"type": "datetime"},
    ),
)

REQUIRED_SHEETS: Tuple[RequiredSheet, ...] = (USERS_SHEET, ROLES_SHEET, FILES_SHEET)


__all__ = [
    "BASE_SCHEMAS",
    "COLUMN_TYPES",
    "CONFIG_SCHEMA",
    "CONFIG_SEED_RANGE",
    "CONFIG_SHEET_NAME",
    "Column",
    "DEFAULT_CONFIG_VALUES",
    "PRIVATE_PREFIX",
    "REQUIRED_SHEETS",
    "RequiredSheet",
    "Schema",
    "default_config_rows",
    "is_private_column",
]
