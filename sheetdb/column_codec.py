"""Encoding of column types and constraints into the sheet's type row.

Row 2 of every table holds one cell per column.  A column without constraints
is stored as its bare type name (``"string"``); a column with constraints is
stored as a compact JSON object (``{"type":"string","unique":true}``).

Comparison is deliberately tolerant so that re-provisioning a sheet whose
type row was written by an older release (or by hand) does not trigger a
rewrite when the meaning is unchanged.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from sheetdb.schemas import COLUMN_TYPES, CONSTRAINT_KEYS, Column

logger = logging.getLogger(__name__)

_JSON_SEPARATORS = (",", ":")


def encode_definition(definition: Mapping[str, Any]) -> str:
    """Encode a plain column definition mapping such as ``{"type": "array"}``."""

    column_type = str(definition.get("type", "string"))
    extras = {key: value for key, value in definition.items() if key != "type"}
    if not extras:
        return column_type
    payload: Dict[str, Any] = {"type": column_type}
    payload.update(extras)
    return json.dumps(payload, separators=_JSON_SEPARATORS, ensure_ascii=False)


def encode_column(column: Column) -> str:
    constraints = column.constraints()
    if not constraints:
        return column.type
    payload: Dict[str, Any] = {"type": column.type}
    payload.update(constraints)
    return json.dumps(payload, separators=_JSON_SEPARATORS, ensure_ascii=False)


def parse_type_cell(cell: Any) -> Optional[Dict[str, Any]]:
    """Return the JSON object stored in ``cell`` or ``None`` for bare names."""

    if not isinstance(cell, str):
        return None
    text = cell.strip()
    if not text.startswith("{") or not text.endswith("}"):
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def decode_column(name: str, cell: Any) -> Column:
    """Rebuild a :class:`Column` from its header name and type-row cell."""

    parsed = parse_type_cell(cell)
    if parsed is None:
        column_type = str(cell or "").strip() or "string"
        parsed = {"type": column_type}

    column_type = str(parsed.get("type", "string"))
    if column_type not in COLUMN_TYPES:
        logger.debug("Column %s has unknown type %r; treating it as string", name, column_type)
        column_type = "string"

    kwargs: Dict[str, Any] = {}
    for attribute, key in CONSTRAINT_KEYS:
        if key in parsed:
            kwargs[attribute] = parsed[key]
    return Column(name=name, type=column_type, **kwargs)


def _deep_equals(left: Any, right: Any) -> bool:
    # bool is an int subclass; JSON true must never equal 1.
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        return all(_deep_equals(left[key], right[key]) for key in left)
    if isinstance(left, list) and isinstance(right, list):
        if len(left) != len(right):
            return False
        return all(_deep_equals(a, b) for a, b in zip(left, right))
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return False
    return left == right


def type_cells_equal(left: Any, right: Any) -> bool:
    """Return ``True`` when two type-row cells describe the same column."""

    left = left or ""
    right = right or ""
    if left == right:
        return True

    left_is_json = isinstance(left, str) and left.strip().startswith("{")
    right_is_json = isinstance(right, str) and right.strip().startswith("{")
    if not (left_is_json or right_is_json):
        return False

    left_parsed = parse_type_cell(left) if left_is_json else None
    right_parsed = parse_type_cell(right) if right_is_json else None

    if left_parsed is not None and right_parsed is not None:
        return _deep_equals(left_parsed, right_parsed)

    if (left_parsed is None) != (right_parsed is None):
        left_obj = left_parsed if left_parsed is not None else {"type": left}
        right_obj = right_parsed if right_parsed is not None else {"type": right}
        return len(left_obj) == 1 and len(right_obj) == 1 and left_obj.get("type") == right_obj.get("type")

    return False


def schema_rows_equal(left: Sequence[Any], right: Sequence[Any]) -> bool:
    if len(left) != len(right):
        return False
    return all(type_cells_equal(a, b) for a, b in zip(left, right))


__all__ = [
    "decode_column",
    "encode_column",
    "encode_definition",
    "parse_type_cell",
    "schema_rows_equal",
    "type_cells_equal",
]
