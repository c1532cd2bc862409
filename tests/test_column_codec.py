from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetdb.column_codec import (
    decode_column,
    encode_column,
    encode_definition,
    schema_rows_equal,
    type_cells_equal,
)
from sheetdb.schemas import Column, USER_SCHEMA


def test_column_without_constraints_encodes_as_bare_type() -> None:
    assert encode_column(Column("nickname", "string")) == "string"
    assert encode_column(Column("email_verified", "boolean")) == "boolean"


def test_constraints_are_written_in_canonical_order() -> None:
    column = Column(
        "email",
        "string",
        default="x@example.com",
        max_length=120,
        pattern=r"^.+@.+$",
        unique=True,
        required=True,
        min_length=3,
    )

    encoded = encode_column(column)

    assert list(json.loads(encoded)) == ["type", "required", "unique", "pattern", "minLength", "maxLength", "default"]
    assert " " not in encoded.replace("x@example.com", "")


def test_false_flags_and_missing_values_are_omitted() -> None:
    encoded = encode_column(Column("size", "number", min=0))

    assert json.loads(encoded) == {"type": "number", "min": 0}


def test_encode_definition_matches_column_encoding() -> None:
    assert encode_definition({"type": "array"}) == "array"
    assert json.loads(encode_definition({"type": "string", "unique": True})) == {"type": "string", "unique": True}


def test_decode_round_trips_user_schema() -> None:
    for column in USER_SCHEMA.columns:
        assert decode_column(column.name, encode_column(column)) == column


@pytest.mark.parametrize("cell", ["", None, "mystery", '{"type":"unknown"}'])
def test_unknown_or_blank_cells_decode_to_string(cell) -> None:
    assert decode_column("notes", cell).type == "string"


def test_type_cells_equal_rules() -> None:
    assert type_cells_equal("string", "string")
    assert type_cells_equal("string", '{"type":"string"}')
    assert type_cells_equal('{"type": "string"}', "string")
    assert type_cells_equal('{"type":"string","unique":true}', '{"unique": true, "type": "string"}')
    assert type_cells_equal(None, "")

    assert not type_cells_equal("string", "number")
    assert not type_cells_equal("string", '{"type":"string","unique":true}')
    assert not type_cells_equal('{"type":"number","min":1}', '{"type":"number","min":true}')
    assert not type_cells_equal("{not json", "string")


def test_schema_rows_of_different_length_are_unequal() -> None:
    assert schema_rows_equal(["string", "number"], ['{"type":"string"}', "number"])
    assert not schema_rows_equal(["string"], ["string", "number"])
