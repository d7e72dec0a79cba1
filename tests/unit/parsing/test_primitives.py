from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from flatten_pipeline.parsing.primitives import (
    ParseError,
    coerce_boolean,
    coerce_date,
    coerce_number,
    coerce_raw_json,
    coerce_string,
)
from flatten_pipeline.parsing.types import FieldErrorCode


@pytest.mark.parametrize("v", [5, 5.0, "5", "5.0", "5e0"])
def test_number_accepts_numbers_and_numeric_strings(v: object) -> None:
    """`5`, `5.0`, `"5"`, `"5.0"` are all numbers."""
    assert coerce_number(v, field="n") == 5


@pytest.mark.parametrize("v", ["abc", "", "NaN", "Infinity", " 7 ", "1_000", "\u0665", "+5", "05", "5\n", True, [1], {"a": 1}])
def test_number_rejects_non_numbers(v: object) -> None:
    """Non-numeric input is a type mismatch, never a silent zero."""
    with pytest.raises(ParseError) as e:
        coerce_number(v, field="n")
    assert e.value.code == FieldErrorCode.type_mismatch
    assert "n" in e.value.detail


def test_number_keeps_decimal_text() -> None:
    assert coerce_number(0.1, field="n") == Decimal("0.1")
    assert coerce_number("12.50", field="n") == Decimal("12.50")


def test_date_single_format() -> None:
    assert coerce_date("2026-02-19", field="d") == date(2026, 2, 19)


@pytest.mark.parametrize("v", ["02/19/2026", "2026-2-19", "20260219", "2026-02-19T10:00:00", "2026-02-30", 20260219])
def test_date_rejects_other_spellings(v: object) -> None:
    """Ambiguous or impossible dates -> type_mismatch."""
    with pytest.raises(ParseError) as e:
        coerce_date(v, field="d")
    assert e.value.code == FieldErrorCode.type_mismatch


@pytest.mark.parametrize("v, expected", [(True, True), ("yes", True), ("F", False), (0, False), ("1", True)])
def test_boolean_matches(v: object, expected: bool) -> None:
    assert coerce_boolean(v, field="b") is expected


@pytest.mark.parametrize("v", ["maybe", 2, 0.5])
def test_boolean_rejects(v: object) -> None:
    with pytest.raises(ParseError):
        coerce_boolean(v, field="b")


def test_string_renders_scalars_json_style() -> None:
    assert coerce_string("  keep spaces ", field="s") == "  keep spaces "
    assert coerce_string(False, field="s") == "false"
    assert coerce_string(3, field="s") == "3"
    with pytest.raises(ParseError):
        coerce_string({"a": 1}, field="s")


def test_raw_json_is_compact() -> None:
    assert coerce_raw_json({"a": [1, None, "é"]}, field="r") == '{"a":[1,null,"é"]}'
    assert coerce_raw_json(None, field="r") == "null"
