from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from .navigator import value_kind
from .types import Coercion, FieldErrorCode


@dataclass(frozen=True, slots=True)
class ParseError(Exception):
    """A terminal value that could not be coerced, with the details for its `FieldError`."""
    code: FieldErrorCode
    detail: str
    expected: str | None = None
    actual: str | None = None


def _mismatch(field: str, expected: Coercion, v: Any, why: str) -> ParseError:
    return ParseError(FieldErrorCode.type_mismatch, f"{field}: {why}: {v!r}", expected.value, value_kind(v))


## -- text / str fields

def coerce_string(v: Any, *, field: str) -> str:
    """
    Strings pass through untouched (no stripping, `""` is a value).
    Numbers and booleans are rendered the way JSON spells them.
    """
    if isinstance(v, str):
        return v
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return json.dumps(v)
    raise _mismatch(field, Coercion.string, v, "expected a scalar")


## -- numbers

# JSON number grammar, ASCII digits only: no `_` separators, padding, `+` or leading zeros
_NUMBER_RE = re.compile(r"-?(?:0|[1-9][0-9]*)(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?")


def coerce_number(v: Any, *, field: str) -> Decimal:
    """
    Parse JSON numbers and numeric strings into `Decimal`.

    `5`, `5.0`, `"5"` and `"5.0"` are all accepted; strings must be spelled as JSON numbers.
    Raises on booleans, non-numeric strings (never a silent zero), NaN and infinities.
    """
    if isinstance(v, bool):
        raise _mismatch(field, Coercion.number, v, "boolean is not a number")
    if isinstance(v, (int, float)):
        d = Decimal(str(v))     # str() first so 0.1 stays 0.1
    elif isinstance(v, str):
        if not _NUMBER_RE.fullmatch(v):
            raise _mismatch(field, Coercion.number, v, "invalid number")
        d = Decimal(v)
    else:
        raise _mismatch(field, Coercion.number, v, "expected a number")

    if not d.is_finite():
        raise _mismatch(field, Coercion.number, v, "number is not finite")
    return d


## -- booleans

_TRUE = frozenset({"1", "true", "t", "yes", "y"})
_FALSE = frozenset({"0", "false", "f", "no", "n"})


def coerce_boolean(v: Any, *, field: str) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        if v in (0, 1):
            return bool(v)
        raise _mismatch(field, Coercion.boolean, v, "expected 0/1")

    if isinstance(v, str):
        s = v.strip().lower()
        # the allowed bool matches
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
    raise _mismatch(field, Coercion.boolean, v, "invalid boolean (expected true/false, yes/no or 0/1)")


## -- dates

# the one accepted format; `date.fromisoformat` alone would also take `20260219` and week dates
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def coerce_date(v: Any, *, field: str) -> date:
    """Parse `YYYY-MM-DD`. Every other spelling (`02/19/2026`, `2026-2-19`, timestamps) raises."""
    if not isinstance(v, str) or not _DATE_RE.match(v):
        raise _mismatch(field, Coercion.date, v, "invalid date (expected YYYY-MM-DD)")
    try:
        return date.fromisoformat(v)
    except ValueError:
        # right shape, impossible calendar date (e.g. 2026-02-30)
        raise _mismatch(field, Coercion.date, v, "invalid date (expected YYYY-MM-DD)")


## -- raw json

def coerce_raw_json(v: Any, *, field: str) -> str:
    """Compact JSON text of any decoded value, `null` included."""
    try:
        return json.dumps(v, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError):
        raise _mismatch(field, Coercion.raw_json, v, "value is not JSON serializable")


COERCERS: dict[Coercion, Callable[..., Any]] = {
    Coercion.string: coerce_string,
    Coercion.number: coerce_number,
    Coercion.boolean: coerce_boolean,
    Coercion.date: coerce_date,
    Coercion.raw_json: coerce_raw_json,
}


def coerce(v: Any, coercion: Coercion, *, field: str) -> Any:
    """Apply `coercion` to `v`. Raises `ParseError` on failure."""
    return COERCERS[coercion](v, field=field)
