from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Hashable, Iterator, Union


class Coercion(str, Enum):
    """Typed coercions a field's terminal value goes through."""
    string = "string"
    number = "number"
    boolean = "boolean"
    date = "date"
    raw_json = "raw_json"


class FieldErrorCode(str, Enum):
    """Typed field-level failure classifications."""
    missing_path = "missing_path"           # absent key or index out of range
    null_encountered = "null_encountered"   # present, but `null`
    type_mismatch = "type_mismatch"         # wrong kind for the segment or coercion


@dataclass(frozen=True, slots=True)
class FieldValue:
    """A field that resolved (or fell back to its default)."""
    value: Any
    defaulted: bool = False


@dataclass(frozen=True, slots=True)
class FieldError:
    """A field that failed, carried as data instead of raised."""
    code: FieldErrorCode
    detail: str
    expected: str | None = None     # kind the path or coercion wanted
    actual: str | None = None       # kind actually found


ExtractionOutcome = Union[FieldValue, FieldError]


@dataclass(frozen=True, slots=True)
class SourceRecord:
    """One decoded record as produced by a `RecordStream`."""
    record_id: Hashable
    payload: Any        # the decoded semi-structured value
    raw_size: int       # byte count of the undecoded payload


@dataclass(frozen=True, slots=True)
class FlatRecord:
    """
    The flattened form of one `SourceRecord`.

    `fields` keeps schema order, one `(output_column, outcome)` pair per mapping.
    """
    record_id: Hashable
    fields: tuple[tuple[str, ExtractionOutcome], ...]

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(col for col, _ in self.fields)

    @property
    def has_errors(self) -> bool:
        return any(isinstance(o, FieldError) for _, o in self.fields)

    def errors(self) -> Iterator[tuple[str, FieldError]]:
        """Yields `(output_column, FieldError)` for every failed field, in order."""
        for col, o in self.fields:
            if isinstance(o, FieldError):
                yield col, o

    def outcome(self, column: str) -> ExtractionOutcome:
        for col, o in self.fields:
            if col == column:
                return o
        raise KeyError(column)

    def value(self, column: str) -> Any:
        """The coerced value of `column`. Raises `ValueError` if that field failed."""
        o = self.outcome(column)
        if isinstance(o, FieldError):
            raise ValueError(f"{column}: {o.code.value} ({o.detail})")
        return o.value
