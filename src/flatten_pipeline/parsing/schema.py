from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

from flatten_pipeline.errors import SchemaError

from .navigator import Segment, navigate
from .primitives import ParseError, coerce
from .types import Coercion, ExtractionOutcome, FieldError, FieldErrorCode, FieldValue, FlatRecord, SourceRecord


class _NoDefault:
    """Marks a mapping without a default (`None` is a legitimate JSON default)."""
    _instance: "_NoDefault | None" = None

    def __new__(cls) -> "_NoDefault":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_DEFAULT"

    def __bool__(self) -> bool:
        return False


NO_DEFAULT: Any = _NoDefault()

# errors a default is allowed to stand in for
_DEFAULTABLE = frozenset({FieldErrorCode.missing_path, FieldErrorCode.null_encountered})


@dataclass(frozen=True, slots=True)
class FieldMapping:
    """Any given output column's configurable expectations."""
    output_column: str                          # name of this column in the flat output.
    source_path: tuple[Segment, ...]            # where to find the value in the payload.
    coercion: Coercion = Coercion.string        # how to type the value found there.
    default: Any = NO_DEFAULT                   # stands in for a missing or null value.
    _coerced_default: Any = field(default=NO_DEFAULT, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.output_column, str) or not self.output_column:
            raise SchemaError(f"output column must be a non-empty string, got {self.output_column!r}")
        # normalize, lists are accepted from callers
        object.__setattr__(self, "source_path", tuple(self.source_path))
        try:
            object.__setattr__(self, "coercion", Coercion(self.coercion))
        except ValueError:
            raise SchemaError(f"{self.output_column}: unknown coercion {self.coercion!r}") from None

        if not self.source_path:
            raise SchemaError(f"{self.output_column}: source path is empty")
        for seg in self.source_path:
            ok = isinstance(seg, str) or (isinstance(seg, int) and not isinstance(seg, bool) and seg >= 0)
            if not ok:
                raise SchemaError(f"{self.output_column}: invalid path segment {seg!r}")

        # a default is coerced once, here, so a bad default fails at load time and not mid-run
        if self.has_default:
            try:
                coerced = coerce(self.default, self.coercion, field=self.output_column)
            except ParseError as e:
                raise SchemaError(f"{self.output_column}: default does not coerce: {e.detail}") from None
            object.__setattr__(self, "_coerced_default", coerced)

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    def resolve(self, payload: Any) -> ExtractionOutcome:
        """Navigate, coerce, then fall back to the default where allowed."""
        found = navigate(payload, self.source_path, expect=self.coercion)

        if isinstance(found, FieldError):
            if self.has_default and found.code in _DEFAULTABLE:
                return FieldValue(self._coerced_default, defaulted=True)
            return found

        try:
            return FieldValue(coerce(found.value, self.coercion, field=self.output_column))
        except ParseError as e:
            return FieldError(e.code, e.detail, expected=e.expected, actual=e.actual)


@dataclass(frozen=True, slots=True)
class Schema:
    """
    An ordered, immutable collection of `FieldMapping`.

    Holds no per-run state: one instance can be shared by any number of runs and threads.
    """
    mappings: tuple[FieldMapping, ...]

    def __post_init__(self) -> None:
        ms = tuple(self.mappings)
        if not ms:
            raise SchemaError("schema has no field mappings")
        seen: set[str] = set()
        dupes: list[str] = []
        for m in ms:
            if m.output_column in seen:
                dupes.append(m.output_column)
            seen.add(m.output_column)
        if dupes:
            raise SchemaError(f"duplicate output columns: {sorted(set(dupes))}")
        object.__setattr__(self, "mappings", ms)

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(m.output_column for m in self.mappings)

    def __iter__(self) -> Iterator[FieldMapping]:
        return iter(self.mappings)

    def __len__(self) -> int:
        return len(self.mappings)


def extract(record: SourceRecord, schema: Schema | Sequence[FieldMapping]) -> FlatRecord:
    """
    Flatten one `SourceRecord` through `schema`.

    Output order is schema order with exactly one outcome per mapping.
    Every failure is returned as a `FieldError` in that field's slot, nothing is raised.
    """
    return FlatRecord(
        record_id=record.record_id,
        fields=tuple((m.output_column, m.resolve(record.payload)) for m in schema),
    )
