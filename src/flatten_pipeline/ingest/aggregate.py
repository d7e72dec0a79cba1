from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from flatten_pipeline.errors import SchemaError
from flatten_pipeline.parsing.types import FieldError, FieldValue, FlatRecord

GroupKey = tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class Stats:
    """Running statistics of one measure within one group."""
    count: int
    sum: Decimal
    min: Decimal
    max: Decimal


@dataclass(frozen=True, slots=True)
class GroupSummary:
    records: int                    # records observed in this group
    measures: dict[str, Stats]      # only measures that saw at least one number


def _as_number(o: Any) -> Decimal | None:
    """The numeric value of a field outcome, `None` for errors and non-numbers."""
    if not isinstance(o, FieldValue):
        return None
    v = o.value
    if isinstance(v, bool):
        return None
    if isinstance(v, Decimal):
        return v
    if isinstance(v, (int, float)):
        return Decimal(str(v))
    return None


class Aggregator:
    """
    Groups flat records by `group_by` columns and keeps count/sum/min/max per `measures` column.

    Failed fields never count as zero: they are left out of the numbers entirely
    (and contribute `None` to a group key). State is private to one run.
    """

    def __init__(self, *, group_by: Sequence[str], measures: Sequence[str]) -> None:
        self.group_by = tuple(group_by)
        self.measures = tuple(measures)
        self._records: dict[GroupKey, int] = {}
        self._stats: dict[GroupKey, dict[str, list[Any]]] = {}     # [count, sum, min, max]

    def check_columns(self, columns: Sequence[str]) -> None:
        """Raises `SchemaError` if a `group_by` or `measures` column is not among `columns`."""
        unknown = sorted({*self.group_by, *self.measures} - set(columns))
        if unknown:
            raise SchemaError(f"aggregator columns not in schema: {unknown}")

    def _key(self, record: FlatRecord) -> GroupKey:
        parts: list[Any] = []
        for col in self.group_by:
            o = record.outcome(col)
            parts.append(None if isinstance(o, FieldError) else o.value)
        return tuple(parts)

    def observe(self, record: FlatRecord) -> None:
        key = self._key(record)
        self._records[key] = self._records.get(key, 0) + 1
        group = self._stats.setdefault(key, {})
        for col in self.measures:
            n = _as_number(record.outcome(col))
            if n is None:
                continue
            acc = group.get(col)
            if acc is None:
                group[col] = [1, n, n, n]
                continue
            acc[0] += 1
            acc[1] += n
            if n < acc[2]:
                acc[2] = n
            if n > acc[3]:
                acc[3] = n

    def snapshot(self) -> dict[GroupKey, GroupSummary]:
        """A copy of the statistics so far, keyed by group."""
        return {
            key: GroupSummary(
                records=count,
                measures={
                    col: Stats(count=a[0], sum=a[1], min=a[2], max=a[3])
                    for col, a in self._stats.get(key, {}).items()
                },
            )
            for key, count in self._records.items()
        }
