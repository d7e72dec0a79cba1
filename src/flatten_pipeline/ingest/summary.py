from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Hashable, Literal, Mapping

from flatten_pipeline.parsing.types import FieldErrorCode, FlatRecord

RunStatus = Literal["running", "succeeded", "aborted", "cancelled", "failed"]


@dataclass(frozen=True)
class RunSummary:
    """Everything a run reports back to its caller."""
    total_records: int              # records flattened (malformed payloads excluded)
    successful_records: int         # records with no field-level error
    records_with_errors: int        # records emitted with at least one error marker
    skipped_records: int            # malformed payloads skipped in lenient mode
    field_error_counts: Mapping[str, Mapping[FieldErrorCode, int]]   # column -> code -> count
    status: RunStatus = "succeeded"
    aborted_at: Hashable | None = None      # record id a strict run stopped at
    aborted_field: str | None = None        # column that stopped it (None for a malformed payload)
    fault: str | None = None                # provider / destination failure, if any

    @property
    def field_errors(self) -> int:
        """Total field-level errors across all columns."""
        return sum(sum(codes.values()) for codes in self.field_error_counts.values())

    def render_one_line(self) -> str:
        """How the summary is formatted for the terminal."""
        line = (
            f"status={self.status} total={self.total_records} ok={self.successful_records} "
            f"with_errors={self.records_with_errors} skipped={self.skipped_records} "
            f"field_errors={self.field_errors}"
        )
        if self.aborted_at is not None:
            line += f" aborted_at={self.aborted_at}"
            if self.aborted_field is not None:
                line += f" field={self.aborted_field}"
        if self.fault is not None:
            line += f" fault={self.fault!r}"
        return line


@dataclass
class RunTally:
    """The mutable counters behind a `RunSummary`. Private to one run, never shared."""
    total: int = 0
    successful: int = 0
    with_errors: int = 0
    skipped: int = 0
    field_errors: dict[str, dict[FieldErrorCode, int]] = field(default_factory=dict)

    def count(self, flat: FlatRecord) -> None:
        """Tallies one flattened record and each of its field errors."""
        self.total += 1
        failed = False
        for col, err in flat.errors():
            failed = True
            codes = self.field_errors.setdefault(col, {})
            codes[err.code] = codes.get(err.code, 0) + 1
        if failed:
            self.with_errors += 1
        else:
            self.successful += 1

    def publish(
        self,
        *,
        status: RunStatus,
        aborted_at: Hashable | None = None,
        aborted_field: str | None = None,
        fault: str | None = None,
    ) -> RunSummary:
        """A frozen copy of the current counts. Later tallying does not show through."""
        counts = {col: MappingProxyType(dict(codes)) for col, codes in self.field_errors.items()}
        return RunSummary(
            total_records=self.total,
            successful_records=self.successful,
            records_with_errors=self.with_errors,
            skipped_records=self.skipped,
            field_error_counts=MappingProxyType(counts),
            status=status,
            aborted_at=aborted_at,
            aborted_field=aborted_field,
            fault=fault,
        )
