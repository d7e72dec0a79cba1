from __future__ import annotations

import csv
import io
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from flatten_pipeline.errors import SinkClosedError, WriteError
from flatten_pipeline.ingest.stream import CANCELLED, CancelToken
from flatten_pipeline.output.sink import FileDestination, OutputSink, StreamDestination
from flatten_pipeline.parsing.types import FieldError, FieldErrorCode, FieldValue, FlatRecord


def _flat(*values: object, record_id: object = 1) -> FlatRecord:
    fields = []
    for i, v in enumerate(values):
        o = v if isinstance(v, FieldError) else FieldValue(v)
        fields.append((f"c{i}", o))
    return FlatRecord(record_id=record_id, fields=tuple(fields))


_MISSING = FieldError(FieldErrorCode.missing_path, "no key x")


def test_line_format_and_placeholder(destination) -> None:
    """Values in column order, errors as the placeholder, typed values spelled plainly."""
    sink = OutputSink(destination, delimiter="|", placeholder="<missing>")
    sink.write(_flat("a", Decimal("12.50"), True, date(2026, 2, 19), _MISSING, None))
    sink.close()

    assert destination.lines == ["a|12.50|true|2026-02-19|<missing>|\n"]


def test_values_with_delimiter_are_quoted(destination) -> None:
    sink = OutputSink(destination)
    sink.write(_flat("Oslo, Norway", 'say "hi"', "plain"))
    assert destination.lines == ['"Oslo, Norway","say ""hi""",plain\n']


def test_header_written_once(destination) -> None:
    sink = OutputSink(destination, delimiter="\t", header=True)
    sink.write(_flat("a", "b"))
    sink.write(_flat("c", "d", record_id=2))
    assert destination.lines == ["c0\tc1\n", "a\tb\n", "c\td\n"]
    assert sink.written == 2


def test_close_once_then_write_fails_fast(destination) -> None:
    """Close flushes and closes once, later closes are no-ops, writes raise."""
    sink = OutputSink(destination)
    sink.close()
    sink.close()

    assert destination.closes == 1
    assert destination.flushes == 1
    assert sink.closed
    with pytest.raises(SinkClosedError):
        sink.write(_flat("late"))


def test_write_after_cancel_returns_cancelled(destination) -> None:
    cancel = CancelToken()
    sink = OutputSink(destination, cancel=cancel)
    assert sink.write(_flat("a")) is None
    cancel.cancel()
    assert sink.write(_flat("b")) is CANCELLED
    assert len(destination.lines) == 1


def test_destination_failure_is_write_error() -> None:
    class Broken:
        def write_line(self, line: str) -> None:
            raise OSError("broken pipe")

        def flush(self) -> None: ...

        def close(self) -> None: ...

    with pytest.raises(WriteError, match="broken pipe"):
        OutputSink(Broken()).write(_flat("a"))


def test_delimiter_must_be_one_char(destination) -> None:
    with pytest.raises(ValueError):
        OutputSink(destination, delimiter="||")


def test_file_destination(tmp_path: Path) -> None:
    out = tmp_path / "out.csv"
    with OutputSink(FileDestination(out), header=True) as sink:
        sink.write(_flat("x", Decimal("1")))
    assert out.read_text(encoding="utf-8") == "c0,c1\nx,1\n"


def test_carriage_return_is_quoted(tmp_path: Path) -> None:
    """A bare `\\r` inside a value keeps the record on one line."""
    out = tmp_path / "out.csv"
    with OutputSink(FileDestination(out)) as sink:
        sink.write(_flat("a\rb", "1"))

    assert out.read_bytes() == b'"a\rb","1"\n'
    with out.open(newline="", encoding="utf-8") as f:
        assert next(csv.reader(f)) == ["a\rb", "1"]


def test_closed_stream_destination_is_write_error() -> None:
    """Writing into an already-closed text stream fails as WriteError, not a bare ValueError."""
    target = io.StringIO()
    target.close()
    with pytest.raises(WriteError, match="closed"):
        OutputSink(StreamDestination(target)).write(_flat("a"))
