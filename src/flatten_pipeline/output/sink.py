from __future__ import annotations

import csv
import io
import logging
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol, TextIO

from flatten_pipeline.errors import SinkClosedError, WriteError
from flatten_pipeline.ingest.stream import CANCELLED, CancelToken, StreamSignal
from flatten_pipeline.parsing.types import FieldError, FlatRecord

log = logging.getLogger(__name__)


## -- Protocols: destinations a sink can write into

class Destination(Protocol):
    """Accepts whole lines of text. Knows nothing of records or columns."""
    def write_line(self, line: str) -> None: ...
    def flush(self) -> None: ...
    def close(self) -> None: ...


class FileDestination:
    """Writes lines into a file, created (or truncated) on open."""

    def __init__(self, path: Path, *, encoding: str = "utf-8") -> None:
        self.path = path
        self._f: TextIO = path.open("w", encoding=encoding, newline="")

    def write_line(self, line: str) -> None:
        self._f.write(line)

    def flush(self) -> None:
        self._f.flush()

    def close(self) -> None:
        self._f.close()


class StreamDestination:
    """Writes lines into an already-open text stream (e.g. `sys.stdout`) and leaves it open."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def write_line(self, line: str) -> None:
        self._stream.write(line)

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self.flush()


def render_value(v: Any) -> str:
    """How one coerced value is spelled in an output line."""
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, date):
        return v.isoformat()
    return str(v)


class OutputSink:
    """
    Serializes `FlatRecord`s as delimited lines into a `Destination`.

    - columns keep the record's (schema) order,
    - failed fields are spelled as `placeholder`,
    - values holding the delimiter, quotes or newlines are quoted `csv`-style.

    `close()` flushes and closes the destination once; writing afterwards raises `SinkClosedError`.
    """

    def __init__(
        self,
        destination: Destination,
        *,
        delimiter: str = ",",
        placeholder: str = "",
        header: bool = False,
        cancel: CancelToken | None = None,
    ) -> None:
        if len(delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {delimiter!r}")
        self.delimiter = delimiter
        self.placeholder = placeholder
        self.header = header
        self.written = 0
        self._destination = destination
        self._cancel = cancel
        self._closed = False
        self._header_done = False

    @property
    def closed(self) -> bool:
        return self._closed

    def format_line(self, cells: list[str]) -> str:
        # QUOTE_MINIMAL only checks the `\n` terminator, a bare `\r` would still split the line
        quoting = csv.QUOTE_ALL if any("\r" in c for c in cells) else csv.QUOTE_MINIMAL
        buf = io.StringIO()
        csv.writer(buf, delimiter=self.delimiter, lineterminator="\n", quoting=quoting).writerow(cells)
        return buf.getvalue()

    def render(self, record: FlatRecord) -> str:
        """The line `write` would emit for `record`."""
        cells = [
            self.placeholder if isinstance(o, FieldError) else render_value(o.value)
            for _, o in record.fields
        ]
        return self.format_line(cells)

    def _emit(self, line: str) -> None:
        try:
            self._destination.write_line(line)
        except (OSError, ValueError) as e:     # ValueError: I/O on a closed stream
            raise WriteError(f"destination write failed: {e}") from e

    def write(self, record: FlatRecord) -> StreamSignal | None:
        """
        Write one record. Returns `CANCELLED` (writing nothing) once the run is cancelled.
        Raises `WriteError` when the destination fails.
        """
        if self._closed:
            raise SinkClosedError(f"write of record {record.record_id!r} after close")
        if self._cancel is not None and self._cancel.cancelled:
            return CANCELLED

        if self.header and not self._header_done:
            self._emit(self.format_line(list(record.columns)))
            self._header_done = True
        self._emit(self.render(record))
        self.written += 1
        return None

    def close(self) -> None:
        """Flush and release the destination. Only the first call does anything."""
        if self._closed:
            return
        self._closed = True
        try:
            self._destination.flush()
        except (OSError, ValueError) as e:
            log.error("flush on close failed: %s", e)
            raise WriteError(f"destination flush failed: {e}") from e
        finally:
            self._destination.close()
        log.debug("sink closed after %d records", self.written)

    def __enter__(self) -> "OutputSink":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
