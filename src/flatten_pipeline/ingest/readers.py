from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Hashable, Iterable, Iterator, Union


@dataclass(frozen=True, slots=True)
class RawRecord:
    """One undecoded record handed over by a provider."""
    record_id: Hashable
    payload: Union[bytes, str]

    @property
    def raw_size(self) -> int:
        """Byte count of the payload (UTF-8 for text payloads)."""
        if isinstance(self.payload, bytes):
            return len(self.payload)
        return len(self.payload.encode("utf-8"))


# Anything iterable over `RawRecord`. Exceptions raised while iterating are provider faults.
Provider = Iterable[RawRecord]


def stream_jsonl_records(path: Path) -> Iterator[RawRecord]:
    """
    Yields one `RawRecord` per non-blank JSONL line, without decoding it.

    `record_id` is the 1-based physical line number (blank lines skipped but still counted
    by enumerate, so a stable pointer into the file).
    """
    with path.open("rb") as f:
        for i, line in enumerate(f, start=1):
            s = line.strip()
            if not s:
                continue
            yield RawRecord(record_id=i, payload=s)
