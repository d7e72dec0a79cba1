from __future__ import annotations

from typing import Hashable


class FlattenError(Exception):
    """Base for every exception the pipeline raises on purpose."""


class SchemaError(FlattenError):
    """A schema (or its configuration source) is invalid."""


class ProviderFault(FlattenError):
    """The record provider failed (connection loss, I/O error, ...). Ends the stream."""


class MalformedPayloadError(FlattenError):
    """A record's payload bytes are not valid JSON, raised when the stream is strict."""

    def __init__(self, record_id: Hashable, detail: str) -> None:
        super().__init__(f"record {record_id!r}: malformed payload: {detail}")
        self.record_id = record_id
        self.detail = detail


class WriteError(FlattenError):
    """The output destination failed to accept a line."""


class SinkClosedError(FlattenError, RuntimeError):
    """A sink was written to after `close()`. Always a bug in the caller."""
