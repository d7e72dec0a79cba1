from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Hashable

from flatten_pipeline.errors import MalformedPayloadError, ProviderFault, SchemaError, WriteError
from flatten_pipeline.ingest.aggregate import Aggregator
from flatten_pipeline.ingest.stream import CANCELLED, END_OF_STREAM, MalformedPayload, RecordStream
from flatten_pipeline.ingest.summary import RunStatus, RunSummary, RunTally
from flatten_pipeline.output.sink import OutputSink
from flatten_pipeline.parsing.schema import Schema, extract

log = logging.getLogger(__name__)

ProgressCallback = Callable[[RunSummary], None]


class RunMode(str, Enum):
    strict = "strict"       # any uncovered field error (or malformed payload) ends the run
    lenient = "lenient"     # errors become placeholders and are counted


class Flattener:
    """
    Drives one stream through a schema into a sink.

    Holds no state between runs, only the progress settings, so one instance may serve many runs.
    """

    def __init__(self, *, on_progress: ProgressCallback | None = None, progress_every: int = 1000) -> None:
        if progress_every < 1:
            raise ValueError(f"progress_every must be >= 1, got {progress_every}")
        self.on_progress = on_progress
        self.progress_every = progress_every

    def run(
        self,
        stream: RecordStream,
        schema: Schema,
        sink: OutputSink,
        mode: RunMode = RunMode.lenient,
        *,
        aggregator: Aggregator | None = None,
    ) -> RunSummary:
        """
        End-to-end flattening loop:
          - pull one record at a time until `END_OF_STREAM`,
          - extract it through `schema`,
                - strict: the first field error not covered by a default aborts, unwritten,
                - lenient: written with placeholders, errors tallied,
          - write it to `sink`, then hand it to `aggregator` (if any),
          - close `sink` and `stream` on every way out.

        Raises `SchemaError` up front, before any record is pulled, if `aggregator` names
        columns `schema` lacks. Otherwise returns a `RunSummary` on every path, including
        faults: `ProviderFault` and `WriteError` end the run with `status="failed"`
        instead of propagating.
        Will not raise on invalid data.
        """
        mode = RunMode(mode)
        if aggregator is not None:
            try:
                aggregator.check_columns(schema.columns)
            except SchemaError:
                # nothing was pulled or written, but both ends are already open
                try:
                    sink.close()
                finally:
                    stream.close()
                raise

        tally = RunTally()
        status: RunStatus = "succeeded"
        aborted_at: Hashable | None = None
        aborted_field: str | None = None
        fault: str | None = None

        try:
            while True:
                item = stream.next()

                if item is END_OF_STREAM:
                    break
                if item is CANCELLED:
                    status = "cancelled"
                    log.warning("run cancelled after %d records", tally.total)
                    break

                if isinstance(item, MalformedPayload):
                    if mode is RunMode.strict:
                        status, aborted_at = "aborted", item.record_id
                        log.warning("strict run aborted at record %r: malformed payload", item.record_id)
                        break
                    tally.skipped += 1
                    continue

                flat = extract(item, schema)
                tally.count(flat)

                if mode is RunMode.strict and flat.has_errors:
                    col, err = next(flat.errors())
                    status, aborted_at, aborted_field = "aborted", flat.record_id, col
                    log.warning("strict run aborted at record %r: %s: %s", flat.record_id, col, err.detail)
                    break

                if sink.write(flat) is CANCELLED:
                    status = "cancelled"
                    log.warning("run cancelled after %d records", tally.total)
                    break
                if aggregator is not None:
                    aggregator.observe(flat)

                if self.on_progress is not None and tally.total % self.progress_every == 0:
                    self.on_progress(tally.publish(status="running"))

        except MalformedPayloadError as e:
            # only a strict stream raises this
            status, aborted_at = "aborted", e.record_id
            log.warning("strict run aborted: %s", e)
        except (ProviderFault, WriteError) as e:
            status, fault = "failed", str(e)
            log.error("run failed after %d records: %s", tally.total, e)
        finally:
            try:
                sink.close()
            except WriteError as e:
                if fault is None:
                    status, fault = "failed", str(e)
            finally:
                stream.close()

        summary = tally.publish(status=status, aborted_at=aborted_at, aborted_field=aborted_field, fault=fault)
        log.info("run finished: %s", summary.render_one_line())
        return summary
