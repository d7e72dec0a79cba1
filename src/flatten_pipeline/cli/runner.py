from __future__ import annotations

from dataclasses import dataclass

from flatten_pipeline.ingest.aggregate import Aggregator
from flatten_pipeline.ingest.flattener import Flattener, ProgressCallback, RunMode
from flatten_pipeline.ingest.readers import Provider
from flatten_pipeline.ingest.stream import DEFAULT_WINDOW, CancelToken, JsonDecoder, RecordStream
from flatten_pipeline.ingest.summary import RunSummary
from flatten_pipeline.output.sink import Destination, OutputSink
from flatten_pipeline.parsing.schema import Schema

# one decoder for every run: it holds no state
DECODER = JsonDecoder()


@dataclass(frozen=True)
class RunOptions:
    """The knobs of one run."""
    mode: RunMode = RunMode.lenient
    window: int = DEFAULT_WINDOW        # prefetch window of the record stream
    delimiter: str = ","
    placeholder: str = ""               # how a failed field is spelled in the output
    header: bool = False                # emit a line of column names first
    progress_every: int = 1000


def run_export(
    provider: Provider,
    schema: Schema,
    destination: Destination,
    *,
    options: RunOptions = RunOptions(),
    cancel: CancelToken | None = None,
    aggregator: Aggregator | None = None,
    on_progress: ProgressCallback | None = None,
) -> RunSummary:
    """
    Wire a provider, a schema and a destination into one flattening run.

    The same `cancel` token reaches both blocking points (stream and sink).
    `destination` is closed when the run ends, whatever the outcome.
    """
    cancel = cancel or CancelToken()

    try:
        mode = RunMode(options.mode)
        sink = OutputSink(
            destination,
            delimiter=options.delimiter,
            placeholder=options.placeholder,
            header=options.header,
            cancel=cancel,
        )
        stream = RecordStream(
            provider,
            window=options.window,
            decoder=DECODER,
            strict=mode is RunMode.strict,
            cancel=cancel,
        )
        flattener = Flattener(on_progress=on_progress, progress_every=options.progress_every)
    except ValueError:
        # bad options: nothing ran, but the destination is already open
        destination.close()
        raise
    return flattener.run(stream, schema, sink, mode, aggregator=aggregator)
