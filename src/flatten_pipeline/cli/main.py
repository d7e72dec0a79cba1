from __future__ import annotations

import argparse
import logging
import signal
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Any, TextIO

from flatten_pipeline.cli.runner import RunOptions, run_export
from flatten_pipeline.db.connect import connect
from flatten_pipeline.db.source import stream_table_records
from flatten_pipeline.errors import SchemaError
from flatten_pipeline.ingest.aggregate import Aggregator, GroupSummary
from flatten_pipeline.ingest.flattener import RunMode
from flatten_pipeline.ingest.readers import stream_jsonl_records
from flatten_pipeline.ingest.stream import DEFAULT_WINDOW, CancelToken
from flatten_pipeline.output.sink import Destination, FileDestination, StreamDestination
from flatten_pipeline.parsing.config import load_schema
from flatten_pipeline.parsing.navigator import Segment



def _render_path(path: tuple[Segment, ...]) -> str:
    return "".join(f"[{s}]" if isinstance(s, int) else f".{s}" for s in path).lstrip(".")


def _render_groups(groups: dict[tuple[Any, ...], GroupSummary], out: TextIO) -> None:
    """One line per group: its key, record count, then each measure's statistics."""
    for key, g in groups.items():
        parts = [f"group={key!r} records={g.records}"]
        for col, s in g.measures.items():
            parts.append(f"{col}: count={s.count} sum={s.sum} min={s.min} max={s.max}")
        print(" ".join(parts), file=out)


def _cmd_run(args: argparse.Namespace) -> int:
    schema = load_schema(Path(args.schema))
    options = RunOptions(
        mode=RunMode(args.mode),
        window=args.window,
        delimiter=args.delimiter,
        placeholder=args.placeholder,
        header=args.header,
    )
    aggregator = None
    if args.group_by or args.measure:
        aggregator = Aggregator(group_by=args.group_by or [], measures=args.measure or [])

    # data to stdout -> the summary goes to stderr, so piping the export stays clean
    report: TextIO = sys.stdout if args.output else sys.stderr

    cancel = CancelToken()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel.cancel())

    try:
        with ExitStack() as stack:
            if args.input:
                provider = stream_jsonl_records(Path(args.input))
            else:
                conn = stack.enter_context(connect())
                provider = stream_table_records(
                    conn,
                    table=args.table,
                    id_column=args.id_column,
                    payload_column=args.payload_column,
                    where=args.where,
                )

            destination: Destination
            if args.output:
                destination = FileDestination(Path(args.output))
            else:
                destination = StreamDestination(sys.stdout)

            summary = run_export(provider, schema, destination, options=options, cancel=cancel, aggregator=aggregator)
    finally:
        signal.signal(signal.SIGINT, previous)

    print(summary.render_one_line(), file=report)
    if aggregator is not None:
        _render_groups(aggregator.snapshot(), report)
    return 0 if summary.status == "succeeded" else 1


def _cmd_check_schema(args: argparse.Namespace) -> int:
    schema = load_schema(Path(args.schema))
    for m in schema:
        default = f" default={m.default!r}" if m.has_default else ""
        print(f"{m.output_column}: {_render_path(m.source_path)} as {m.coercion.value}{default}")
    print(f"{len(schema)} columns OK")
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    A CLI for flattening JSON records into delimited lines.

    The `cmd` options are:
    ## run:
    Stream records from a JSONL file or a Postgres table through a schema.
    - `--schema` JSON list of `{"outputColumn", "sourcePath", "coercion", "default"}` entries,
    - `--input` a JSONL file, OR `--table` a table (with `--id-column`/`--payload-column`/`--where`),
    - `--output` where to write (stdout if omitted),
    - `--mode strict` stops at the first field error, `lenient` (default) keeps going.

    A summary line prints upon completion. Ctrl-C cancels the run cleanly.

    ### Example run usage:
    - `flatten run --schema schema.json --input events.jsonl --output events.csv --header`
    - `flatten run --schema schema.json --table public.events --mode strict --delimiter "|"`
    - `flatten run --schema schema.json --input events.jsonl --group-by country --measure amount`

    ## check-schema:
    Validate a schema file and list its columns.
    """
    p = argparse.ArgumentParser(prog="flatten")
    sub = p.add_subparsers(dest="cmd", required=True)

    # run cmd
    run = sub.add_parser("run", help="Flatten records into delimited lines.")
    run.add_argument("--schema", required=True, help="Path to the schema JSON file.")
    src = run.add_mutually_exclusive_group(required=True)
    src.add_argument("--input", help="Path to a JSONL input file.")
    src.add_argument("--table", help="Postgres table holding the records (DSN from FLATTEN_DSN).")
    run.add_argument("--id-column", default="id")
    run.add_argument("--payload-column", default="payload")
    run.add_argument("--where", default=None, help="Optional SQL filter for --table.")
    run.add_argument("--output", default=None, help="Output file (default: stdout).")
    run.add_argument("--mode", choices=[m.value for m in RunMode], default=RunMode.lenient.value)
    run.add_argument("--window", type=int, default=DEFAULT_WINDOW, help="Prefetch window size.")
    run.add_argument("--delimiter", default=",")
    run.add_argument("--placeholder", default="", help="Text written in place of a failed field.")
    run.add_argument("--header", action="store_true", help="Write a line of column names first.")
    run.add_argument("--group-by", nargs="+", default=None, help="Columns to group statistics by.")
    run.add_argument("--measure", nargs="+", default=None, help="Numeric columns to summarize.")

    # check-schema cmd
    check = sub.add_parser("check-schema", help="Validate a schema file.")
    check.add_argument("--schema", required=True)

    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = p.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        if args.cmd == "run":
            return _cmd_run(args)
        if args.cmd == "check-schema":
            return _cmd_check_schema(args)
    except SchemaError as e:
        print(f"invalid schema: {e}", file=sys.stderr)
        return 2

    return 2
