from __future__ import annotations

import logging
from typing import Iterator, Optional
from uuid import uuid4

from psycopg import Connection, sql

from flatten_pipeline.ingest.readers import RawRecord

log = logging.getLogger(__name__)

DEFAULT_ITERSIZE = 500        # config: rows fetched per round trip by the server-side cursor.


def build_select(
    *,
    table: str,
    id_column: str = "id",
    payload_column: str = "payload",
    where: Optional[str] = None,
) -> sql.Composed:
    """
    Compose `SELECT id, payload::text FROM table [WHERE ...] ORDER BY id`.

    Table/column identifiers are quoted with `sql.Identifier`, `table` may be schema-qualified
    (`public.events`). `where` is caller-supplied SQL and is used verbatim.
    The payload is cast to text so the stream decodes it (jsonb would arrive pre-decoded).
    """
    query = sql.SQL("SELECT {id}, {payload}::text FROM {tbl}").format(
        id=sql.Identifier(id_column),
        payload=sql.Identifier(payload_column),
        tbl=sql.Identifier(*table.split(".")),
    )
    if where:
        query = query + sql.SQL(" WHERE ") + sql.SQL(where)
    return query + sql.SQL(" ORDER BY {id}").format(id=sql.Identifier(id_column))


def stream_table_records(
    conn: Connection,
    *,
    table: str,
    id_column: str = "id",
    payload_column: str = "payload",
    where: Optional[str] = None,
    itersize: int = DEFAULT_ITERSIZE,
) -> Iterator[RawRecord]:
    """
    Yields `RawRecord(id, payload_text)` from a table, never holding the full result set.

    Uses a named (server-side) cursor, rows are pulled `itersize` at a time.
    A `NULL` payload is passed on as the text `null`.
    Any `psycopg.Error` propagates, the stream turns it into a provider fault.
    """
    query = build_select(table=table, id_column=id_column, payload_column=payload_column, where=where)
    name = f"flatten_{uuid4().hex[:12]}"

    with conn.cursor(name=name) as cur:
        cur.itersize = itersize
        cur.execute(query)
        log.debug("server-side cursor %s opened on %s", name, table)
        for record_id, payload in cur:
            yield RawRecord(record_id=record_id, payload="null" if payload is None else payload)
