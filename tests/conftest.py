from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from flatten_pipeline.ingest.readers import RawRecord
from flatten_pipeline.parsing.schema import FieldMapping, Schema
from flatten_pipeline.parsing.types import Coercion


def _raw(record_id: Any, payload: Any) -> RawRecord:
    return RawRecord(record_id=record_id, payload=payload if isinstance(payload, (str, bytes)) else json.dumps(payload))


@pytest.fixture(scope="session")
def as_raw() -> Callable[[Any, Any], RawRecord]:
    """Builds a provider record holding `payload` as JSON text (strings are taken as already-encoded)."""
    return _raw


class RecordingDestination:
    """In-memory destination that remembers every line and how often it was closed."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.flushes = 0
        self.closes = 0

    def write_line(self, line: str) -> None:
        self.lines.append(line)

    def flush(self) -> None:
        self.flushes += 1

    def close(self) -> None:
        self.closes += 1


@pytest.fixture()
def destination() -> RecordingDestination:
    return RecordingDestination()


@pytest.fixture(scope="session")
def order_schema() -> Schema:
    """A small schema over order-shaped payloads, shared read-only by every test."""
    return Schema((
        FieldMapping("order_id", ("id",), Coercion.string),
        FieldMapping("city", ("customer", "address", "city"), Coercion.string, default="unknown"),
        FieldMapping("amount", ("total", "amount"), Coercion.number),
        FieldMapping("first_sku", ("items", 0, "sku"), Coercion.string),
    ))


def _order(i: int, *, amount: Any = 10, city: Any = "Oslo") -> dict[str, Any]:
    return {
        "id": f"o-{i}",
        "customer": {"address": {"city": city}},
        "total": {"amount": amount},
        "items": [{"sku": f"sku-{i}"}],
    }


@pytest.fixture(scope="session")
def make_order() -> Callable[..., dict[str, Any]]:
    """Builds an order-shaped payload matching `order_schema`."""
    return _order


@pytest.fixture()
def jsonl_file(tmp_path: Path) -> Iterator[Path]:
    """Three orders, a blank line and one broken line."""
    p = tmp_path / "orders.jsonl"
    lines = [json.dumps(_order(1)), "", json.dumps(_order(2, amount="12.50")), "{not json", json.dumps(_order(3))]
    p.write_text("\n".join(lines) + "\n", encoding="utf-8")
    yield p
