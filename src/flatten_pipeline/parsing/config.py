from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Sequence

from flatten_pipeline.errors import SchemaError

from .navigator import Segment, parse_path
from .schema import NO_DEFAULT, FieldMapping, Schema
from .types import Coercion


# keys an entry may carry, how they map to `FieldMapping` arguments
_ENTRY_ALIASES: dict[str, str] = {
    "outputColumn": "output_column",
    "output_column": "output_column",
    "sourcePath": "source_path",
    "source_path": "source_path",
    "coercion": "coercion",
    "default": "default",
}

_REQUIRED = ("output_column", "source_path")

# `RawJSON`, `raw_json` and `rawjson` all name the same coercion (compared without `_`/`-`, lowercased)
_COERCION_ALIASES: dict[str, Coercion] = {
    "string": Coercion.string,
    "str": Coercion.string,
    "number": Coercion.number,
    "numeric": Coercion.number,
    "boolean": Coercion.boolean,
    "bool": Coercion.boolean,
    "date": Coercion.date,
    "rawjson": Coercion.raw_json,
    "json": Coercion.raw_json,
}


def _source_path(v: Any, *, where: str) -> tuple[Segment, ...]:
    """Accepts either a list of segments or the dotted text syntax (`a.b[0]`)."""
    if isinstance(v, str):
        try:
            return parse_path(v)
        except ValueError as e:
            raise SchemaError(f"{where}: {e}") from None
    if isinstance(v, list):
        return tuple(v)
    raise SchemaError(f"{where}: sourcePath must be a string or a list, got {type(v).__name__}")


def mapping_from_entry(entry: Mapping[str, Any], *, index: int) -> FieldMapping:
    """
    Build one `FieldMapping` from a configuration entry.

    Unknown keys are rejected so a typo (`defualt`) never silently drops a setting.
    """
    where = f"entry #{index}"
    if not isinstance(entry, Mapping):
        raise SchemaError(f"{where}: expected an object, got {type(entry).__name__}")

    canon: dict[str, Any] = {}
    unknown: list[str] = []
    for k, v in entry.items():
        key = _ENTRY_ALIASES.get(str(k))
        if key is None:
            unknown.append(str(k))
            continue
        canon[key] = v
    if unknown:
        raise SchemaError(f"{where}: unknown keys: {sorted(unknown)}")

    missing = [k for k in _REQUIRED if k not in canon]
    if missing:
        raise SchemaError(f"{where}: missing required keys: {missing}")

    raw_coercion = canon.get("coercion", Coercion.string.value)
    coercion = _COERCION_ALIASES.get(str(raw_coercion).strip().lower().replace("_", "").replace("-", ""))
    if coercion is None:
        allowed = [c.value for c in Coercion]
        raise SchemaError(f"{where}: unknown coercion {raw_coercion!r} (expected one of {allowed})")

    return FieldMapping(
        output_column=canon["output_column"],
        source_path=_source_path(canon["source_path"], where=where),
        coercion=coercion,
        default=canon.get("default", NO_DEFAULT),
    )


def schema_from_config(entries: Sequence[Mapping[str, Any]]) -> Schema:
    """Build a `Schema` from a list of configuration entries (order is column order)."""
    if not isinstance(entries, list):
        raise SchemaError(f"schema configuration must be a list of entries, got {type(entries).__name__}")
    return Schema(tuple(mapping_from_entry(e, index=i) for i, e in enumerate(entries, start=1)))


def load_schema(path: Path) -> Schema:
    """
    Load a schema from a JSON file shaped like:

        [
          {"outputColumn": "customer_id", "sourcePath": "customer.id", "coercion": "Number"},
          {"outputColumn": "city", "sourcePath": ["customer", "address", "city"], "default": ""}
        ]
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaError(f"{path}: cannot read schema file: {e.strerror or e}") from e
    try:
        entries = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaError(f"{path}: invalid JSON: {e}") from None
    return schema_from_config(entries)
