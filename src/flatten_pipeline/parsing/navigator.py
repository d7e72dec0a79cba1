from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .types import Coercion, ExtractionOutcome, FieldError, FieldErrorCode, FieldValue

Segment = str | int


def value_kind(v: Any) -> str:
    """Names the JSON kind of a decoded value."""
    if v is None:
        return "null"
    if isinstance(v, bool):     # before int: `bool` subclasses `int`
        return "boolean"
    if isinstance(v, (int, float)):
        return "number"
    if isinstance(v, str):
        return "string"
    if isinstance(v, Mapping):
        return "object"
    if isinstance(v, Sequence):
        return "array"
    return type(v).__name__


# terminal kinds each coercion is willing to look at
_ACCEPTED_KINDS: dict[Coercion, frozenset[str]] = {
    Coercion.string: frozenset({"string", "number", "boolean"}),
    Coercion.number: frozenset({"number", "string"}),
    Coercion.boolean: frozenset({"boolean", "number", "string"}),
    Coercion.date: frozenset({"string"}),
}


def _describe(path: Sequence[Segment], upto: int) -> str:
    """Renders `path[:upto]` the way `parse_path` reads it."""
    out = ""
    for seg in path[:upto]:
        if isinstance(seg, int):
            out += f"[{seg}]"
        else:
            key = seg.replace("\\", "\\\\").replace(".", "\\.")
            out += key if not out else f".{key}"
    return out or "(root)"


def navigate(value: Any, path: Sequence[Segment], expect: Coercion | None = None) -> ExtractionOutcome:
    """
    Resolve `path` inside `value`.

    Walks the segments left to right without recursion:
    - a `str` segment needs a mapping, an `int` segment needs a sequence (`type_mismatch` otherwise),
    - an absent key or out-of-range index is `missing_path`,
    - a `null` met before the path is exhausted is `null_encountered`.

    With `expect`, the terminal value is also checked against the coercion's accepted kinds.
    A terminal `null` is `null_encountered` unless `expect` is `Coercion.raw_json`.

    Never mutates `value`, never raises for data-shaped problems.
    """
    cur = value
    for i, seg in enumerate(path):
        if cur is None:
            return FieldError(
                FieldErrorCode.null_encountered,
                f"null at {_describe(path, i)}",
                expected="object" if isinstance(seg, str) else "array",
                actual="null",
            )

        if isinstance(seg, str):
            if not isinstance(cur, Mapping):
                return FieldError(
                    FieldErrorCode.type_mismatch,
                    f"expected object at {_describe(path, i)}, got {value_kind(cur)}",
                    expected="object",
                    actual=value_kind(cur),
                )
            if seg not in cur:
                return FieldError(FieldErrorCode.missing_path, f"no key {_describe(path, i + 1)}")
            cur = cur[seg]
            continue

        # int segment (`bool` rejected, it is not an index)
        if isinstance(seg, bool) or not isinstance(seg, int):
            raise TypeError(f"path segment must be str or int, got {type(seg).__name__}")
        if isinstance(cur, (str, bytes)) or not isinstance(cur, Sequence):
            return FieldError(
                FieldErrorCode.type_mismatch,
                f"expected array at {_describe(path, i)}, got {value_kind(cur)}",
                expected="array",
                actual=value_kind(cur),
            )
        if seg < 0 or seg >= len(cur):
            return FieldError(FieldErrorCode.missing_path, f"no index {_describe(path, i + 1)} (length {len(cur)})")
        cur = cur[seg]

    if expect is None or expect is Coercion.raw_json:
        return FieldValue(cur)

    kind = value_kind(cur)
    if cur is None:
        return FieldError(FieldErrorCode.null_encountered, f"null at {_describe(path, len(path))}", expected=expect.value, actual="null")
    if kind not in _ACCEPTED_KINDS[expect]:
        return FieldError(
            FieldErrorCode.type_mismatch,
            f"{_describe(path, len(path))}: cannot coerce {kind} to {expect.value}",
            expected=expect.value,
            actual=kind,
        )
    return FieldValue(cur)


def parse_path(text: str) -> tuple[Segment, ...]:
    """
    Split the textual path syntax into segments.

    - `a.b.c` -> `("a", "b", "c")`
    - `items[0].sku` -> `("items", 0, "sku")`
    - `\\.` keeps a literal dot inside a key: `model\\.v1.score` -> `("model.v1", "score")`

    Raises `ValueError` on empty segments or malformed brackets.
    """
    segments: list[Segment] = []
    buf: list[str] = []
    pending_key = True      # a key is expected (start, or right after a dot)
    i = 0

    def flush_key() -> None:
        if not buf:
            raise ValueError(f"empty key segment in path {text!r}")
        segments.append("".join(buf))
        buf.clear()

    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            buf.append(text[i + 1])
            i += 2
            continue
        if ch == ".":
            if buf or pending_key:
                flush_key()
            pending_key = True
            i += 1
            continue
        if ch == "[":
            if buf:
                flush_key()
            end = text.find("]", i)
            if end == -1:
                raise ValueError(f"unclosed '[' in path {text!r}")
            idx = text[i + 1:end].strip()
            if not idx.isdigit():
                raise ValueError(f"index must be a non-negative integer in path {text!r}, got {idx!r}")
            segments.append(int(idx))
            pending_key = False
            i = end + 1
            continue
        buf.append(ch)
        i += 1

    if buf or pending_key:
        flush_key()
    return tuple(segments)
