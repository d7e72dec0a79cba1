from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Hashable, Iterator, Union

from flatten_pipeline.errors import MalformedPayloadError, ProviderFault
from flatten_pipeline.ingest.readers import Provider, RawRecord
from flatten_pipeline.parsing.types import SourceRecord

log = logging.getLogger(__name__)

DEFAULT_WINDOW = 64         # config: records prefetched ahead of the consumer.
POLL_INTERVAL_S = 0.05      # how often a blocked call re-checks for cancellation.


class StreamSignal(Enum):
    """Non-record results of the blocking calls."""
    end_of_stream = "end_of_stream"
    cancelled = "cancelled"


END_OF_STREAM = StreamSignal.end_of_stream
CANCELLED = StreamSignal.cancelled


class CancelToken:
    """A cancellation signal shared between the caller and the blocking calls of one run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Block up to `timeout` seconds, returns `True` once cancelled."""
        return self._event.wait(timeout)


@dataclass(frozen=True, slots=True)
class MalformedPayload:
    """A record whose payload did not decode, skipped by a lenient stream."""
    record_id: Hashable
    detail: str
    raw_size: int


def _reject_constant(c: str) -> Any:
    """`NaN`, `Infinity` and `-Infinity` are not JSON, whatever `json.loads` tolerates."""
    raise ValueError(f"invalid JSON constant {c}")


@dataclass(frozen=True)
class JsonDecoder:
    """
    Stateless payload decoder: safe to construct once and share across concurrent streams.

    Duplicate keys keep the last value, as `json.loads` does.
    """
    encoding: str = "utf-8"

    def decode(self, payload: Union[bytes, str]) -> Any:
        if isinstance(payload, bytes):
            payload = payload.decode(self.encoding)
        return json.loads(payload, parse_constant=_reject_constant)


@dataclass(frozen=True, slots=True)
class _Fault:
    error: BaseException


StreamResult = Union[SourceRecord, MalformedPayload, StreamSignal]


class RecordStream:
    """
    A forward-only, single-pass cursor over a provider.

    A producer thread pulls and decodes records into a bounded queue of `window` slots, so at
    most about `window` decoded records exist at once no matter how many the provider holds.

    `next()` returns a `SourceRecord`, a `MalformedPayload` (lenient only), `END_OF_STREAM`,
    or `CANCELLED`. Provider failures raise `ProviderFault`; in strict mode a malformed
    payload raises `MalformedPayloadError`. Both end the stream.
    """

    def __init__(
        self,
        provider: Provider,
        *,
        window: int = DEFAULT_WINDOW,
        decoder: JsonDecoder | None = None,
        strict: bool = False,
        cancel: CancelToken | None = None,
    ) -> None:
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        self.window = window
        self.strict = strict
        self._provider = provider
        self._decoder = decoder or JsonDecoder()
        self._cancel = cancel or CancelToken()
        self._stop = threading.Event()
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=window)
        self._thread: threading.Thread | None = None
        self._finished: StreamSignal | _Fault | None = None

        # instrumentation: decoded records currently held by the stream, and the most ever held
        self._lock = threading.Lock()
        self._buffered = 0
        self.peak_buffered = 0

    ## -- producer side

    def _hold(self) -> None:
        with self._lock:
            self._buffered += 1
            if self._buffered > self.peak_buffered:
                self.peak_buffered = self._buffered

    def _release(self) -> None:
        with self._lock:
            self._buffered -= 1

    def _put(self, item: Any) -> bool:
        """Blocking put that gives up when the stream is stopped or cancelled."""
        while not (self._stop.is_set() or self._cancel.cancelled):
            try:
                self._queue.put(item, timeout=POLL_INTERVAL_S)
                return True
            except queue.Full:
                continue
        return False

    def _decode(self, raw: RawRecord) -> SourceRecord | MalformedPayload:
        size = raw.raw_size
        try:
            payload = self._decoder.decode(raw.payload)
        except (ValueError, RecursionError) as e:     # JSONDecodeError, UnicodeDecodeError, too deep
            return MalformedPayload(record_id=raw.record_id, detail=str(e), raw_size=size)
        return SourceRecord(record_id=raw.record_id, payload=payload, raw_size=size)

    def _fault(self, e: Exception) -> None:
        log.error("provider failed: %s", e)
        fault = ProviderFault(str(e) or type(e).__name__)
        fault.__cause__ = e
        self._put(_Fault(fault))

    def _produce(self) -> None:
        it: Iterator[RawRecord] | None = None
        try:
            it = iter(self._provider)
            while not (self._stop.is_set() or self._cancel.cancelled):
                try:
                    raw = next(it)
                except StopIteration:
                    self._put(END_OF_STREAM)
                    return
                except Exception as e:      # anything the provider raises is a provider fault
                    self._fault(e)
                    return

                item = self._decode(raw)
                if isinstance(item, MalformedPayload) and self.strict:
                    self._put(_Fault(MalformedPayloadError(item.record_id, item.detail)))
                    return

                self._hold()
                if not self._put(item):
                    self._release()
                    return
        except Exception as e:
            # `iter()` on the provider failed (e.g. the query could not start)
            self._fault(e)
        finally:
            close = getattr(it, "close", None) if it is not None else None
            if close is not None:
                close()
            log.debug("producer stopped")

    def _start(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._produce, name="record-stream-producer", daemon=True)
            self._thread.start()

    ## -- consumer side

    def next(self) -> StreamResult:
        """Pull the next record. Blocks on the provider, but never past a cancellation."""
        if isinstance(self._finished, _Fault):
            raise self._finished.error
        if self._finished is not None:
            return self._finished

        self._start()
        while True:
            if self._cancel.cancelled:
                self._finished = CANCELLED
                return CANCELLED
            try:
                item = self._queue.get(timeout=POLL_INTERVAL_S)
            except queue.Empty:
                continue
            break

        if item is END_OF_STREAM:
            self._finished = END_OF_STREAM
            log.debug("end of stream")
            return END_OF_STREAM
        if isinstance(item, _Fault):
            self._finished = item
            raise item.error

        self._release()
        if isinstance(item, MalformedPayload):
            log.warning("skipping record %r: malformed payload: %s", item.record_id, item.detail)
        return item

    def __iter__(self) -> Iterator[SourceRecord | MalformedPayload]:
        """Iterates until `END_OF_STREAM` or `CANCELLED`."""
        while True:
            item = self.next()
            if isinstance(item, StreamSignal):
                return
            yield item

    def close(self, timeout: float = 1.0) -> None:
        """Stop the producer and drop anything still buffered. Safe to call more than once."""
        self._stop.set()
        if self._finished is None:
            self._finished = END_OF_STREAM
        if self._thread is not None:
            self._thread.join(timeout)
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, (SourceRecord, MalformedPayload)):
                self._release()

    def __enter__(self) -> "RecordStream":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
