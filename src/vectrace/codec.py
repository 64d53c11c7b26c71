"""Clock-carrying message codec.

``CausalityCodec`` stamps every outbound payload with the sender's vector
clock and absorbs the clock carried by every inbound message, following
the vector-clock update rules:

* send: tick the own entry, then encode ``{clock, payload}``;
* receive: decode, merge the sender's clock, then tick the own entry.

Every send, receive, and local event appends one ``LogRecord`` to the
codec's log sink.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Self

from vectrace import logger
from vectrace.clock import ClockSnapshot, VectorClock
from vectrace.errors import ConfigurationError, DecodingError, EncodingError
from vectrace.log import (
    ConsoleLogSink,
    FileLogSink,
    LogRecord,
    LogSink,
    MemoryLogSink,
    TeeLogSink,
)
from vectrace.wire import (
    INT64_MAX,
    INT64_MIN,
    Integer,
    Map,
    String,
    Value,
    decode,
    encode,
)

if TYPE_CHECKING:
    from vectrace.config import CodecConfig


__all__ = ["CLOCK_KEY", "PAYLOAD_KEY", "CausalityCodec"]


CLOCK_KEY = "clock"
PAYLOAD_KEY = "payload"


def _message(clock: ClockSnapshot, payload: Value) -> Map:
    entries = tuple((String(pid), Integer(ticks)) for pid, ticks in clock.items())
    return Map(
        (
            (String(CLOCK_KEY), Map(entries)),
            (String(PAYLOAD_KEY), payload),
        )
    )


def _parse_message(data: bytes) -> tuple[dict[str, int], Value]:
    message = decode(data)
    if not isinstance(message, Map):
        msg = f"Expected a map message, got {type(message).__name__}"
        raise DecodingError(msg)

    clock = message.get(CLOCK_KEY)
    if clock is None:
        msg = f"Message has no '{CLOCK_KEY}' field"
        raise DecodingError(msg)
    if not isinstance(clock, Map):
        msg = f"'{CLOCK_KEY}' must be a map, got {type(clock).__name__}"
        raise DecodingError(msg)

    entries: dict[str, int] = {}
    for key, ticks in clock.pairs:
        if not isinstance(key, String) or not key.value:
            msg = f"Clock keys must be non-empty strings, got {key!r}"
            raise DecodingError(msg)
        if not isinstance(ticks, Integer):
            msg = f"Clock entry {key.value!r} must be an integer, got {ticks!r}"
            raise DecodingError(msg)
        entries[key.value] = max(entries.get(key.value, ticks.value), ticks.value)

    payload = message.get(PAYLOAD_KEY)
    if payload is None:
        msg = f"Message has no '{PAYLOAD_KEY}' field"
        raise DecodingError(msg)
    return entries, payload


class CausalityCodec:
    """Encodes and decodes messages while maintaining one process's clock.

    Parameters
    ----------
    process_id : str
        Identifier of the owning process.  Must be non-empty and contain no
        whitespace.
    log_sink : LogSink | None
        Where event records go.  Defaults to a fresh ``MemoryLogSink``.
    warn_on_dynamic_join : bool
        Warn when a previously unseen process id enters the clock.

    Raises
    ------
    ConfigurationError
        If *process_id* or *log_sink* is invalid.

    Examples
    --------
    >>> client = CausalityCodec("client")
    >>> server = CausalityCodec("server")
    >>> server.unpack("request", client.prepare("request", 42))
    42
    >>> server.snapshot().format()
    '{"client":1,"server":1}'
    """

    def __init__(
        self,
        process_id: str,
        log_sink: LogSink | None = None,
        *,
        warn_on_dynamic_join: bool = False,
    ) -> None:
        if not isinstance(process_id, str) or not process_id:
            msg = f"process_id must be a non-empty string, got {process_id!r}"
            raise ConfigurationError(msg)
        if any(ch.isspace() for ch in process_id):
            msg = f"process_id must not contain whitespace, got {process_id!r}"
            raise ConfigurationError(msg)
        if log_sink is not None and not isinstance(log_sink, LogSink):
            msg = f"log_sink must implement append() and close(), got {log_sink!r}"
            raise ConfigurationError(msg)

        self._process_id = process_id
        self._sink: LogSink = log_sink if log_sink is not None else MemoryLogSink()
        self._clock = VectorClock(warn_dynamic_join=warn_on_dynamic_join)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: CodecConfig) -> CausalityCodec:
        """Build a codec and its log sinks from a ``CodecConfig``."""
        sinks: list[LogSink] = []
        if config.log_path is not None:
            sinks.append(FileLogSink(config.log_path, append=config.append_log))
        if config.console:
            sinks.append(ConsoleLogSink())

        sink: LogSink | None
        match sinks:
            case []:
                sink = None
            case [only]:
                sink = only
            case _:
                sink = TeeLogSink(*sinks)

        return cls(
            config.process_id,
            sink,
            warn_on_dynamic_join=config.warn_dynamic_join,
        )

    @property
    def process_id(self) -> str:
        return self._process_id

    @property
    def log_sink(self) -> LogSink:
        return self._sink

    def snapshot(self) -> ClockSnapshot:
        """Return a read-only copy of the current clock."""
        with self._lock:
            return self._clock.snapshot()

    def _record(self, description: str) -> ClockSnapshot:
        snapshot = self._clock.snapshot()
        self._sink.append(LogRecord(self._process_id, description, snapshot))
        return snapshot

    def prepare_value(self, description: str, payload: Value) -> bytes:
        """Stamp *payload* with the clock for a send event and encode it.

        The clock is only advanced once the message has been encoded, so a
        failed encode leaves no trace.

        Raises
        ------
        EncodingError
            If *payload* is not an encodable wire value.
        """
        with self._lock:
            pending = self._clock.copy()
            pending.tick(self._process_id)
            data = encode(_message(pending.snapshot(), payload))
            self._clock.tick(self._process_id)
            self._record(description)
        logger.debug(
            "Prepared message",
            pid=self._process_id,
            size=len(data),
            clock=pending.format(),
        )
        return data

    def prepare(self, description: str, payload: int) -> bytes:
        """Encode an integer payload for a send event.

        Parameters
        ----------
        description : str
            Event description written to the log.
        payload : int
            Signed 64-bit application value.

        Returns
        -------
        bytes
            The encoded ``{clock, payload}`` message.

        Raises
        ------
        EncodingError
            If *payload* is not an int or does not fit in 64 signed bits.
        """
        if isinstance(payload, bool) or not isinstance(payload, int):
            msg = f"payload must be an int, got {type(payload).__name__}"
            raise EncodingError(msg)
        if not INT64_MIN <= payload <= INT64_MAX:
            msg = f"payload {payload} is outside the signed 64-bit range"
            raise EncodingError(msg)
        return self.prepare_value(description, Integer(payload))

    def _parse(self, data: bytes) -> tuple[dict[str, int], Value]:
        try:
            return _parse_message(data)
        except DecodingError as e:
            logger.debug("Rejected message", pid=self._process_id, reason=str(e))
            raise

    def _absorb(self, description: str, remote: dict[str, int]) -> ClockSnapshot:
        with self._lock:
            self._clock.merge(remote)
            self._clock.tick(self._process_id)
            snapshot = self._record(description)
        logger.debug("Unpacked message", pid=self._process_id, clock=snapshot.format())
        return snapshot

    def unpack_value(self, description: str, data: bytes) -> Value:
        """Decode a message for a receive event and return its payload.

        The sender's clock is merged before the own entry is ticked.  When
        decoding fails the clock and the log are left untouched.

        Raises
        ------
        DecodingError
            If *data* is malformed or lacks a well-formed ``clock`` map or a
            ``payload`` field.
        """
        remote, payload = self._parse(data)
        self._absorb(description, remote)
        return payload

    def unpack(self, description: str, data: bytes) -> int:
        """Decode a message carrying an integer payload.

        Raises
        ------
        DecodingError
            If *data* is malformed or its payload is not an integer.
        """
        remote, payload = self._parse(data)
        if not isinstance(payload, Integer):
            msg = f"'{PAYLOAD_KEY}' must be an integer, got {type(payload).__name__}"
            raise DecodingError(msg)
        self._absorb(description, remote)
        return payload.value

    def log_local_event(self, description: str) -> ClockSnapshot:
        """Record a local event: tick the own entry and log it."""
        with self._lock:
            self._clock.tick(self._process_id)
            return self._record(description)

    def close(self) -> None:
        self._sink.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"CausalityCodec({self._process_id!r}, clock={self.snapshot().format()})"
