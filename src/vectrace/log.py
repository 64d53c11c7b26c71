"""Event log records and the sinks that persist them.

Each record is written in the two-line form read by causal-order
visualizers such as ShiViz::

    client {"client":2,"server":1}
    Received message from server.
"""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol, runtime_checkable

from vectrace import logger
from vectrace.clock import ClockSnapshot
from vectrace.errors import DecodingError


__all__ = [
    "ConsoleLogSink",
    "FileLogSink",
    "LogRecord",
    "LogSink",
    "MemoryLogSink",
    "TeeLogSink",
    "parse_log",
    "read_log",
]


# Record lines end only here. U+2028 and other separators stay inside a line.
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True, slots=True)
class LogRecord:
    """One logged event: who, what, and the clock at that moment.

    Parameters
    ----------
    process_id : str
        Process that produced the event.
    description : str
        Free-text event description.
    clock : ClockSnapshot
        Clock of *process_id* right after the event.
    """

    process_id: str
    description: str
    clock: ClockSnapshot

    def render(self) -> str:
        """Return the persisted two-line form, newline terminated."""
        description = _LINE_BREAK.sub(" ", self.description)
        return f"{self.process_id} {self.clock.format()}\n{description}\n"


@runtime_checkable
class LogSink(Protocol):
    """Append-only destination for log records.

    Implementations must accept concurrent ``append`` calls and write each
    record whole.
    """

    def append(self, record: LogRecord) -> None: ...

    def close(self) -> None: ...


class MemoryLogSink:
    """Keeps records in memory, in append order."""

    def __init__(self) -> None:
        self._records: list[LogRecord] = []
        self._lock = threading.Lock()

    @property
    def records(self) -> list[LogRecord]:
        with self._lock:
            return list(self._records)

    def append(self, record: LogRecord) -> None:
        with self._lock:
            self._records.append(record)

    def render(self) -> str:
        return "".join(record.render() for record in self.records)

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class FileLogSink:
    """Writes rendered records to a text file.

    Parameters
    ----------
    path : str | Path
        Log file location.  Parent directories are created as needed.
    append : bool
        Keep existing content instead of truncating on open.
    """

    def __init__(self, path: str | Path, *, append: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file: IO[str] | None = self._path.open(
            "a" if append else "w", encoding="utf-8"
        )
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: LogRecord) -> None:
        text = record.render()
        with self._lock:
            if self._file is None:
                msg = f"Log file {self._path} is closed"
                raise ValueError(msg)
            self._file.write(text)
            self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


class ConsoleLogSink:
    """Reports each record through the ``vectrace`` console logger."""

    def append(self, record: LogRecord) -> None:
        logger.info(
            record.description,
            pid=record.process_id,
            clock=record.clock.format(),
        )

    def close(self) -> None:
        pass


class TeeLogSink:
    """Forwards every record to several sinks, in order."""

    def __init__(self, *sinks: LogSink) -> None:
        self._sinks = sinks
        self._lock = threading.Lock()

    @property
    def sinks(self) -> tuple[LogSink, ...]:
        return self._sinks

    def append(self, record: LogRecord) -> None:
        with self._lock:
            for sink in self._sinks:
                sink.append(record)

    def close(self) -> None:
        for sink in self._sinks:
            sink.close()


def parse_log(text: str) -> list[LogRecord]:
    """Parse records back from their persisted form.

    Raises
    ------
    DecodingError
        If a header line is malformed or a description line is missing.
    """
    lines = _LINE_BREAK.split(text)
    if lines[-1] == "":
        lines.pop()
    if len(lines) % 2:
        msg = "Log ends with a header line and no description"
        raise DecodingError(msg)

    records = []
    for lineno in range(0, len(lines), 2):
        header, description = lines[lineno], lines[lineno + 1]
        process_id, sep, clock_text = header.partition(" ")
        if not sep or not process_id:
            msg = f"Malformed log header at line {lineno + 1}: {header!r}"
            raise DecodingError(msg)
        try:
            entries = json.loads(clock_text)
        except json.JSONDecodeError as e:
            msg = f"Malformed clock at line {lineno + 1}: {clock_text!r}"
            raise DecodingError(msg) from e
        if not isinstance(entries, dict) or not all(
            isinstance(v, int) and not isinstance(v, bool) for v in entries.values()
        ):
            msg = f"Clock at line {lineno + 1} is not a map of counters"
            raise DecodingError(msg)
        records.append(LogRecord(process_id, description, ClockSnapshot.of(entries)))
    return records


def read_log(path: str | Path) -> list[LogRecord]:
    """Read and parse a log file written by ``FileLogSink``."""
    return parse_log(Path(path).read_text(encoding="utf-8"))
