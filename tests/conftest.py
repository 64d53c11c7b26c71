"""Shared fixtures for vectrace tests."""

import logging

import pytest

from vectrace import CausalityCodec, MemoryLogSink


class _RecordingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def log_records():
    """Collect records emitted on the ``vectrace`` logger."""
    vectrace_logger = logging.getLogger("vectrace")
    handler = _RecordingHandler()
    previous_level = vectrace_logger.level
    vectrace_logger.addHandler(handler)
    vectrace_logger.setLevel(logging.DEBUG)
    yield handler.records
    vectrace_logger.removeHandler(handler)
    vectrace_logger.setLevel(previous_level)


@pytest.fixture
def sink():
    return MemoryLogSink()


@pytest.fixture
def make_codec():
    """Build codecs that each log to their own in-memory sink."""

    def factory(process_id: str, **kwargs) -> CausalityCodec:
        return CausalityCodec(process_id, MemoryLogSink(), **kwargs)

    return factory
