"""vectrace: vector-clock instrumentation for distributed processes.

Each process owns a ``CausalityCodec`` that stamps outbound messages with
its vector clock, absorbs the clocks of inbound messages, and logs every
event so the happened-before order can be reconstructed afterwards.
"""

from vectrace.clock import ClockSnapshot, VectorClock
from vectrace.codec import CausalityCodec
from vectrace.config import (
    CodecConfig,
    LoggingConfig,
    TransportConfig,
    VectraceConfig,
    discover_config,
    load_config,
)
from vectrace.errors import (
    ConfigurationError,
    DecodingError,
    EncodingError,
    VectraceError,
)
from vectrace.log import (
    ConsoleLogSink,
    FileLogSink,
    LogRecord,
    LogSink,
    MemoryLogSink,
    TeeLogSink,
    parse_log,
    read_log,
)
from vectrace.transport import DatagramEndpoint

__version__ = "0.1.0"

__all__ = [
    # Clocks
    "ClockSnapshot",
    "VectorClock",
    # Codec
    "CausalityCodec",
    # Logging of events
    "ConsoleLogSink",
    "FileLogSink",
    "LogRecord",
    "LogSink",
    "MemoryLogSink",
    "TeeLogSink",
    "parse_log",
    "read_log",
    # Transport
    "DatagramEndpoint",
    # Configuration
    "CodecConfig",
    "LoggingConfig",
    "TransportConfig",
    "VectraceConfig",
    "discover_config",
    "load_config",
    # Errors
    "ConfigurationError",
    "DecodingError",
    "EncodingError",
    "VectraceError",
]
