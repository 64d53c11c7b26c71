"""Exception hierarchy for vectrace.

Every error raised by the library derives from ``VectraceError`` so callers
can catch the whole family at the transport boundary.
"""

from __future__ import annotations


__all__ = [
    "ConfigurationError",
    "DecodingError",
    "EncodingError",
    "VectraceError",
]


class VectraceError(Exception):
    """Base class for all vectrace errors."""


class EncodingError(VectraceError):
    """A value could not be serialized to the wire format."""


class DecodingError(VectraceError):
    """Incoming bytes are malformed, truncated, or have the wrong shape."""


class ConfigurationError(VectraceError):
    """Invalid construction arguments or configuration values."""
