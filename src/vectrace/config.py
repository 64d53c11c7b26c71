"""TOML-based configuration for vectrace processes.

Provides ``load_config`` / ``discover_config`` for loading ``vectrace.toml``
and frozen dataclasses for the codec, transport, and console logging
settings.

Example ``vectrace.toml``::

    [process]
    id = "client"
    warn_dynamic_join = true

    [log]
    path = "client-Log.txt"
    console = false

    [transport]
    host = "127.0.0.1"
    port = 8081

    [logging]
    level = "info"
    formatter = "compact"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vectrace import logger
from vectrace.errors import ConfigurationError


__all__ = [
    "CONFIG_FILENAME",
    "CodecConfig",
    "LoggingConfig",
    "TransportConfig",
    "VectraceConfig",
    "discover_config",
    "load_config",
]


CONFIG_FILENAME = "vectrace.toml"

MAX_UDP_PAYLOAD = 65507


@dataclass(frozen=True)
class CodecConfig:
    """Settings for one process's ``CausalityCodec``.

    Parameters
    ----------
    process_id : str
        Identifier written into clocks and log records.
    warn_dynamic_join : bool
        Warn when an unseen process id enters the clock.
    log_path : Path | None
        File for event records.  ``None`` keeps records in memory.
    append_log : bool
        Append to an existing log file instead of truncating it.
    console : bool
        Also report each event record on the console logger.

    Examples
    --------
    >>> config = CodecConfig(process_id="client", log_path=Path("client-Log.txt"))
    >>> config.log_path.name
    'client-Log.txt'
    """

    process_id: str
    warn_dynamic_join: bool = False
    log_path: Path | None = None
    append_log: bool = False
    console: bool = False


@dataclass(frozen=True)
class TransportConfig:
    """UDP endpoint settings.

    Parameters
    ----------
    host : str
        Address to bind.
    port : int
        Port to bind; ``0`` picks a free port.
    max_datagram_size : int
        Largest message the endpoint will send or accept.
    """

    host: str = "127.0.0.1"
    port: int = 0
    max_datagram_size: int = MAX_UDP_PAYLOAD

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            msg = f"port must be in 0-65535, got {self.port}"
            raise ConfigurationError(msg)
        if not 1 <= self.max_datagram_size <= MAX_UDP_PAYLOAD:
            msg = (
                f"max_datagram_size must be in 1-{MAX_UDP_PAYLOAD}, "
                f"got {self.max_datagram_size}"
            )
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class LoggingConfig:
    """Console logger settings, applied with ``apply()``."""

    level: logger.LevelName = "info"
    formatter: logger.FormatterName = "verbose"
    colors: bool | None = None

    def __post_init__(self) -> None:
        try:
            logger.parse_level(self.level)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if self.formatter not in logger.FORMATTER_NAMES:
            msg = f"Unknown formatter: {self.formatter!r}"
            raise ConfigurationError(msg)

    def apply(self) -> None:
        try:
            logger.configure(
                level=self.level,
                formatter=self.formatter,
                colors=self.colors,
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e


@dataclass(frozen=True)
class VectraceConfig:
    """Top-level configuration.

    ``codec`` is ``None`` when no ``[process]`` section names a process id.
    """

    codec: CodecConfig | None = None
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def discover_config(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for ``vectrace.toml``.

    Returns
    -------
    Path | None
        Path to the discovered config file, or ``None`` if not found.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name, {})
    if not isinstance(section, dict):
        msg = f"[{name}] must be a table"
        raise ConfigurationError(msg)
    return section


def _typed[T](section: dict[str, Any], key: str, kind: type[T], default: T) -> T:
    value = section.get(key, default)
    if value is not None and not isinstance(value, kind):
        msg = f"'{key}' must be {kind.__name__}, got {type(value).__name__}"
        raise ConfigurationError(msg)
    return value


def load_config(path: Path | None = None) -> VectraceConfig:
    """Load a ``VectraceConfig`` from a TOML file.

    If *path* is ``None``, auto-discovers ``vectrace.toml`` by walking up from
    the current working directory.  Returns the default config if no file is
    found.  Relative log paths are resolved against the config file's
    directory.

    Parameters
    ----------
    path : Path | None
        Explicit path to a TOML config file.

    Returns
    -------
    VectraceConfig

    Raises
    ------
    FileNotFoundError
        If an explicit *path* is given but does not exist.
    ConfigurationError
        If the file is not valid TOML or a value has the wrong type.
    """
    if path is None:
        discovered = discover_config()
        if discovered is None:
            return VectraceConfig()
        path = discovered

    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as f:
        try:
            raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

    process_raw = _section(raw, "process")
    log_raw = _section(raw, "log")

    codec: CodecConfig | None = None
    process_id = _typed(process_raw, "id", str, None)
    if process_id is not None:
        log_path_raw = _typed(log_raw, "path", str, None)
        log_path = None
        if log_path_raw is not None:
            log_path = Path(log_path_raw)
            if not log_path.is_absolute():
                log_path = path.parent / log_path
        codec = CodecConfig(
            process_id=process_id,
            warn_dynamic_join=_typed(process_raw, "warn_dynamic_join", bool, False),
            log_path=log_path,
            append_log=_typed(log_raw, "append", bool, False),
            console=_typed(log_raw, "console", bool, False),
        )

    transport_raw = _section(raw, "transport")
    transport = TransportConfig(
        host=_typed(transport_raw, "host", str, "127.0.0.1"),
        port=_typed(transport_raw, "port", int, 0),
        max_datagram_size=_typed(
            transport_raw, "max_datagram_size", int, MAX_UDP_PAYLOAD
        ),
    )

    logging_raw = _section(raw, "logging")
    logging_config = LoggingConfig(
        level=_typed(logging_raw, "level", str, "info"),
        formatter=_typed(logging_raw, "formatter", str, "verbose"),
        colors=_typed(logging_raw, "colors", bool, None),
    )

    return VectraceConfig(codec=codec, transport=transport, logging=logging_config)
