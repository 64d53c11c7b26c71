"""Structured console logging for vectrace.

Wraps the ``"vectrace"`` stdlib logger with a formatter that renders keyword
fields after the message::

    12:00:01.250 [WARN] vectrace:tick:88 Dynamic join pid='server'
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any, Literal, Protocol


__all__ = [
    "FormatterFn",
    "Level",
    "FORMATTER_NAMES",
    "configure",
    "debug",
    "error",
    "formatters",
    "info",
    "parse_level",
    "set_colors",
    "set_formatter",
    "set_level",
    "warn",
]


class Level(IntEnum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    OFF = 4


type LevelName = Literal["debug", "info", "warn", "error", "off"]
type FormatterName = Literal["verbose", "compact", "minimal"]


class FormatterFn(Protocol):
    def __call__(
        self,
        *,
        time: datetime,
        level: Level,
        location: str,
        message: str,
        fields: dict[str, Any],
    ) -> str: ...


_RESET = "\033[0m"
_DIM = "\033[2m"
_BLUE = "\033[34m"
_GREEN = "\033[32m"

# (tag style, message style) per level
_LEVEL_STYLES: dict[Level, tuple[str, str]] = {
    Level.DEBUG: ("\033[35m", ""),
    Level.INFO: ("\033[36m", ""),
    Level.WARN: ("\033[33m\033[1m", "\033[33m"),
    Level.ERROR: ("\033[31m\033[1m", "\033[31m"),
}

_use_colors: bool = sys.stderr.isatty()


def _paint(text: str, style: str) -> str:
    if not (_use_colors and style):
        return text
    return f"{style}{text}{_RESET}"


def _tag(level: Level) -> str:
    if level not in _LEVEL_STYLES:
        return "???"
    return _paint(f"[{level.name}]", _LEVEL_STYLES[level][0])


def _fields(fields: dict[str, Any]) -> str:
    return "".join(
        f" {_paint(key, _DIM)}="
        + (_paint(repr(value), _GREEN) if isinstance(value, str) else str(value))
        for key, value in fields.items()
    )


class formatters:
    """Line layouts, selectable by name through ``configure``.

    ``verbose`` carries milliseconds, the call site and fields; ``compact``
    drops the call site; ``minimal`` keeps only level and message.
    """

    @staticmethod
    def verbose(
        *,
        time: datetime,
        level: Level,
        location: str,
        message: str,
        fields: dict[str, Any],
    ) -> str:
        _, tone = _LEVEL_STYLES.get(level, ("", ""))
        stamp = _paint(time.strftime("%H:%M:%S.%f")[:-3], _DIM)
        where = _paint(location, _BLUE)
        text = _paint(message, tone)
        return f"{stamp} {_tag(level)} {where} {text}{_fields(fields)}"

    @staticmethod
    def compact(
        *,
        time: datetime,
        level: Level,
        location: str,
        message: str,
        fields: dict[str, Any],
    ) -> str:
        stamp = _paint(time.strftime("%H:%M:%S"), _DIM)
        return f"{stamp} {_tag(level)} {message}{_fields(fields)}"

    @staticmethod
    def minimal(
        *,
        time: datetime,
        level: Level,
        location: str,
        message: str,
        fields: dict[str, Any],
    ) -> str:
        return f"{_tag(level)} {message}"


_formatter: FormatterFn = formatters.verbose

FORMATTER_NAMES: dict[str, FormatterFn] = {
    "verbose": formatters.verbose,
    "compact": formatters.compact,
    "minimal": formatters.minimal,
}

_LEVEL_TO_LOGGING = {
    Level.DEBUG: logging.DEBUG,
    Level.INFO: logging.INFO,
    Level.WARN: logging.WARNING,
    Level.ERROR: logging.ERROR,
    Level.OFF: logging.CRITICAL + 1,
}

_LEVEL_NAMES = {level.name.lower(): level for level in Level}


def _level_of(levelno: int) -> Level:
    for level in (Level.ERROR, Level.WARN, Level.INFO):
        if levelno >= _LEVEL_TO_LOGGING[level]:
            return level
    return Level.DEBUG


class _VectraceFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return _formatter(
            time=datetime.fromtimestamp(record.created),
            level=_level_of(record.levelno),
            location=f"{record.name}:{record.funcName}:{record.lineno}",
            message=record.getMessage(),
            fields=getattr(record, "fields", {}),
        )


_logger = logging.getLogger("vectrace")
_logger.setLevel(logging.INFO)
_logger.propagate = False

_handler = logging.StreamHandler(sys.stderr)
_handler.setFormatter(_VectraceFormatter())
_logger.addHandler(_handler)


def set_level(level: Level) -> None:
    _logger.setLevel(_LEVEL_TO_LOGGING[level])


def set_formatter(fn: FormatterFn) -> None:
    global _formatter
    _formatter = fn


def set_colors(enabled: bool) -> None:
    global _use_colors
    _use_colors = enabled


def parse_level(name: str) -> Level:
    """Map a level name such as ``"warn"`` to a ``Level``.

    Raises
    ------
    ValueError
        If *name* is not a known level.
    """
    try:
        return _LEVEL_NAMES[name.lower()]
    except KeyError:
        msg = f"Unknown log level: {name!r}"
        raise ValueError(msg) from None


def configure(
    *,
    level: LevelName | Level | None = None,
    formatter: FormatterName | FormatterFn | None = None,
    colors: bool | None = None,
) -> None:
    """Apply several logging settings at once. ``None`` leaves a setting alone.

    Examples
    --------
    >>> configure(level="debug", formatter="compact", colors=False)
    """
    if level is not None:
        set_level(level if isinstance(level, Level) else parse_level(level))
    if formatter is not None:
        if isinstance(formatter, str):
            try:
                formatter = FORMATTER_NAMES[formatter]
            except KeyError:
                msg = f"Unknown formatter: {formatter!r}"
                raise ValueError(msg) from None
        set_formatter(formatter)
    if colors is not None:
        set_colors(colors)


def debug(msg: str, **fields: Any) -> None:
    _logger.debug(msg, extra={"fields": fields}, stacklevel=2)


def info(msg: str, **fields: Any) -> None:
    _logger.info(msg, extra={"fields": fields}, stacklevel=2)


def warn(msg: str, **fields: Any) -> None:
    _logger.warning(msg, extra={"fields": fields}, stacklevel=2)


def error(msg: str, **fields: Any) -> None:
    _logger.error(msg, extra={"fields": fields}, stacklevel=2)
