"""Self-describing wire values encoded as MessagePack.

The value model is a closed union of frozen dataclasses.  ``encode`` and
``decode`` each walk it with a single recursive function, so a decoder given
only the bytes rebuilds the exact tagged structure::

    from vectrace.wire import Integer, Map, String, decode, encode

    value = Map(((String("payload"), Integer(42)),))
    assert decode(encode(value)) == value
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import msgpack

from vectrace.errors import DecodingError, EncodingError


__all__ = [
    "Array",
    "Binary",
    "Boolean",
    "Float",
    "INT64_MAX",
    "INT64_MIN",
    "MAX_DEPTH",
    "Integer",
    "Map",
    "NIL",
    "Nil",
    "String",
    "Value",
    "decode",
    "encode",
    "from_python",
    "to_json",
    "to_python",
]


INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Arrays and maps may nest at most this many levels deep.
MAX_DEPTH = 128


@dataclass(frozen=True, slots=True)
class Nil:
    def __repr__(self) -> str:
        return "Nil()"


NIL = Nil()


@dataclass(frozen=True, slots=True)
class Boolean:
    value: bool


@dataclass(frozen=True, slots=True)
class Integer:
    value: int


@dataclass(frozen=True, slots=True)
class Float:
    value: float


@dataclass(frozen=True, slots=True)
class String:
    value: str


@dataclass(frozen=True, slots=True)
class Binary:
    value: bytes


@dataclass(frozen=True, slots=True)
class Array:
    items: tuple[Value, ...] = ()

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True, slots=True)
class Map:
    """Ordered key/value pairs.

    Keys are not required to be unique; lookups return the first match.
    """

    pairs: tuple[tuple[Value, Value], ...] = ()

    def __len__(self) -> int:
        return len(self.pairs)

    def get(self, key: str | Value, default: Value | None = None) -> Value | None:
        wanted = String(key) if isinstance(key, str) else key
        for k, v in self.pairs:
            if k == wanted:
                return v
        return default

    @classmethod
    def of(cls, entries: Mapping[str, Value]) -> Map:
        return cls(tuple((String(k), v) for k, v in entries.items()))


type Value = Nil | Boolean | Integer | Float | String | Binary | Array | Map


# =============================================================================
# Encoding
# =============================================================================


def _too_deep(depth: int) -> str:
    return f"Value nests deeper than {MAX_DEPTH} levels (at level {depth})"


def _pack(
    packer: msgpack.Packer, value: Value, out: bytearray, depth: int = 0
) -> None:
    match value:
        case Nil():
            out += packer.pack(None)
        case Boolean(v) if isinstance(v, bool):
            out += packer.pack(v)
        case Integer(v) if isinstance(v, int) and not isinstance(v, bool):
            if not INT64_MIN <= v <= INT64_MAX:
                msg = f"Integer {v} is outside the signed 64-bit range"
                raise EncodingError(msg)
            out += packer.pack(v)
        case Float(v) if isinstance(v, float):
            out += packer.pack(v)
        case String(v) if isinstance(v, str):
            try:
                out += packer.pack(v)
            except UnicodeEncodeError as e:
                raise EncodingError(f"String is not valid UTF-8: {e}") from e
        case Binary(v) if isinstance(v, (bytes, bytearray, memoryview)):
            out += packer.pack(bytes(v))
        case Array() | Map() if depth >= MAX_DEPTH:
            raise EncodingError(_too_deep(depth + 1))
        case Array(items):
            out += packer.pack_array_header(len(items))
            for item in items:
                _pack(packer, item, out, depth + 1)
        case Map(pairs):
            out += packer.pack_map_header(len(pairs))
            for key, item in pairs:
                _pack(packer, key, out, depth + 1)
                _pack(packer, item, out, depth + 1)
        case _:
            msg = f"Cannot encode {value!r}: not a wire value"
            raise EncodingError(msg)


def encode(value: Value) -> bytes:
    """Encode a wire value to MessagePack bytes.

    Parameters
    ----------
    value : Value
        The value to encode.

    Returns
    -------
    bytes

    Raises
    ------
    EncodingError
        If *value* (or anything nested in it) is not a well-formed wire
        value, an integer does not fit in 64 signed bits, or arrays and
        maps nest deeper than ``MAX_DEPTH``.
    """
    packer = msgpack.Packer(use_bin_type=True)
    out = bytearray()
    try:
        _pack(packer, value, out)
    except (ValueError, OverflowError) as e:
        raise EncodingError(f"Cannot encode {type(value).__name__}: {e}") from e
    return bytes(out)


# =============================================================================
# Decoding
# =============================================================================


class _Pairs(list[tuple[Any, Any]]):
    """Marker for decoded maps, so they are not confused with arrays."""


def _lift(obj: Any, depth: int = 0) -> Value:
    match obj:
        case None:
            return NIL
        case bool():
            return Boolean(obj)
        case int():
            if obj > INT64_MAX:
                msg = f"Integer {obj} is outside the signed 64-bit range"
                raise DecodingError(msg)
            return Integer(obj)
        case float():
            return Float(obj)
        case str():
            return String(obj)
        case bytes():
            return Binary(obj)
        case msgpack.ExtType():
            msg = f"Unsupported MessagePack extension type: {obj.code}"
            raise DecodingError(msg)
        case tuple() | _Pairs() if depth >= MAX_DEPTH:
            raise DecodingError(_too_deep(depth + 1))
        case tuple():
            return Array(tuple(_lift(item, depth + 1) for item in obj))
        case _Pairs():
            return Map(
                tuple((_lift(k, depth + 1), _lift(v, depth + 1)) for k, v in obj)
            )
        case _:
            msg = f"Unsupported MessagePack type: {type(obj).__name__}"
            raise DecodingError(msg)


def decode(data: bytes) -> Value:
    """Decode MessagePack bytes into a wire value.

    The whole buffer must hold exactly one value.

    Raises
    ------
    DecodingError
        If *data* is not bytes, is truncated, carries trailing bytes, or
        uses a type outside the value model (extension types, timestamps,
        unsigned integers above the signed 64-bit range), or nests arrays and
        maps deeper than ``MAX_DEPTH``.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        msg = f"Expected bytes, got {type(data).__name__}"
        raise DecodingError(msg)
    try:
        obj = msgpack.unpackb(
            data,
            raw=False,
            use_list=False,
            strict_map_key=False,
            object_pairs_hook=_Pairs,
        )
    except (msgpack.exceptions.UnpackException, ValueError) as e:
        raise DecodingError(f"Malformed message: {e}") from e
    return _lift(obj)


# =============================================================================
# Python and JSON views
# =============================================================================


def from_python(obj: Any) -> Value:
    """Convert native Python data into a wire value.

    Examples
    --------
    >>> from_python({"payload": 42}).get("payload")
    Integer(value=42)
    """
    match obj:
        case Nil() | Boolean() | Integer() | Float() | String() | Binary() | Array() | Map():
            return obj
        case None:
            return NIL
        case bool():
            return Boolean(obj)
        case int():
            return Integer(obj)
        case float():
            return Float(obj)
        case str():
            return String(obj)
        case bytes() | bytearray() | memoryview():
            return Binary(bytes(obj))
        case list() | tuple():
            return Array(tuple(from_python(item) for item in obj))
        case Mapping():
            return Map(tuple((from_python(k), from_python(v)) for k, v in obj.items()))
        case _:
            msg = f"Cannot convert {type(obj).__name__} to a wire value"
            raise EncodingError(msg)


def to_python(value: Value) -> Any:
    """Convert a wire value into native Python data.

    Arrays become lists and maps become dicts, so duplicate map keys keep
    their last value.  Map keys that are arrays become tuples.
    """
    match value:
        case Nil():
            return None
        case Boolean(v) | Integer(v) | Float(v) | String(v) | Binary(v):
            return v
        case Array(items):
            return [to_python(item) for item in items]
        case Map(pairs):
            return {_to_key(k): to_python(v) for k, v in pairs}
        case _:
            msg = f"Not a wire value: {value!r}"
            raise TypeError(msg)


def _to_key(value: Value) -> Any:
    match value:
        case Array(items):
            return tuple(_to_key(item) for item in items)
        case Map():
            return to_json(value)
        case _:
            return to_python(value)


def _json_string(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def to_json(value: Value) -> str:
    """Render a wire value as JSON.

    Non-string map keys are rendered as JSON strings of their own JSON form,
    binary data as a UTF-8 string (invalid bytes replaced), and non-finite
    floats as ``null``.

    Examples
    --------
    >>> to_json(Map(((Integer(1), String("a")),)))
    '{"1":"a"}'
    """
    match value:
        case Nil():
            return "null"
        case Boolean(v):
            return "true" if v else "false"
        case Integer(v):
            return str(v)
        case Float(v):
            return repr(v) if math.isfinite(v) else "null"
        case String(v):
            return _json_string(v)
        case Binary(v):
            return _json_string(v.decode("utf-8", errors="replace"))
        case Array(items):
            return "[" + ",".join(to_json(item) for item in items) + "]"
        case Map(pairs):
            parts = []
            for k, v in pairs:
                key = to_json(k) if isinstance(k, String) else _json_string(to_json(k))
                parts.append(f"{key}:{to_json(v)}")
            return "{" + ",".join(parts) + "}"
        case _:
            msg = f"Not a wire value: {value!r}"
            raise TypeError(msg)
