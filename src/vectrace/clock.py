"""Vector clocks for tracking happened-before across processes.

``VectorClock`` is the mutable per-process clock owned by a codec.
``ClockSnapshot`` is the frozen value handed outward for logging, wire
encoding, and causal analysis.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from vectrace import logger


__all__ = [
    "ClockLike",
    "ClockSnapshot",
    "VectorClock",
]


type ClockLike = VectorClock | ClockSnapshot | Mapping[str, int]


def _entries_of(other: ClockLike) -> Mapping[str, int]:
    match other:
        case VectorClock():
            return other.entries
        case _:
            return other


def _dominates(mine: Mapping[str, int], theirs: Mapping[str, int]) -> bool:
    return all(mine.get(pid, 0) >= ticks for pid, ticks in theirs.items())


def _format(entries: Mapping[str, int]) -> str:
    return json.dumps(
        dict(sorted(entries.items())),
        separators=(",", ":"),
        ensure_ascii=False,
    )


class VectorClock:
    """Logical clock mapping process ids to event counters.

    Counters only ever grow and entries are never removed.  ``tick`` marks a
    local event; ``merge`` absorbs another clock by taking the pointwise
    maximum.

    Parameters
    ----------
    entries : Mapping[str, int] | None
        Initial counters.  Values are clamped to at least 1, as with ``set``.
    warn_dynamic_join : bool
        Emit a warning log whenever a previously unseen process id appears.

    Examples
    --------
    >>> vc = VectorClock()
    >>> vc.tick("p1")
    >>> vc.tick("p1")
    >>> vc.merge({"p2": 4})
    >>> vc.format()
    '{"p1":2,"p2":4}'
    >>> vc.find_ticks("p3")
    -1
    """

    __slots__ = ("_entries", "_view", "_warn_dynamic_join")

    def __init__(
        self,
        entries: Mapping[str, int] | None = None,
        *,
        warn_dynamic_join: bool = False,
    ) -> None:
        self._entries: dict[str, int] = {}
        self._view = MappingProxyType(self._entries)
        self._warn_dynamic_join = False
        for pid, ticks in (entries or {}).items():
            self.set(pid, ticks)
        self._warn_dynamic_join = warn_dynamic_join

    @property
    def entries(self) -> Mapping[str, int]:
        """Live read-only view of the counters."""
        return self._view

    @property
    def warn_dynamic_join(self) -> bool:
        return self._warn_dynamic_join

    def _joined(self, pid: str) -> None:
        if self._warn_dynamic_join:
            logger.warn("Dynamic join", pid=pid)

    def tick(self, pid: str) -> None:
        """Advance *pid*'s counter by one, creating it at 1 if absent."""
        if pid in self._entries:
            self._entries[pid] += 1
        else:
            self._entries[pid] = 1
            self._joined(pid)

    def set(self, pid: str, ticks: int) -> None:
        """Overwrite *pid*'s counter with *ticks*.

        Values below 1 are not valid counters and are coerced to 1.

        Raises
        ------
        TypeError
            If *ticks* is not an ``int`` (``bool`` included).
        """
        if isinstance(ticks, bool) or not isinstance(ticks, int):
            msg = f"ticks must be an int, got {type(ticks).__name__}"
            raise TypeError(msg)
        ticks = max(ticks, 1)
        joined = pid not in self._entries
        self._entries[pid] = ticks
        if joined:
            self._joined(pid)

    def find_ticks(self, pid: str) -> int:
        """Return *pid*'s counter, or -1 when the clock has no entry for it."""
        return self._entries.get(pid, -1)

    def last_update(self) -> int:
        """Return the highest counter in the clock, or 0 when empty."""
        return max(self._entries.values(), default=0)

    def merge(self, other: ClockLike) -> None:
        """Absorb *other* in place by taking the pointwise maximum.

        Parameters
        ----------
        other : VectorClock | ClockSnapshot | Mapping[str, int]
            The clock whose knowledge to absorb.
        """
        for pid, ticks in list(_entries_of(other).items()):
            local = self._entries.get(pid)
            if local is None or local < ticks:
                self.set(pid, ticks)

    def dominates(self, other: ClockLike) -> bool:
        """Return whether every counter of *other* is ``<=`` ours.

        Entries missing locally count as 0.
        """
        return _dominates(self._entries, _entries_of(other))

    def happened_before(self, other: ClockLike) -> bool:
        """Return whether this clock strictly precedes *other*."""
        theirs = _entries_of(other)
        return _dominates(theirs, self._entries) and not _dominates(
            self._entries, theirs
        )

    def concurrent_with(self, other: ClockLike) -> bool:
        """Return whether neither clock dominates the other."""
        theirs = _entries_of(other)
        return not _dominates(self._entries, theirs) and not _dominates(
            theirs, self._entries
        )

    def copy(self) -> VectorClock:
        """Return an independent clock with the same counters.

        The copy never warns on dynamic joins.
        """
        clock = VectorClock()
        clock._entries.update(self._entries)
        return clock

    def snapshot(self) -> ClockSnapshot:
        """Return an immutable snapshot of the current counters."""
        return ClockSnapshot.of(self._entries)

    def format(self) -> str:
        """Render the counters as compact JSON with ascending process ids."""
        return _format(self._entries)

    def to_dict(self) -> dict[str, int]:
        return dict(self._entries)

    @classmethod
    def from_dict(cls, data: Mapping[str, int]) -> VectorClock:
        return cls(data)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pid: object) -> bool:
        return pid in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __eq__(self, other: object) -> bool:
        match other:
            case VectorClock():
                return self._entries == other._entries
            case ClockSnapshot():
                return self._entries == dict(other.items())
            case _:
                return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"VectorClock({self.format()})"


@dataclass(frozen=True, slots=True)
class ClockSnapshot(Mapping[str, int]):
    """Immutable point-in-time copy of a ``VectorClock``.

    Behaves as a read-only ``Mapping[str, int]`` whose iteration order is
    ascending by process id.

    Examples
    --------
    >>> snap = ClockSnapshot.of({"b": 2, "a": 1})
    >>> list(snap)
    ['a', 'b']
    >>> snap.dominates({"a": 1})
    True
    """

    _items: tuple[tuple[str, int], ...] = ()
    _index: Mapping[str, int] = field(
        default_factory=dict, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", MappingProxyType(dict(self._items)))

    @classmethod
    def of(cls, entries: Mapping[str, int]) -> ClockSnapshot:
        return cls(tuple(sorted(entries.items())))

    def __getitem__(self, pid: str) -> int:
        return self._index[pid]

    def __iter__(self) -> Iterator[str]:
        return (pid for pid, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        match other:
            case ClockSnapshot():
                return self._items == other._items
            case VectorClock():
                return other == self
            case Mapping():
                return dict(self._items) == dict(other.items())
            case _:
                return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def find_ticks(self, pid: str) -> int:
        return self._index.get(pid, -1)

    def last_update(self) -> int:
        return max((ticks for _, ticks in self._items), default=0)

    def dominates(self, other: ClockLike) -> bool:
        return _dominates(self._index, _entries_of(other))

    def happened_before(self, other: ClockLike) -> bool:
        theirs = _entries_of(other)
        return _dominates(theirs, self._index) and not _dominates(self._index, theirs)

    def concurrent_with(self, other: ClockLike) -> bool:
        theirs = _entries_of(other)
        return not _dominates(self._index, theirs) and not _dominates(
            theirs, self._index
        )

    def format(self) -> str:
        return _format(self._index)

    def thaw(self) -> VectorClock:
        """Return a new mutable clock holding these counters."""
        return VectorClock(self._index)

    def __repr__(self) -> str:
        return f"ClockSnapshot({self.format()})"
