"""Inclusive address ranges and a sorted, non-overlapping range map."""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import Any, Generic, Iterable, Iterator, Optional, TypeVar

log = logging.getLogger(__name__)

_U64_MAX = (1 << 64) - 1

V = TypeVar("V")


@dataclass(frozen=True, order=True)
class Range:
    """An inclusive range of integers, ``start`` through ``end``."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"range start {self.start:#x} is past its end {self.end:#x}")

    def intersects(self, other: Range) -> bool:
        """True if the two ranges share at least one value."""
        return self.start <= other.end and other.start <= self.end

    def contains(self, value: int) -> bool:
        """True if ``value`` lies within this range."""
        return self.start <= value <= self.end

    def __contains__(self, value: int) -> bool:
        return self.contains(value)


class RangeMap(Generic[V]):
    """A map from non-overlapping inclusive ranges to values."""

    def __init__(self, items: Iterable[tuple[Range, V]] = ()) -> None:
        entries = list(items)
        for (prev, _), (cur, _) in zip(entries, entries[1:]):
            if cur.start <= prev.end:
                raise ValueError(f"ranges {prev} and {cur} are unsorted or overlap")
        self._entries: list[tuple[Range, V]] = entries
        self._starts = [r.start for r, _ in entries]

    def get(self, key: int) -> Optional[V]:
        """Return the value whose range covers ``key``, or None."""
        idx = bisect.bisect_right(self._starts, key) - 1
        if idx < 0:
            return None
        rng, value = self._entries[idx]
        return value if key <= rng.end else None

    def ranges_values(self) -> list[tuple[Range, V]]:
        """All ``(range, value)`` pairs in address order."""
        return list(self._entries)

    def __iter__(self) -> Iterator[tuple[Range, V]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, RangeMap):
            return NotImplemented
        return self._entries == other._entries

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"RangeMap({self._entries!r})"


def _sort_key(item: tuple[Optional[Range], Any]) -> tuple[int, int, int]:
    rng = item[0]
    if rng is None:
        return (0, 0, 0)
    return (1, rng.start, rng.end)


def into_rangemap_safe(items: Iterable[tuple[Optional[Range], V]]) -> RangeMap[V]:
    """Build a RangeMap from possibly overlapping, possibly missing ranges.

    Entries without a range are dropped, entries overlapping an earlier one
    with a different value are dropped, and touching or overlapping entries
    with equal values are merged.
    """
    entries: list[tuple[Range, V]] = []
    for rng, value in sorted(items, key=_sort_key):
        if rng is None:
            log.warning("Unable to create valid range for %r", value)
            continue
        if entries:
            last_range, last_value = entries[-1]
            if rng.start <= last_range.end and value != last_value:
                log.warning(
                    "overlapping ranges %r and %r map to values %r and %r",
                    last_range, rng, last_value, value,
                )
                continue
            if rng.start <= min(last_range.end + 1, _U64_MAX) and value == last_value:
                entries[-1] = (Range(last_range.start, max(rng.end, last_range.end)), last_value)
                continue
        entries.append((rng, value))
    return RangeMap(entries)