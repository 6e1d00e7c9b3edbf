"""
printstore/models/range_set.py

Compact set of build numbers used for fingerprint usage tracking.
"""

from __future__ import annotations

from typing import Iterable, Iterator, List, Tuple


class RangeSet:
    """
    A set of positive build numbers kept as sorted, non-overlapping ranges.

    Ranges are inclusive on both ends and adjacent ranges are always merged,
    so two sets with the same members have the same internal form. The
    canonical text form is a comma-separated list of ranges, e.g. ``"1-2,5"``.

    Examples
    --------
    >>> rs = RangeSet.from_numbers([5, 1, 2])
    >>> str(rs)
    '1-2,5'
    >>> 2 in rs
    True
    """

    __slots__ = ("_ranges",)

    def __init__(self, ranges: Iterable[Tuple[int, int]] = ()):
        self._ranges: List[Tuple[int, int]] = []
        for start, end in ranges:
            self.add_range(start, end)

    # --- Construction ---

    @classmethod
    def from_numbers(cls, numbers: Iterable[int]) -> "RangeSet":
        rs = cls()
        rs.add_all(numbers)
        return rs

    @classmethod
    def from_string(cls, text: str) -> "RangeSet":
        """
        Parse the canonical text form.

        Parameters
        ----------
        text : str
            Comma-separated numbers or inclusive ``start-end`` ranges. Blank
            text yields an empty set.

        Raises
        ------
        ValueError
            If a token is not a positive number or a well-formed range.
        """
        rs = cls()
        if text is None:
            return rs
        for token in text.split(","):
            token = token.strip()
            if not token:
                continue
            if "-" in token:
                head, _, tail = token.partition("-")
                start, end = _parse_number(head, text), _parse_number(tail, text)
                if end < start:
                    raise ValueError(f"Invalid range '{token}' in '{text}'")
                rs.add_range(start, end)
            else:
                rs.add(_parse_number(token, text))
        return rs

    # --- Mutation ---

    def add(self, number: int) -> None:
        self.add_range(number, number)

    def add_all(self, numbers: Iterable[int]) -> None:
        for n in numbers:
            self.add(n)

    def add_range(self, start: int, end: int) -> None:
        """Add every number in the inclusive range ``start..end``."""
        if start < 1 or end < start:
            raise ValueError(f"Invalid build number range {start}-{end}")

        merged: List[Tuple[int, int]] = []
        placed = False
        for lo, hi in self._ranges:
            if hi + 1 < start:
                merged.append((lo, hi))
            elif end + 1 < lo:
                if not placed:
                    merged.append((start, end))
                    placed = True
                merged.append((lo, hi))
            else:
                # Overlapping or adjacent: absorb into the pending range.
                start, end = min(start, lo), max(end, hi)
        if not placed:
            merged.append((start, end))
        merged.sort()
        self._ranges = merged

    # --- Queries ---

    @property
    def ranges(self) -> List[Tuple[int, int]]:
        return list(self._ranges)

    def includes(self, number: int) -> bool:
        return any(lo <= number <= hi for lo, hi in self._ranges)

    def is_empty(self) -> bool:
        return not self._ranges

    def list_numbers(self) -> List[int]:
        """Enumerate every build number in ascending order."""
        return [n for lo, hi in self._ranges for n in range(lo, hi + 1)]

    def __contains__(self, number: object) -> bool:
        return isinstance(number, int) and self.includes(number)

    def __iter__(self) -> Iterator[int]:
        for lo, hi in self._ranges:
            yield from range(lo, hi + 1)

    def __len__(self) -> int:
        return sum(hi - lo + 1 for lo, hi in self._ranges)

    def __bool__(self) -> bool:
        return bool(self._ranges)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RangeSet):
            return NotImplemented
        return self._ranges == other._ranges

    def __hash__(self) -> int:
        return hash(tuple(self._ranges))

    def __str__(self) -> str:
        return ",".join(
            str(lo) if lo == hi else f"{lo}-{hi}" for lo, hi in self._ranges
        )

    def __repr__(self) -> str:
        return f"RangeSet('{self}')"


def _parse_number(token: str, text: str) -> int:
    token = token.strip()
    if not token.isdigit():
        raise ValueError(f"Invalid build number '{token}' in '{text}'")
    number = int(token)
    if number < 1:
        raise ValueError(f"Build numbers must be positive, got {number} in '{text}'")
    return number
