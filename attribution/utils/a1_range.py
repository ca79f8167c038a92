"""A1-notation range parsing for the tabular ledger ("A2:H", "I5:I5", "A2:E100")."""
from __future__ import annotations

import re
from dataclasses import dataclass

_CELL_RE = re.compile(r"^([A-Za-z]+)(\d*)$")


def column_index(letters: str) -> int:
    """Zero-based column index for 'A' -> 0, 'H' -> 7, 'AA' -> 26."""
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


@dataclass(frozen=True, slots=True)
class A1Range:
    start_col: int
    end_col: int
    start_row: int
    end_row: int | None  # None = open ended

    @property
    def width(self) -> int:
        return self.end_col - self.start_col + 1

    def contains_row(self, row_number: int) -> bool:
        if row_number < self.start_row:
            return False
        return self.end_row is None or row_number <= self.end_row


def parse_a1_range(value: str) -> A1Range:
    """Parse 'A2:H' style ranges. A single cell ('B3') is a 1x1 range.

    Raises ValueError for malformed input or reversed bounds.
    """
    text = value.strip()
    if "!" in text:
        text = text.split("!", 1)[1]
    start, _, end = text.partition(":")
    start_match = _CELL_RE.match(start)
    end_match = _CELL_RE.match(end or start)
    if not start_match or not end_match:
        raise ValueError(f"Invalid A1 range: {value!r}")

    start_col = column_index(start_match.group(1))
    end_col = column_index(end_match.group(1))
    start_row = int(start_match.group(2)) if start_match.group(2) else 1
    end_row = int(end_match.group(2)) if end_match.group(2) else None
    if end_col < start_col or (end_row is not None and end_row < start_row):
        raise ValueError(f"Invalid A1 range bounds: {value!r}")
    return A1Range(start_col=start_col, end_col=end_col, start_row=start_row, end_row=end_row)


__all__ = ["A1Range", "parse_a1_range", "column_index"]
