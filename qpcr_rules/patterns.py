"""Well position pattern matching.

Pattern grammar (row letters are case-insensitive):

    *            every well
    A1           exactly that well
    A:*          every column of row A
    *:12         every row of column 12
    B:1-6        columns 1..6 (inclusive) of row B

Anything else never matches. Malformed patterns are logged, never raised.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from qpcr_rules.exceptions import PatternError
from qpcr_rules.utils import normalize_position, parse_well_position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionPattern:
    kind: str  # "any", "exact", "row", "column", "range"
    row: Optional[str] = None
    column: Optional[int] = None
    start: Optional[int] = None
    end: Optional[int] = None

    def matches(self, position: str) -> bool:
        if self.kind == "any":
            return True
        parsed = parse_well_position(position)
        if parsed is None:
            return False
        row, column = parsed
        if self.kind == "exact":
            return (row, column) == (self.row, self.column)
        if self.kind == "row":
            return row == self.row
        if self.kind == "column":
            return column == self.column
        return row == self.row and self.start <= column <= self.end


@lru_cache(maxsize=1024)
def parse_pattern(pattern: str) -> PositionPattern:
    """Parse a pattern string; raises PatternError for unsupported syntax."""
    text = normalize_position(pattern)
    if not text:
        raise PatternError("Empty well position pattern")
    if text == "*":
        return PositionPattern("any")
    if ":" not in text:
        parsed = parse_well_position(text)
        if parsed is None:
            raise PatternError(f"Unrecognised well position pattern: {pattern!r}")
        return PositionPattern("exact", row=parsed[0], column=parsed[1])

    row, _, col = (part.strip() for part in text.partition(":"))
    if row == "*" and col == "*":
        return PositionPattern("any")
    if col == "*":
        if not row.isalpha():
            raise PatternError(f"Invalid row in pattern: {pattern!r}")
        return PositionPattern("row", row=row)
    if row == "*":
        if not col.isdigit():
            raise PatternError(f"Invalid column in pattern: {pattern!r}")
        return PositionPattern("column", column=int(col))
    if "-" in col and row.isalpha():
        start_text, _, end_text = (part.strip() for part in col.partition("-"))
        try:
            start, end = int(start_text), int(end_text)
        except ValueError as e:
            raise PatternError(f"Invalid column range in pattern: {pattern!r}") from e
        return PositionPattern("range", row=row, start=start, end=end)
    raise PatternError(f"Unrecognised well position pattern: {pattern!r}")


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> Optional[PositionPattern]:
    # failures are cached too, so a bad pattern is reported once
    try:
        return parse_pattern(pattern)
    except PatternError as e:
        logger.warning("Pattern error, treating as no match: %s", e)
        return None


def matches(pattern: str, position: str) -> bool:
    """True when ``position`` falls inside ``pattern``; never raises."""
    if not normalize_position(position):
        return False
    compiled = _compile(pattern or "")
    return compiled is not None and compiled.matches(position)
