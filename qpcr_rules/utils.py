"""Utility functions for well positions and sorting.

Contains natural sorting, well position parsing, and plate position generation.
"""

import re
from typing import List, Optional

from qpcr_rules.constants import AnalysisConstants

_POSITION_RE = re.compile(r"^([A-Za-z]+)(\d+)$")


def natural_sort_key(sample_name):
    """Extract numbers from sample name for natural sorting (e.g., Sample2 < Sample10)"""
    parts = re.split(r"(\d+)", str(sample_name))
    return [int(part) if part.isdigit() else part.lower() for part in parts]


def normalize_position(position) -> str:
    """Uppercase and strip a well position ("a1 " -> "A1")."""
    if position is None:
        return ""
    return str(position).strip().upper()


def parse_well_position(position) -> Optional[tuple[str, int]]:
    """Split a well position into (row letters, column number).

    Args:
        position: Well position such as "A1" or "h12"

    Returns:
        Tuple like ("A", 1), or None when the text is not a well position
    """
    match = _POSITION_RE.match(normalize_position(position))
    if not match:
        return None
    return match.group(1), int(match.group(2))


def row_index(row: str) -> int:
    """Zero-based index of a row label (A=0, B=1, ..., AA=26)."""
    index = 0
    for char in row.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def row_label(index: int) -> str:
    label = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        label = chr(ord("A") + rem) + label
    return label


def well_sort_key(position) -> tuple:
    """Sort key ordering wells by row, then column; unparseable positions last."""
    parsed = parse_well_position(position)
    if parsed is None:
        return (1, 0, 0, normalize_position(position))
    row, column = parsed
    return (0, row_index(row), column, "")


def plate_positions(
    rows: int = AnalysisConstants.PLATE_ROWS,
    columns: int = AnalysisConstants.PLATE_COLUMNS,
) -> List[str]:
    """All well positions of a plate in row-major order (A1, A2, ..., H12)."""
    return [f"{row_label(r)}{c}" for r in range(rows) for c in range(1, columns + 1)]
