"""
A1 notation helpers for Google Sheets ranges.

Only rectangular ranges are handled: "Sheet1!A2:F", "A1:C10", "B:B".
"""

import re
from typing import Optional

_RANGE_RE = re.compile(r"^([A-Z]+)(\d*):([A-Z]+)(\d*)$")


def column_to_index(column: str) -> int:
    """'A' -> 1, 'Z' -> 26, 'AA' -> 27."""
    column = column.strip().upper()
    if not column or not column.isalpha():
        raise ValueError(f"Invalid column letter: {column!r}")
    index = 0
    for char in column:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def index_to_column(index: int) -> str:
    """1 -> 'A', 27 -> 'AA'."""
    if index < 1:
        raise ValueError(f"Column index must be >= 1, got {index}")
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def sort_columns(columns) -> list[str]:
    """Sort column letters by position (A < B < Z < AA)."""
    return sorted(columns, key=column_to_index)


def split_sheet(range_a1: str) -> tuple[Optional[str], str]:
    """'Sheet1!A1:B2' -> ('Sheet1', 'A1:B2')."""
    if "!" in range_a1:
        sheet, cells = range_a1.rsplit("!", 1)
        return sheet, cells
    return None, range_a1


def join_sheet(sheet: Optional[str], cells: str) -> str:
    if not sheet:
        return cells
    if " " in sheet and not sheet.startswith("'"):
        sheet = f"'{sheet}'"
    return f"{sheet}!{cells}"


def parse_range(range_a1: str) -> tuple[Optional[str], str, Optional[int], str, Optional[int]]:
    """
    Parse a rectangular A1 range.

    Returns:
        (sheet, start_col, start_row, end_col, end_row); rows are None when
        the range is open-ended.

    Raises:
        ValueError: If the range is not rectangular A1
    """
    sheet, cells = split_sheet(range_a1)
    match = _RANGE_RE.match(cells.strip().upper())
    if not match:
        raise ValueError(f"Unsupported A1 range: {range_a1!r}")
    start_col, start_row, end_col, end_row = match.groups()
    return (
        sheet,
        start_col,
        int(start_row) if start_row else None,
        end_col,
        int(end_row) if end_row else None,
    )


def build_range(
    sheet: Optional[str],
    start_col: str,
    start_row: int,
    end_col: str,
    end_row: int
) -> str:
    return join_sheet(sheet, f"{start_col}{start_row}:{end_col}{end_row}")


def page_range(range_a1: str, page: int, page_size: int) -> str:
    """
    Rewrite the row bounds of a range to select one vertical page.

    page_range("A2:F", 2, 1000) -> "A1002:F2001". A closed range is clipped
    to its own end row.
    """
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be >= 1")
    sheet, start_col, start_row, end_col, end_row = parse_range(range_a1)
    first = (start_row or 1) + (page - 1) * page_size
    last = first + page_size - 1
    if end_row is not None:
        last = min(last, end_row)
    return build_range(sheet, start_col, first, end_col, last)


def row_count(range_a1: str) -> Optional[int]:
    """Number of rows a closed range covers, None when open-ended."""
    _, _, start_row, _, end_row = parse_range(range_a1)
    if end_row is None:
        return None
    return end_row - (start_row or 1) + 1
