"""A1-notation helpers for addressing tabs of the tracker spreadsheet."""

from __future__ import annotations

from typing import MutableSequence

# Characters that force a tab name to be quoted in A1 notation.
_QUOTE_TRIGGERS = ("-", " ")


def quote_tab(tab: str) -> str:
    """Return ``tab`` formatted for use before the ``!`` of an A1 range."""

    if any(char in tab for char in _QUOTE_TRIGGERS):
        escaped = tab.replace("'", "''")
        return f"'{escaped}'"
    return tab


def sheet_range(tab: str, a1: str) -> str:
    """Return a fully qualified range such as ``'Time Entries'!A1:N1``."""

    return f"{quote_tab(tab)}!{a1}"


def column_letter(index: int) -> str:
    """Return the 1-based column ``index`` as letters (1 -> A, 27 -> AA)."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def header_range(tab: str, columns: int) -> str:
    """Return the range covering the header row of ``tab``."""

    return sheet_range(tab, f"A1:{column_letter(max(1, columns))}1")


def block_range(tab: str, first_row: int, rows: int, columns: int) -> str:
    """Return the range covering ``rows`` rows by ``columns`` columns from ``first_row``."""

    if first_row < 1:
        raise ValueError("Row index must be >= 1")
    last_row = first_row + max(1, rows) - 1
    return sheet_range(tab, f"A{first_row}:{column_letter(max(1, columns))}{last_row}")


__all__ = ["block_range", "column_letter", "header_range", "quote_tab", "sheet_range"]
