"""
A1 notation helpers and the column layout of the ledger sheets.
"""

import re
from dataclasses import dataclass
from typing import Optional

# Row 1 holds the header on every sheet
FIRST_DATA_ROW = 2

_A1_PATTERN = re.compile(
    r"^(?P<col1>[A-Z]+)(?P<row1>\d+)?(?::(?P<col2>[A-Z]+)(?P<row2>\d+)?)?$"
)


def col_to_index(col: str) -> int:
    """'A' -> 0, 'Z' -> 25, 'AA' -> 26."""
    index = 0
    for char in col.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def index_to_col(index: int) -> str:
    """0 -> 'A', 26 -> 'AA'."""
    letters = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def quote_sheet(sheet: str) -> str:
    """Quote a sheet name when A1 notation requires it."""
    if sheet.replace("_", "").isalnum():
        return sheet
    return "'" + sheet.replace("'", "''") + "'"


def cell(sheet: str, col: str, row: int) -> str:
    return f"{quote_sheet(sheet)}!{col}{row}"


def row_range(sheet: str, row: int, first_col: str, last_col: str) -> str:
    return f"{quote_sheet(sheet)}!{first_col}{row}:{last_col}{row}"


def column_range(sheet: str, col: str, first_row: int = FIRST_DATA_ROW) -> str:
    return f"{quote_sheet(sheet)}!{col}{first_row}:{col}"


def block_range(sheet: str, first_col: str, last_col: str, first_row: int = FIRST_DATA_ROW) -> str:
    return f"{quote_sheet(sheet)}!{first_col}{first_row}:{last_col}"


@dataclass(frozen=True)
class A1Range:
    """Parsed A1 range; open-ended bounds are None."""
    sheet: str
    first_col: int
    first_row: int
    last_col: int
    last_row: Optional[int]


def parse_a1(spec: str) -> A1Range:
    """
    Parse 'Sheet!A2:G', 'Sheet!F5' or "'My sheet'!A5:G5".

    Raises:
        ValueError: on anything else
    """
    sheet_part, sep, cells = spec.rpartition("!")
    if not sep or not sheet_part:
        raise ValueError(f"Range without sheet name: {spec!r}")

    if sheet_part.startswith("'") and sheet_part.endswith("'"):
        sheet_part = sheet_part[1:-1].replace("''", "'")

    match = _A1_PATTERN.match(cells)
    if not match:
        raise ValueError(f"Unsupported A1 range: {spec!r}")

    first_col = col_to_index(match["col1"])
    first_row = int(match["row1"]) if match["row1"] else 1

    if match["col2"] is None:
        # Single cell
        return A1Range(sheet_part, first_col, first_row, first_col, first_row)

    last_col = col_to_index(match["col2"])
    last_row = int(match["row2"]) if match["row2"] else None
    return A1Range(sheet_part, first_col, first_row, last_col, last_row)


class ReferrerColumns:
    """Рефоводы: A id, B username, C code, D wallet, E ref count,
    F pending payout, G paid out (formula), H repair watermark."""
    ID = "A"
    CODE = "C"
    PENDING = "F"
    APPLIED = "H"
    LAST = "H"


class InvitedColumns:
    """Приглашенные: A user id, B referrer code."""
    USER_ID = "A"
    LAST = "B"


class LedgerColumns:
    """Рефералы: A referral id, B code, C profit, D event id, E bonus, F date."""
    REF_ID = "A"
    EVENT_ID = "D"
    LAST = "F"


class WithdrawalColumns:
    """Выводы: A event id, B user id, C (may be missing), D profit."""
    EVENT_ID = "A"
    LAST = "D"
