"""
Conversions for loosely typed spreadsheet cells.

A cell arrives as text, an integer or a float depending on the render
option and on how a human typed it. Every function here is total: bad
input gives the default, never an exception.
"""

import math
from typing import Any, Optional

_SPACES = (" ", "\u00a0", "\u202f")


def _squash(text: str) -> str:
    for space in _SPACES:
        text = text.replace(space, "")
    return text.strip()


def to_str(value: Any) -> str:
    """Render a cell as trimmed text; None becomes ""."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # 1234.0 from UNFORMATTED_VALUE reads back as "1234"
        return str(int(value))
    return str(value).strip()


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse a numeric cell, accepting a decimal comma."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        result = float(value)
    else:
        text = _squash(str(value))
        if not text:
            return default
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        try:
            result = float(text)
        except ValueError:
            return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def to_int(value: Any, default: int = 0) -> int:
    """Parse an integer cell; integral floats are accepted."""
    parsed = parse_id(value)
    return default if parsed is None else parsed


def parse_id(value: Any) -> Optional[int]:
    """
    Parse a user id cell.

    Returns None for blanks, text ("без ника"), booleans and fractional
    numbers so the caller can skip the row.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value) or not value.is_integer():
            return None
        return int(value)

    text = _squash(str(value))
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number) or not number.is_integer():
        return None
    return int(number)
