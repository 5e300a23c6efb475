"""
Per-value semantic type detection.

Classifies one decoded cell value (from CSV, JSON or a spreadsheet) into a
``ColumnType`` tag. Detection is pure and never raises.
"""

import re
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from dateutil import parser as dateparser


class ColumnType(str, Enum):
    """Semantic types for single values and for whole columns."""
    NULL = "null"
    INTEGER = "integer"
    FLOAT = "float"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"
    UNKNOWN = "unknown"


NUMERIC_PATTERN = re.compile(r"[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?")
_YEAR = re.compile(r"\d{4}")

# Two fill-in dates for dateutil: a year taken from the text is the same under both
_FILL_DEFAULTS = (datetime(2000, 1, 1), datetime(2004, 1, 1))


def is_numeric_string(value: str) -> bool:
    """True if the trimmed string is a complete decimal number literal."""
    return NUMERIC_PATTERN.fullmatch(value.strip()) is not None


def is_date_string(value: str) -> bool:
    """
    Check whether a string parses as a calendar date or timestamp.

    Numeric literals are only dates when they look like a year ("2024");
    anything else is tried as ISO-8601 first and then with dateutil's
    permissive parser, which accepts common locale forms such as
    "Jan 5, 2024" or "01/15/2024". dateutil fills missing parts from a
    default date, so its result only counts when the text itself names a
    year; bare month or weekday names ("June", "Sun") stay strings.
    """
    text = value.strip()
    if not text:
        return False

    if NUMERIC_PATTERN.fullmatch(text):
        return _YEAR.fullmatch(text) is not None

    try:
        datetime.fromisoformat(text)
        return True
    except ValueError:
        pass

    if not any(ch.isdigit() for ch in text):
        return False

    try:
        years = {dateparser.parse(text, default=fill).year for fill in _FILL_DEFAULTS}
    except (ValueError, OverflowError):
        return False
    return len(years) == 1


def detect_type(value: Any) -> ColumnType:
    """
    Detect the semantic type of a single value.

    Args:
        value: Decoded cell value

    Returns:
        ColumnType tag
    """
    if value is None or value == "":
        return ColumnType.NULL
    elif isinstance(value, bool):
        return ColumnType.BOOLEAN
    elif isinstance(value, int):
        return ColumnType.INTEGER
    elif isinstance(value, float):
        return ColumnType.INTEGER if value.is_integer() else ColumnType.FLOAT
    elif isinstance(value, (datetime, date, time)):
        return ColumnType.DATE
    elif isinstance(value, str):
        if is_date_string(value):
            return ColumnType.DATE
        if is_numeric_string(value):
            return ColumnType.NUMBER
        return ColumnType.STRING
    elif isinstance(value, (list, tuple)):
        return ColumnType.ARRAY
    elif isinstance(value, dict):
        return ColumnType.OBJECT
    else:
        return ColumnType.UNKNOWN
