from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Any

"""Cell cleaning and type coercion helpers.

Spreadsheet cells arrive as str / int / float / datetime / None depending on
the file type and on how the author typed them. These helpers turn them into
the handful of types the validator works with and raise ValueError when a
value cannot be coerced.

Date strings are read day-first (DD/MM/YYYY) as the uploaded registers use
that convention. Excel serial numbers are accepted for date cells stored as
plain numbers.
"""

__all__ = [
    "clean_cell",
    "is_empty",
    "to_number",
    "to_integer",
    "to_date",
    "to_code",
    "to_text",
    "to_enum",
]

DEFAULT_NULL_SENTINELS = frozenset({"NULL", "N/A", "#N/A", "-", "NONE"})

# Excel day 0; the fake 1900-02-29 makes every serial above 60 land right with this epoch
_EXCEL_EPOCH = date(1899, 12, 30)
_EXCEL_SERIAL_MIN = 1
_EXCEL_SERIAL_MAX = 100000

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d-%b-%Y",
    "%d %b %Y",
)
_NUMBER_NOISE = re.compile(r"[,\s₹$€£]")
_WHITESPACE = re.compile(r"\s+")


def clean_cell(value: Any, null_sentinels: frozenset[str] | set[str] = DEFAULT_NULL_SENTINELS) -> Any:
    """Normalize one raw cell: NaN/blank/sentinel -> None, strings stripped."""
    if value is None:
        return None
    # NaN / pandas NaT
    if value != value:  # noqa: PLR0124
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if stripped == "" or stripped.upper() in null_sentinels:
            return None
        return stripped
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            raise ValueError(f"not a number: {value!r}")
        return float(value)
    if isinstance(value, str):
        cleaned = _NUMBER_NOISE.sub("", value)
        # Accounting negatives: (123.45)
        if cleaned.startswith("(") and cleaned.endswith(")"):
            cleaned = "-" + cleaned[1:-1]
        try:
            number = float(cleaned)
        except ValueError:
            raise ValueError(f"not a number: {value!r}") from None
        if math.isnan(number) or math.isinf(number):
            raise ValueError(f"not a number: {value!r}")
        return number
    raise ValueError(f"not a number: {value!r}")


def to_integer(value: Any) -> int:
    number = to_number(value)
    if not number.is_integer():
        raise ValueError(f"not an integer: {value!r}")
    return int(number)


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if _EXCEL_SERIAL_MIN < value < _EXCEL_SERIAL_MAX:
            return _EXCEL_EPOCH + timedelta(days=int(value))
        raise ValueError(f"not a date: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        # ISO timestamps: keep the date part
        if len(text) > 10 and text[10] in "T ":
            text = text[:10]
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    raise ValueError(f"not a date: {value!r}")


def to_code(value: Any) -> str:
    """Document numbers / item codes: upper-case, no whitespace."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = _WHITESPACE.sub("", str(value)).upper()
    if not text:
        raise ValueError("empty code")
    return text


def to_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return _WHITESPACE.sub(" ", str(value)).strip()


def to_enum(value: Any, choices: tuple[str, ...]) -> str:
    needle = _WHITESPACE.sub("_", str(value).strip().lower())
    for choice in choices:
        if choice.lower() == needle:
            return choice
    raise ValueError(f"not one of {choices}: {value!r}")
