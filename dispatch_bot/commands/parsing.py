"""Parsing of slash-command text arguments."""

from __future__ import annotations

import datetime as dt
import re

from ..errors import ValidationError

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y")
_TIME_FORMATS = ("%H:%M", "%I:%M %p", "%I:%M%p", "%I %p", "%I%p")
_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def parse_date(text: str, field: str = "date") -> dt.date:
    cleaned = text.strip()
    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"Could not read {field} {text!r}; use YYYY-MM-DD", field=field)


def parse_time(text: str, field: str = "time") -> dt.time:
    cleaned = text.strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return dt.datetime.strptime(cleaned, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"Could not read {field} {text!r}; use HH:MM", field=field)


def parse_weekday(text: str) -> int:
    """``"mon"``, ``"Monday"`` or ``"0"`` → ``0``."""
    cleaned = text.strip().lower()
    if cleaned.isdigit() and 0 <= int(cleaned) <= 6:
        return int(cleaned)
    if len(cleaned) >= 2:
        for index, name in enumerate(_WEEKDAYS):
            if name.startswith(cleaned):
                return index
    raise ValidationError(f"Unknown weekday {text!r}", field="weekday")


def parse_id_list(text: str) -> list[str]:
    """Split comma, semicolon or newline separated IDs, dropping blanks."""
    return [part.strip() for part in re.split(r"[,;\n]", text or "") if part.strip()]
