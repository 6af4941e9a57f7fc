"""Identifier formats for requests and assignments.

Request IDs look like ``A-01-24``: a month letter (``A`` for January through
``L`` for December), a sequence number scoped to that month and year, and
the two-digit year. Assignment IDs look like ``ASG-0001`` and increase
globally.
"""

from __future__ import annotations

import datetime as dt
import re
from collections.abc import Iterable

MONTH_LETTERS = "ABCDEFGHIJKL"
REQUEST_ID_RE = re.compile(r"^([A-L])-(\d+)-(\d{2})$", re.IGNORECASE)
ASSIGNMENT_ID_RE = re.compile(r"^ASG-(\d+)$")


def normalize_request_id(request_id: str) -> str:
    """Return the canonical spelling of ``request_id``.

    ``" a-1-24 "`` becomes ``"A-01-24"``. Strings that are not request IDs
    are returned stripped but otherwise untouched.
    """
    cleaned = str(request_id).strip().strip('"')
    match = REQUEST_ID_RE.match(cleaned)
    if not match:
        return cleaned
    letter, seq, year = match.groups()
    return f"{letter.upper()}-{int(seq):02d}-{year}"


def parse_request_id(request_id: str) -> tuple[str, int, str] | None:
    """Split a request ID into ``(letter, sequence, year)`` or ``None``."""
    match = REQUEST_ID_RE.match(str(request_id).strip())
    if not match:
        return None
    letter, seq, year = match.groups()
    return letter.upper(), int(seq), year


def next_request_id(existing_ids: Iterable[str], now: dt.datetime | dt.date) -> str:
    """Generate the next request ID for the month and year of ``now``.

    The sequence continues from the highest one already used for the same
    month letter *and* year; IDs in any other format are ignored.
    """
    letter = MONTH_LETTERS[now.month - 1]
    year = f"{now.year % 100:02d}"
    highest = 0
    for existing in existing_ids:
        parsed = parse_request_id(existing)
        if parsed is None:
            continue
        p_letter, seq, p_year = parsed
        if p_letter == letter and p_year == year and seq > highest:
            highest = seq
    return f"{letter}-{highest + 1:02d}-{year}"


def next_assignment_id(existing_ids: Iterable[str]) -> str:
    """Generate ``ASG-####`` one above the highest existing assignment ID."""
    highest = 0
    for existing in existing_ids:
        match = ASSIGNMENT_ID_RE.match(str(existing))
        if match:
            highest = max(highest, int(match.group(1)))
    return f"ASG-{highest + 1:04d}"
