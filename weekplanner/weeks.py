"""Monday-start week keys (``"2026-W05"``).

The week number counts whole weeks between January 1st and the Monday of the
week, so the first Monday of a year is always week 01. This is not ISO-8601
week numbering.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

WEEK_ID_RE = re.compile(r"^(\d{4})-W(\d{2})$")
MAX_CORRECTION_STEPS = 10

DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def get_week_start(value: DateLike) -> date:
    """Monday of the week containing ``value``; Sunday belongs to the week before."""
    d = _as_date(value)
    return d - timedelta(days=d.weekday())


def get_week_identifier(value: DateLike) -> str:
    monday = get_week_start(value)
    jan1 = date(monday.year, 1, 1)
    week = (monday - jan1).days // 7 + 1
    return f"{monday.year}-W{week:02d}"


def parse_week_id(week_id: str) -> Optional[Tuple[int, int]]:
    match = WEEK_ID_RE.match(week_id or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_week_id(value: str) -> bool:
    return parse_week_id(value) is not None


def week_start_from_id(week_id: str) -> Optional[date]:
    """Best-effort Monday for a week key, found by walking a guessed date.

    Returns None for malformed keys. When the walk does not converge the last
    guess is returned.
    """
    parsed = parse_week_id(week_id)
    if parsed is None:
        return None
    year, week = parsed
    guess = date(year, 1, 1) + timedelta(days=(week - 1) * 7)
    for _ in range(MAX_CORRECTION_STEPS):
        found = parse_week_id(get_week_identifier(guess))
        if found == parsed:
            break
        guess += timedelta(days=7 if found < parsed else -7)
    else:
        logger.warning("week %s did not converge, using %s", week_id, guess)
    return get_week_start(guess)


def get_previous_week_id(week_id: str) -> Optional[str]:
    start = week_start_from_id(week_id)
    if start is None:
        return None
    return get_week_identifier(start - timedelta(days=7))


def get_next_week_id(week_id: str) -> Optional[str]:
    start = week_start_from_id(week_id)
    if start is None:
        return None
    return get_week_identifier(start + timedelta(days=7))


def week_days(week_id: str) -> List[date]:
    """The seven dates of a week, Monday first."""
    start = week_start_from_id(week_id)
    if start is None:
        return []
    return [start + timedelta(days=i) for i in range(7)]
