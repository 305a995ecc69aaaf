# src/visa_compliance/core/dates.py

"""
Date helpers used by the engine, the store and the dashboard views.

Every function here treats malformed input as "unknown": formatting returns "",
predicates return False. Nothing raises to the caller, because urgency badges
and sort order depend on a stable fallback.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

DEFAULT_PATTERN = "%B %d, %Y"

_INPUT_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
)

# priority -> days until due (non-recurring templates)
_DUE_OFFSET_DAYS: dict[str, int] = {
    "high": 7,
    "medium": 30,
    "low": 90,
}
_RECURRING_OFFSET_DAYS = 30


def _today(today: date | None) -> date:
    return today if today is not None else date.today()


def parse_date(value: Any) -> date | None:
    """Parse an ISO string / common date string / date / datetime into a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    try:
        return date.fromisoformat(s)
    except ValueError:
        pass

    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        pass

    for fmt in _INPUT_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def to_iso_date(value: Any) -> str | None:
    d = parse_date(value)
    return d.isoformat() if d is not None else None


def format_date(value: Any, pattern: str = DEFAULT_PATTERN) -> str:
    """Format a date-like value; returns "" when it cannot be parsed."""
    obj: date | None = value if isinstance(value, datetime) else parse_date(value)
    if obj is None:
        return ""
    try:
        return obj.strftime(pattern)
    except (ValueError, TypeError):
        return ""


def days_between(a: Any, b: Any = None, *, today: date | None = None) -> int:
    """Absolute day difference. `b` defaults to today; unparseable input gives 0."""
    da = parse_date(a)
    db = parse_date(b) if b is not None else _today(today)
    if da is None or db is None:
        return 0
    return abs((db - da).days)


def is_past(value: Any, *, today: date | None = None) -> bool:
    d = parse_date(value)
    if d is None:
        return False
    return d < _today(today)


def is_within_days(value: Any, n: int, *, today: date | None = None) -> bool:
    """True iff the date falls in [today, today + n]."""
    d = parse_date(value)
    if d is None or n < 0:
        return False
    start = _today(today)
    return start <= d <= start + timedelta(days=int(n))


def validate_date_range(start: Any, end: Any) -> bool:
    ds = parse_date(start)
    de = parse_date(end)
    if ds is None or de is None:
        return False
    return de >= ds


def default_due_date(priority: str, is_recurring: bool = False, *, today: date | None = None) -> date:
    """Due date heuristic for template tasks: recurring 30d, else by priority."""
    if is_recurring:
        offset = _RECURRING_OFFSET_DAYS
    else:
        offset = _DUE_OFFSET_DAYS.get(str(priority or "").lower(), _DUE_OFFSET_DAYS["medium"])
    return _today(today) + timedelta(days=offset)
