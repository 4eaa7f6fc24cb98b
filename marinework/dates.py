from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from marinework.settings import DATE_MAX_YEAR_OFFSET

DateLike = Union[str, date, datetime]

_STRICT_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_NAMES = list(calendar.month_name)


def create_date_iso(year: Any, month: Any, day: Any) -> Optional[str]:
    """Build ``YYYY-MM-DDT00:00:00.000Z`` from form components.

    Returns None when a component is missing or the components do not name a
    real calendar date (no rolling 31 April over into May).
    """
    if year is None or month is None or day is None:
        return None
    text = f"{str(year).strip()}-{str(month).strip().zfill(2)}-{str(day).strip().zfill(2)}"
    if not _STRICT_DATE_RE.match(text):
        return None
    try:
        parsed = date(int(text[0:4]), int(text[5:7]), int(text[8:10]))
    except ValueError:
        return None
    return f"{parsed.isoformat()}T00:00:00.000Z"


def to_utc_date(value: DateLike) -> date:
    """Calendar day of ``value`` in UTC. Raises ValueError for unparseable strings."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def extract_date_components(value: Optional[DateLike]) -> Dict[str, str]:
    if not value:
        return {"day": "", "month": "", "year": ""}
    day_value = to_utc_date(value)
    return {
        "day": str(day_value.day),
        "month": str(day_value.month),
        "year": str(day_value.year),
    }


def is_valid_date_components(day: Any, month: Any, year: Any) -> bool:
    return create_date_iso(year, month, day) is not None


def is_today_or_future(value: DateLike, today: Optional[date] = None) -> bool:
    reference = today or utc_today()
    return to_utc_date(value) >= reference


def compare_dates(a: DateLike, b: DateLike) -> int:
    left = to_utc_date(a)
    right = to_utc_date(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def is_end_date_before_start_date(start: DateLike, end: DateLike) -> bool:
    return to_utc_date(end) < to_utc_date(start)


def format_date(value: Optional[DateLike]) -> str:
    """Render a stored date as ``1 June 2026``; empty string when unset."""
    if not value:
        return ""
    day_value = to_utc_date(value)
    return f"{day_value.day} {_MONTH_NAMES[day_value.month]} {day_value.year}"


def year_window(today: Optional[date] = None, offset: int = DATE_MAX_YEAR_OFFSET) -> Tuple[int, int]:
    current = (today or utc_today()).year
    return current, current + offset


def create_date_field_names(prefix: str) -> Dict[str, str]:
    return {
        "DAY": f"{prefix}-day",
        "MONTH": f"{prefix}-month",
        "YEAR": f"{prefix}-year",
    }


def extract_date_fields_from_payload(payload: Dict[str, Any], prefix: str) -> Dict[str, str]:
    names = create_date_field_names(prefix)
    result: Dict[str, str] = {}
    for part, field in (("day", names["DAY"]), ("month", names["MONTH"]), ("year", names["YEAR"])):
        raw = payload.get(field)
        result[part] = "" if raw is None else str(raw)
    return result


def extract_multiple_date_fields(payload: Dict[str, Any], fields: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """Flatten several prefixed dates into ``<key>Day``/``<key>Month``/``<key>Year`` entries."""
    result: Dict[str, str] = {}
    for key, prefix in fields:
        parts = extract_date_fields_from_payload(payload, prefix)
        result[f"{key}Day"] = parts["day"]
        result[f"{key}Month"] = parts["month"]
        result[f"{key}Year"] = parts["year"]
    return result


def create_date_fields_from_value(value: Optional[DateLike], prefix: str) -> Dict[str, str]:
    names = create_date_field_names(prefix)
    parts = extract_date_components(value)
    return {
        names["DAY"]: parts["day"],
        names["MONTH"]: parts["month"],
        names["YEAR"]: parts["year"],
    }
