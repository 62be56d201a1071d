"""
Temporal normalization.

Pure helpers that validate and repair date/time strings produced by
people and by completion models, derive missing end times, and resolve
named ranges ("today", "next 3 days") to concrete windows.

Dates are ``YYYY-MM-DD`` strings and times are ``HH:MM`` strings
throughout; nothing here touches the network or the clock unless a
reference date is left out.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Dict, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from loguru import logger

from .models import CleanedDate, EventDraft, TimeRangeQuery


DEFAULT_TIME = "12:00"
DEFAULT_DURATION_MINUTES = 60

# Digit strings seen in completion output that the generic rule would
# misread. Kept as an explicit table; do not generalize.
MALFORMED_TIME_OVERRIDES: Dict[str, str] = {
    "00025": "20:00",
    "00011": "11:00",
}

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2}(?:\.\d+)?)?\s*$")
_AMPM_RE = re.compile(r"(\d{1,2})(?:[:.](\d{2}))?\s*([ap])\.?\s*m\b\.?", re.IGNORECASE)
_DURATION_NUMBER_RE = re.compile(r"(\d+)")
_NEXT_DAYS_RE = re.compile(r"^next (\d+) days?$")
_NEXT_WEEKS_RE = re.compile(r"^next (\d+) weeks?$")

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
WEEKDAYS = {
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3,
    "friday": 4, "saturday": 5, "sunday": 6,
}

_MONTH_PATTERN = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\b\.?"
)
_DAY_MONTH_RE = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH_PATTERN}(?:\s+(\d{{4}}))?", re.IGNORECASE)
_MONTH_DAY_RE = re.compile(rf"\b{_MONTH_PATTERN}\s+(\d{{1,2}})(?:st|nd|rd|th)?(?:,?\s+(\d{{4}}))?", re.IGNORECASE)
_EURO_DATE_RE = re.compile(r"^(\d{1,2})[./](\d{1,2})[./](\d{4})$")
_IN_DAYS_RE = re.compile(r"\bin (\d+) days?\b")
_BARE_DAY_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\b")
_ISO_IN_TEXT_RE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")
_DATE_SHAPED_RE = re.compile(r"^\d+\s*[./-]\s*\d+(?:\s*[./-]\s*\d+)?$")


DateLike = Union[str, date, None]


def _as_date(value: DateLike) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()


def _to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _format_minutes(total: int) -> str:
    total %= 24 * 60
    return f"{total // 60:02d}:{total % 60:02d}"


def is_valid_date(value: Optional[str]) -> bool:
    """Strict YYYY-MM-DD that survives a parse/format round trip."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return False
    try:
        return datetime.strptime(value, "%Y-%m-%d").strftime("%Y-%m-%d") == value
    except ValueError:
        return False


def is_valid_time(value: Optional[str]) -> bool:
    """HH:MM with hours 0-23 and minutes 0-59."""
    return isinstance(value, str) and bool(_TIME_RE.match(value))


def add_minutes_to_time(value: str, minutes: int) -> str:
    """Add minutes to HH:MM, wrapping past midnight."""
    return _format_minutes(_to_minutes(value) + minutes)


def is_end_after_start(start: str, end: str) -> bool:
    try:
        return _to_minutes(end) > _to_minutes(start)
    except (AttributeError, ValueError):
        return False


def ensure_end_after(
    start: str,
    end: Optional[str],
    minutes: int = DEFAULT_DURATION_MINUTES,
) -> Tuple[str, str]:
    """
    Return ``(start, end)`` with end strictly after start on the same day.

    An unusable end becomes start plus ``minutes``. Drafts hold times of
    day, so an end that would cross midnight is clipped to 23:59, and a
    start of 23:59 moves back to 23:00 to leave room for one.
    """
    if is_valid_time(end) and is_end_after_start(start, end):
        return start, end
    if start == "23:59":
        start = "23:00"
    candidate = add_minutes_to_time(start, minutes)
    return start, candidate if is_end_after_start(start, candidate) else "23:59"


def next_weekday(reference: DateLike = None) -> str:
    """The first Monday-Friday day strictly after ``reference``."""
    day = _as_date(reference) + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day.isoformat()


def duration_to_minutes(phrase: Optional[str]) -> int:
    """
    Read a duration phrase like "90 min" or "2 hours".

    The first integer is the amount; "hour"/"hr" make it hours, anything
    else is minutes. No integer at all means the default hour.
    """
    if not phrase:
        return DEFAULT_DURATION_MINUTES
    phrase = str(phrase).lower()
    match = _DURATION_NUMBER_RE.search(phrase)
    if not match:
        return DEFAULT_DURATION_MINUTES
    amount = int(match.group(1))
    if "hour" in phrase or "hr" in phrase:
        return amount * 60
    return amount


def calculate_end_time_from_duration(start: str, duration: Optional[str]) -> str:
    """End time for ``start`` plus a duration phrase, wrapping past midnight."""
    return add_minutes_to_time(start, duration_to_minutes(duration))


def parse_start_end_datetime(
    event_date: Optional[str],
    start: Optional[str],
    end: Optional[str] = None,
    duration: Optional[str] = None,
    tz: str = "UTC",
) -> Tuple[Optional[Dict[str, str]], Optional[Dict[str, str]]]:
    """
    Build calendar ``start``/``end`` objects for a draft.

    Returns ``(None, None)`` when the date or start time is unusable.
    Otherwise both are returned and end is strictly after start; an end
    that wraps past midnight lands on the following day.
    """
    if not is_valid_date(event_date) or not is_valid_time(start):
        logger.debug(f"Unusable date/start: {event_date!r} {start!r}")
        return None, None

    start_dt = datetime.strptime(f"{event_date} {start}", "%Y-%m-%d %H:%M")

    if is_valid_time(end):
        end_dt = datetime.strptime(f"{event_date} {end}", "%Y-%m-%d %H:%M")
        if end_dt <= start_dt:
            logger.debug(f"End {end} not after start {start}, using default duration")
            end_dt = start_dt + timedelta(minutes=DEFAULT_DURATION_MINUTES)
    else:
        end_dt = start_dt + timedelta(minutes=duration_to_minutes(duration))
        if end_dt <= start_dt:
            end_dt = start_dt + timedelta(minutes=DEFAULT_DURATION_MINUTES)

    return (
        {"dateTime": start_dt.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": tz},
        {"dateTime": end_dt.strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": tz},
    )


def clean_time_string(value) -> str:
    """
    Repair a time string into HH:MM.

    Handles 12-hour forms ("2:30pm"), clock forms with seconds, and bare
    digit runs ("930", "25"). Anything unreadable becomes 12:00.
    """
    if not isinstance(value, str) or not value.strip():
        return DEFAULT_TIME

    lowered = value.strip().lower()
    if lowered == "noon":
        return "12:00"
    if lowered == "midnight":
        return "00:00"

    ampm = _AMPM_RE.search(lowered)
    if ampm:
        hours = int(ampm.group(1))
        minutes = int(ampm.group(2) or 0)
        period = ampm.group(3)
        if period == "p" and hours != 12:
            hours += 12
        if period == "a" and hours == 12:
            hours = 0
        return f"{min(hours, 23):02d}:{min(minutes, 59):02d}"

    clock = _CLOCK_RE.match(lowered)
    if clock:
        hours = min(int(clock.group(1)), 23)
        minutes = min(int(clock.group(2)), 59)
        return f"{hours:02d}:{minutes:02d}"

    digits = re.sub(r"\D", "", lowered)

    if digits in MALFORMED_TIME_OVERRIDES:
        return MALFORMED_TIME_OVERRIDES[digits]

    if not digits or len(digits) > 4:
        logger.debug(f"Unreadable time {value!r}, using {DEFAULT_TIME}")
        return DEFAULT_TIME

    # "25" pads to "0025": minutes past midnight
    padded = digits.zfill(4)
    hours = min(int(padded[:2]), 23)
    minutes = min(int(padded[2:]), 59)
    return f"{hours:02d}:{minutes:02d}"


def _safe_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _resolve_weekday(lowered: str, today: date) -> Optional[str]:
    for name, index in WEEKDAYS.items():
        if re.search(rf"\b{name}\b", lowered):
            ahead = (index - today.weekday()) % 7 or 7
            return (today + timedelta(days=ahead)).isoformat()
    return None


def _extract_date_from_text(value: str, today: date, allow_bare_day: bool = True) -> Optional[Tuple[str, str]]:
    lowered = value.lower()

    iso = _ISO_IN_TEXT_RE.search(lowered)
    if iso and is_valid_date(iso.group(0)):
        return iso.group(0), "iso_in_text"

    euro = _EURO_DATE_RE.match(lowered.strip())
    if euro:
        found = _safe_date(int(euro.group(3)), int(euro.group(2)), int(euro.group(1)))
        if found:
            return found, "day_first"

    for regex, day_group, month_group in ((_DAY_MONTH_RE, 1, 2), (_MONTH_DAY_RE, 2, 1)):
        match = regex.search(lowered)
        if match:
            year = int(match.group(3)) if match.group(3) else today.year
            found = _safe_date(year, MONTHS[match.group(month_group)[:3]], int(match.group(day_group)))
            if found:
                return found, "month_name"

    if "day after tomorrow" in lowered:
        return (today + timedelta(days=2)).isoformat(), "relative"
    if "tomorrow" in lowered:
        return (today + timedelta(days=1)).isoformat(), "relative"
    if "today" in lowered or "tonight" in lowered:
        return today.isoformat(), "relative"

    in_days = _IN_DAYS_RE.search(lowered)
    if in_days:
        return (today + timedelta(days=int(in_days.group(1)))).isoformat(), "relative"

    weekday = _resolve_weekday(lowered, today)
    if weekday:
        return weekday, "weekday"

    bare = _BARE_DAY_RE.search(lowered) if allow_bare_day else None
    if bare:
        found = _safe_date(today.year, today.month, int(bare.group(1)))
        if found:
            return found, "day_of_month"

    return None


def clean_date_string(value, current_date: DateLike = None) -> CleanedDate:
    """
    Repair a date string into YYYY-MM-DD.

    Relative words, day ranges ("17-20" means the 17th of this month),
    truncated years ("20-17", "25-11-17") and free text with month names
    are understood. Anything else falls back to ``current_date`` with
    the fallback flag set.
    """
    today = _as_date(current_date)

    if not isinstance(value, str) or not value.strip():
        return CleanedDate(today.isoformat(), "default_today", fallback=True)

    text = value.strip()
    lowered = text.lower()

    if lowered == "today":
        return CleanedDate(today.isoformat(), "relative_today")
    if lowered == "tomorrow":
        return CleanedDate((today + timedelta(days=1)).isoformat(), "relative_tomorrow")
    if lowered == "yesterday":
        return CleanedDate((today - timedelta(days=1)).isoformat(), "relative_yesterday")

    if is_valid_date(text):
        return CleanedDate(text, "valid")

    parts = text.split("-")
    if all(p.strip().isdigit() for p in parts):
        parts = [p.strip() for p in parts]

        if len(parts) == 2:
            first, second = int(parts[0]), int(parts[1])
            if 1 <= first <= 31 and 1 <= second <= 31 and first < second:
                found = _safe_date(today.year, today.month, first)
                if found:
                    return CleanedDate(found, "date_range_start")
            if len(parts[0]) == 2 and 1 <= second <= 31:
                # Year prefix cut down to two digits, the day survived
                found = _safe_date(today.year, today.month, second)
                if found:
                    return CleanedDate(found, "truncated_year_day")

        if len(parts) == 3:
            if len(parts[0]) == 2 and len(parts[2]) <= 2:
                found = _safe_date(today.year, int(parts[1]), int(parts[2]))
                if found:
                    return CleanedDate(found, "truncated_year")
            if len(parts[2]) == 4:
                found = _safe_date(int(parts[2]), int(parts[1]), int(parts[0]))
                if found:
                    return CleanedDate(found, "day_first")
            if len(parts[0]) == 4:
                found = _safe_date(int(parts[0]), int(parts[1]), int(parts[2]))
                if found:
                    return CleanedDate(found, "padded")

    # A broken numeric date ("2025-02-30") holds no bare day worth salvaging
    extracted = _extract_date_from_text(text, today, allow_bare_day=not _DATE_SHAPED_RE.match(text))
    if extracted:
        found, method = extracted
        return CleanedDate(found, method)

    logger.debug(f"Unreadable date {value!r}, defaulting to {today.isoformat()}")
    return CleanedDate(today.isoformat(), "fallback", fallback=True)


def find_date_in_text(text: str, current_date: DateLike = None) -> Optional[str]:
    """
    A date mentioned somewhere in free text, or None.

    Bare numbers are not read as days here; in a whole sentence they are
    far more often durations or times.
    """
    if not text:
        return None
    extracted = _extract_date_from_text(text, _as_date(current_date), allow_bare_day=False)
    return extracted[0] if extracted else None


def clean_event_details(draft: EventDraft, current_date: DateLike = None) -> EventDraft:
    """Repair the date and time fields of a draft in place."""
    if draft.date and not is_valid_date(draft.date):
        cleaned = clean_date_string(draft.date, current_date)
        logger.debug(f"Fixed date {draft.date!r} -> {cleaned.value} ({cleaned.method})")
        draft.date = cleaned.value

    for name in ("start", "end"):
        value = getattr(draft, name)
        if value and not is_valid_time(value):
            fixed = clean_time_string(value)
            logger.debug(f"Fixed {name} {value!r} -> {fixed}")
            setattr(draft, name, fixed)

    return draft


def _day_window(first: date, last: date, tzinfo) -> Tuple[datetime, datetime]:
    start = datetime.combine(first, time.min, tzinfo=tzinfo)
    end = datetime.combine(last + timedelta(days=1), time.min, tzinfo=tzinfo)
    return start, end


def calculate_time_range(
    range_name: Optional[str],
    current_date: DateLike = None,
    tz: Optional[str] = None,
) -> TimeRangeQuery:
    """
    Resolve a named range to a day-aligned half-open window.

    Weeks start on Monday. Unknown names resolve to today.
    """
    today = _as_date(current_date)
    tzinfo = ZoneInfo(tz) if tz else None
    name = (range_name or "").strip().lower()

    if name == "yesterday":
        first = last = today - timedelta(days=1)
        description = "yesterday"
    elif name == "tomorrow":
        first = last = today + timedelta(days=1)
        description = "tomorrow"
    elif name == "this week":
        first = today - timedelta(days=today.weekday())
        last = first + timedelta(days=6)
        description = "this week"
    elif name in ("next week", "upcoming week"):
        first = today - timedelta(days=today.weekday()) + timedelta(days=7)
        last = first + timedelta(days=6)
        description = "next week"
    elif _NEXT_DAYS_RE.match(name):
        days = max(int(_NEXT_DAYS_RE.match(name).group(1)), 1)
        first = today
        last = today + timedelta(days=days - 1)
        description = f"the next {days} days"
    elif _NEXT_WEEKS_RE.match(name):
        weeks = max(int(_NEXT_WEEKS_RE.match(name).group(1)), 1)
        first = today
        last = today + timedelta(days=weeks * 7 - 1)
        description = f"the next {weeks} weeks"
    else:
        if name and name != "today":
            logger.debug(f"Unknown time range {range_name!r}, using today")
        name = "today"
        first = last = today
        description = "today"

    window_start, window_end = _day_window(first, last, tzinfo)
    return TimeRangeQuery(
        name=name,
        window_start=window_start,
        window_end=window_end,
        description=description,
    )
