"""
Timezone-safe calendar-date helpers.

Every date that enters the engines goes through `parse_local_date` / `to_local_date`.
Dates are plain `datetime.date` values built from calendar fields (year, month, day),
never from an epoch or a UTC parse, so there is no time-of-day to drift across zones.
Canonical storage format is YYYY-MM-DD.
"""

import re
from datetime import date, datetime, timedelta

import pandas as pd

# ISO first (storage format), then Thai display formats
ISO_DATE_REGEX = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})")
THAI_DATE_REGEX = re.compile(r"^(?P<day>\d{2})/(?P<month>\d{2})/(?P<year>\d{4})")
THAI_SHORT_DATE_REGEX = re.compile(r"^(?P<day>\d{2})/(?P<month>\d{2})/(?P<year>\d{2})$")

THAI_MONTHS = [
    "มกราคม", "กุมภาพันธ์", "มีนาคม", "เมษายน",
    "พฤษภาคม", "มิถุนายน", "กรกฎาคม", "สิงหาคม",
    "กันยายน", "ตุลาคม", "พฤศจิกายน", "ธันวาคม",
]

# Buddhist Era offset
BE_YEAR_OFFSET = 543

MISSING_DISPLAY = "-"


def _build(year, month, day):
    try:
        return date(year, month, day)
    except ValueError:
        # e.g. 31/02/2024
        return None


# --- Parsing ---

def parse_local_date(raw):
    """
    Parses 'YYYY-MM-DD', 'DD/MM/YYYY' or 'DD/MM/YY' (20YY) into a date.
    Returns None when nothing matches or the fields do not form a real date.
    """
    if not isinstance(raw, str) or not raw:
        return None
    raw = raw.strip()

    match = ISO_DATE_REGEX.match(raw)
    if match:
        return _build(int(match["year"]), int(match["month"]), int(match["day"]))

    match = THAI_DATE_REGEX.match(raw)
    if match:
        return _build(int(match["year"]), int(match["month"]), int(match["day"]))

    match = THAI_SHORT_DATE_REGEX.match(raw)
    if match:
        return _build(2000 + int(match["year"]), int(match["month"]), int(match["day"]))

    return None


def to_local_date(value):
    """
    Coerces a cell value (str, date, datetime, Timestamp, NaN/None) to a date or None.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, str):
        return parse_local_date(value)
    if isinstance(value, pd.Timestamp):
        return date(value.year, value.month, value.day)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def require_date(raw, field="date"):
    """
    Validating boundary for places where a date must be present.
    Raises ValueError naming the field instead of returning None.
    """
    d = to_local_date(raw)
    if d is None:
        raise ValueError(f"Invalid or missing {field}: '{raw}'")
    return d


# --- Today ---

def today_local():
    return date.today()


def today_iso():
    return format_iso(today_local())


# --- Arithmetic ---

def days_between(start, end):
    """Signed calendar-day difference end - start."""
    return (end - start).days


def duration_days(start, end):
    """
    Inclusive calendar-day count (same day = 1).
    Inverted ranges clamp to 0 rather than going negative.
    """
    return max(0, days_between(start, end) + 1)


def calc_duration_days(start_str, end_str):
    """
    Inclusive duration between two date strings.
    Returns 0 if either date is missing or invalid.
    """
    start = to_local_date(start_str)
    end = to_local_date(end_str)
    if start is None or end is None:
        return 0
    return duration_days(start, end)


def add_days(d, days):
    return d + timedelta(days=int(days))


def add_days_to_iso(date_str, days):
    """Shifts a date string by N days; unparseable input is returned unchanged."""
    d = to_local_date(date_str)
    if d is None:
        return date_str
    return format_iso(add_days(d, days))


# --- Comparisons ---

def is_weekend(d):
    return d.weekday() >= 5


def is_today(d, today=None):
    if today is None:
        today = today_local()
    return d == today


def is_iso_today(date_str, today=None):
    d = to_local_date(date_str)
    return d is not None and is_today(d, today=today)


def is_overdue(date_str, progress=0, today=None):
    """True when the date is before today and the task is not finished."""
    d = to_local_date(date_str)
    if d is None or (progress or 0) >= 100:
        return False
    if today is None:
        today = today_local()
    return d < today


# --- Formatting ---

def format_iso(d):
    if d is None:
        return ""
    return d.strftime("%Y-%m-%d")


def format_date_short(value):
    """dd/MM/yy, or '-' when missing."""
    d = to_local_date(value)
    if d is None:
        return MISSING_DISPLAY
    return d.strftime("%d/%m/%y")


def format_date_long(value):
    """dd/MM/yyyy, or '-' when missing."""
    d = to_local_date(value)
    if d is None:
        return MISSING_DISPLAY
    return d.strftime("%d/%m/%Y")


def format_date_thai(value):
    """Full Thai month name with Buddhist Era year, e.g. '15 มกราคม 2568'."""
    d = to_local_date(value)
    if d is None:
        return MISSING_DISPLAY
    return f"{d.day:02d} {THAI_MONTHS[d.month - 1]} {d.year + BE_YEAR_OFFSET}"


def format_date_range(start_value, end_value):
    """'dd/MM/yy - dd/MM/yy (Nd)'."""
    start = to_local_date(start_value)
    end = to_local_date(end_value)
    if start is None or end is None:
        return MISSING_DISPLAY
    diff = days_between(start, end) + 1
    return f"{format_date_short(start)} - {format_date_short(end)} ({diff}d)"
