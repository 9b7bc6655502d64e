"""
Period Normalizer

Turns the date strings found in Tally exports into calendar dates and
derives sortable period keys and display labels for report charts.

Key Concepts:
- Two input formats are accepted: ISO "2025-08-01" and compact "01-Aug-25"
- Two-digit years always resolve to 20YY
- Quarters are calendar quarters (Jan-Mar = Q1), not fiscal quarters
- Weekly labels describe the dates actually present in the bucket
  ("3-Aug to 7-Aug"), so they can only be assigned once every record
  of the bucket is known. All other labels derive from a single date.
"""
import logging
import math
import re
from datetime import date, datetime, timedelta
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar, Union
from enum import Enum
import calendar

from src.core.error_taxonomy import ErrorCategory, ErrorCollector, record_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

MONTH_ABBREVIATIONS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
                       "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
_MONTH_INDEX = {name.lower(): i + 1 for i, name in enumerate(MONTH_ABBREVIATIONS)}

_ISO_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_COMPACT_PATTERN = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{2})$")


class Periodicity(Enum):
    """Granularity of a period bucket."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @classmethod
    def coerce(cls, value: Union[str, "Periodicity"]) -> "Periodicity":
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())


@dataclass(frozen=True)
class PeriodBucket:
    """A sortable period key with its display label."""
    key: str
    label: str
    periodicity: Periodicity

    def with_label(self, label: str) -> "PeriodBucket":
        return replace(self, label=label)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "periodicity": self.periodicity.value,
        }


def parse_date(raw: Any, errors: Optional[ErrorCollector] = None) -> Optional[date]:
    """
    Parse a record date into a calendar date.

    Accepts "YYYY-MM-DD" and "DD-Mmm-YY". Returns None for anything else,
    including impossible dates such as "31-Feb-25". Never raises.
    """
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        record_error(errors, ErrorCategory.DATE_PARSE_FAILURE, f"non-string date {raw!r}", phase="normalize")
        return None

    value = raw.strip()
    try:
        match = _ISO_PATTERN.match(value)
        if match:
            year, month, day = (int(g) for g in match.groups())
            return date(year, month, day)

        match = _COMPACT_PATTERN.match(value)
        if match:
            day_text, month_text, year_text = match.groups()
            month = _MONTH_INDEX.get(month_text.lower())
            if month is not None:
                return date(2000 + int(year_text), month, int(day_text))
    except ValueError:
        pass

    record_error(errors, ErrorCategory.DATE_PARSE_FAILURE, f"unrecognised date {raw!r}", phase="normalize")
    return None


def week_number(d: date) -> int:
    """
    Week of year counting from Jan 1, with weeks turning over on Sunday.

    ceil((days since Jan 1 + weekday of Jan 1 + 1) / 7), weekday Sunday = 0.
    """
    jan1 = date(d.year, 1, 1)
    jan1_weekday = jan1.isoweekday() % 7
    return math.ceil(((d - jan1).days + jan1_weekday + 1) / 7)


def format_day_month_year(d: date) -> str:
    """5-Jan-25"""
    return f"{d.day}-{MONTH_ABBREVIATIONS[d.month - 1]}-{d.year % 100:02d}"


def format_day_month(d: date) -> str:
    """5-Jan"""
    return f"{d.day}-{MONTH_ABBREVIATIONS[d.month - 1]}"


def period_key_of(d: date, periodicity: Union[str, Periodicity]) -> PeriodBucket:
    """
    Derive the period bucket for a date.

    Weekly buckets come back with an empty label; use assign_weekly_labels
    or label_buckets once the whole data set is known.
    """
    periodicity = Periodicity.coerce(periodicity)
    short_year = f"{d.year % 100:02d}"

    if periodicity == Periodicity.DAILY:
        return PeriodBucket(d.isoformat(), format_day_month_year(d), periodicity)
    if periodicity == Periodicity.WEEKLY:
        return PeriodBucket(f"{d.year}-W{week_number(d):02d}", "", periodicity)
    if periodicity == Periodicity.MONTHLY:
        return PeriodBucket(
            f"{d.year}-{d.month:02d}",
            f"{MONTH_ABBREVIATIONS[d.month - 1]}-{short_year}",
            periodicity,
        )
    if periodicity == Periodicity.QUARTERLY:
        quarter = (d.month - 1) // 3 + 1
        return PeriodBucket(f"{d.year}-Q{quarter}", f"Q{quarter}-{short_year}", periodicity)
    return PeriodBucket(str(d.year), str(d.year), periodicity)


def weekly_label(dates: Iterable[date]) -> str:
    """Label a weekly bucket by the first and last date present in it."""
    ordered = sorted(dates)
    if not ordered:
        return ""
    return f"{format_day_month(ordered[0])} to {format_day_month(ordered[-1])}"


def assign_weekly_labels(dates_by_key: Dict[str, Iterable[date]]) -> Dict[str, str]:
    """Second pass for weekly buckets: map each key to its range label."""
    return {key: weekly_label(dates) for key, dates in dates_by_key.items()}


def label_buckets(
    dates: Iterable[date],
    periodicity: Union[str, Periodicity],
) -> Dict[str, PeriodBucket]:
    """
    Build the final bucket for every key touched by dates.

    Runs both passes: keys first, then weekly range labels.
    """
    periodicity = Periodicity.coerce(periodicity)
    buckets: Dict[str, PeriodBucket] = {}
    seen: Dict[str, List[date]] = {}

    for d in dates:
        bucket = period_key_of(d, periodicity)
        buckets.setdefault(bucket.key, bucket)
        if periodicity == Periodicity.WEEKLY:
            seen.setdefault(bucket.key, []).append(d)

    if periodicity == Periodicity.WEEKLY:
        for key, label in assign_weekly_labels(seen).items():
            buckets[key] = buckets[key].with_label(label)

    return buckets


def bucket_range(key: str, periodicity: Union[str, Periodicity]) -> Tuple[date, date]:
    """
    Get the first and last calendar date covered by a bucket key.

    Weekly ranges are clipped to the calendar year, matching week_number.
    """
    periodicity = Periodicity.coerce(periodicity)

    if periodicity == Periodicity.DAILY:
        d = date.fromisoformat(key)
        return d, d

    if periodicity == Periodicity.WEEKLY:
        year_text, week_text = key.split("-W")
        year, week = int(year_text), int(week_text)
        jan1 = date(year, 1, 1)
        offset = jan1.isoweekday() % 7
        start = jan1 + timedelta(days=max(0, 7 * (week - 1) - offset))
        end = jan1 + timedelta(days=7 * week - 1 - offset)
        return start, min(end, date(year, 12, 31))

    if periodicity == Periodicity.MONTHLY:
        year, month = (int(p) for p in key.split("-"))
        return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])

    if periodicity == Periodicity.QUARTERLY:
        year_text, quarter_text = key.split("-Q")
        year, quarter = int(year_text), int(quarter_text)
        first_month = 3 * (quarter - 1) + 1
        last_month = first_month + 2
        return (
            date(year, first_month, 1),
            date(year, last_month, calendar.monthrange(year, last_month)[1]),
        )

    year = int(key)
    return date(year, 1, 1), date(year, 12, 31)


def buckets_in_range(
    start: date,
    end: date,
    periodicity: Union[str, Periodicity],
) -> List[str]:
    """All bucket keys touched by the inclusive range start..end, ascending."""
    periodicity = Periodicity.coerce(periodicity)
    keys: List[str] = []
    current = start
    while current <= end:
        key = period_key_of(current, periodicity).key
        if not keys or keys[-1] != key:
            keys.append(key)
        _, bucket_end = bucket_range(key, periodicity)
        current = bucket_end + timedelta(days=1)
    return keys


def filter_by_date_range(
    items: Iterable[T],
    start: date,
    end: date,
    date_getter: Callable[[T], Any],
    errors: Optional[ErrorCollector] = None,
) -> List[T]:
    """
    Keep items whose date falls within start..end inclusive.

    Items with unparseable dates are excluded, never included by default.
    """
    kept = []
    for item in items:
        item_date = parse_date(date_getter(item), errors)
        if item_date is not None and start <= item_date <= end:
            kept.append(item)
    return kept
