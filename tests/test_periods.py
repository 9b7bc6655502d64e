"""
Tests for the Period Normalizer.

Covers date parsing of both export formats, bucket keys and labels for
every periodicity, weekly range labels and range helpers.
"""
import pytest
from datetime import date

from src.core.error_taxonomy import ErrorCategory, ErrorCollector
from src.core.periods import (
    Periodicity,
    bucket_range,
    buckets_in_range,
    filter_by_date_range,
    format_day_month_year,
    label_buckets,
    parse_date,
    period_key_of,
    week_number,
)


class TestParseDate:
    """Tests for parse_date."""

    def test_iso_and_compact_formats_agree(self):
        """The same calendar day in both formats parses to the same date."""
        assert parse_date("2025-08-01") == parse_date("01-Aug-25") == date(2025, 8, 1)

    def test_single_digit_day_and_lowercase_month(self):
        """Compact dates accept a one-digit day and any month case."""
        assert parse_date("1-aug-25") == date(2025, 8, 1)
        assert parse_date("15-SEP-24") == date(2024, 9, 15)

    def test_two_digit_year_is_this_century(self):
        """Two-digit years always resolve to 20YY."""
        assert parse_date("01-Jan-99") == date(2099, 1, 1)

    def test_surrounding_whitespace_ignored(self):
        assert parse_date("  2025-03-04 ") == date(2025, 3, 4)

    @pytest.mark.parametrize("raw", ["31-Feb-25", "2025-13-01", "2025/08/01", "Aug 1 2025", "", "01-Foo-25"])
    def test_unreadable_dates_return_none(self, raw):
        """Impossible or unsupported dates return None instead of raising."""
        assert parse_date(raw) is None

    def test_non_string_returns_none(self):
        assert parse_date(None) is None
        assert parse_date(20250801) is None

    def test_date_objects_pass_through(self):
        assert parse_date(date(2025, 1, 2)) == date(2025, 1, 2)

    def test_failures_are_recorded(self):
        """A collector receives one DATE_PARSE_FAILURE per unreadable date."""
        errors = ErrorCollector()
        parse_date("31-Feb-25", errors)
        parse_date("garbage", errors)
        assert errors.count(ErrorCategory.DATE_PARSE_FAILURE) == 2


class TestWeekNumber:
    """Tests for Sunday-based week numbering."""

    def test_first_days_of_year_are_week_one(self):
        """Jan 1 2025 is a Wednesday; Jan 1..4 share week 1."""
        assert week_number(date(2025, 1, 1)) == 1
        assert week_number(date(2025, 1, 4)) == 1

    def test_week_turns_over_on_sunday(self):
        assert week_number(date(2025, 1, 5)) == 2

    def test_mid_year(self):
        assert week_number(date(2025, 8, 15)) == 33


class TestPeriodKeyOf:
    """Tests for bucket keys and labels."""

    def test_daily(self):
        bucket = period_key_of(date(2025, 8, 5), "daily")
        assert bucket.key == "2025-08-05"
        assert bucket.label == "5-Aug-25"

    def test_weekly_key_has_no_label_yet(self):
        """Weekly labels need the whole data set, so the key comes back unlabelled."""
        bucket = period_key_of(date(2025, 8, 15), Periodicity.WEEKLY)
        assert bucket.key == "2025-W33"
        assert bucket.label == ""

    def test_monthly(self):
        bucket = period_key_of(date(2025, 8, 15), "monthly")
        assert (bucket.key, bucket.label) == ("2025-08", "Aug-25")

    def test_quarters_are_calendar_quarters(self):
        assert period_key_of(date(2025, 3, 31), "quarterly").key == "2025-Q1"
        assert period_key_of(date(2025, 4, 1), "quarterly").key == "2025-Q2"
        assert period_key_of(date(2025, 8, 15), "quarterly").label == "Q3-25"

    def test_yearly(self):
        bucket = period_key_of(date(2025, 8, 15), "yearly")
        assert (bucket.key, bucket.label) == ("2025", "2025")

    @pytest.mark.parametrize("periodicity", list(Periodicity))
    def test_same_input_same_key(self, periodicity):
        """Calling twice on the same (date, periodicity) yields identical buckets."""
        d = date(2025, 11, 30)
        assert period_key_of(d, periodicity) == period_key_of(d, periodicity)

    @pytest.mark.parametrize("periodicity", list(Periodicity))
    def test_bucket_range_round_trip(self, periodicity):
        """Both ends of a bucket's range map back to the same key."""
        key = period_key_of(date(2025, 8, 15), periodicity).key
        start, end = bucket_range(key, periodicity)
        assert start <= date(2025, 8, 15) <= end
        assert period_key_of(start, periodicity).key == key
        assert period_key_of(end, periodicity).key == key

    def test_unknown_periodicity_raises(self):
        with pytest.raises(ValueError):
            period_key_of(date(2025, 1, 1), "fortnightly")


class TestLabels:
    """Tests for the second labelling pass."""

    def test_weekly_label_spans_dates_present(self):
        buckets = label_buckets([date(2025, 8, 14), date(2025, 8, 11)], Periodicity.WEEKLY)
        assert buckets["2025-W33"].label == "11-Aug to 14-Aug"

    def test_monthly_labels_need_no_second_pass(self):
        buckets = label_buckets([date(2025, 1, 3), date(2025, 2, 9)], "monthly")
        assert [b.label for b in buckets.values()] == ["Jan-25", "Feb-25"]

    def test_format_day_month_year(self):
        assert format_day_month_year(date(2030, 12, 9)) == "9-Dec-30"


class TestRanges:
    """Tests for range helpers."""

    def test_buckets_in_range_monthly(self):
        keys = buckets_in_range(date(2025, 1, 15), date(2025, 4, 2), "monthly")
        assert keys == ["2025-01", "2025-02", "2025-03", "2025-04"]

    def test_buckets_in_range_quarterly(self):
        assert buckets_in_range(date(2025, 1, 15), date(2025, 4, 2), "quarterly") == ["2025-Q1", "2025-Q2"]

    def test_filter_excludes_unparseable_dates(self):
        """Records with unreadable dates are never kept by a range filter."""
        raw = ["2025-04-01", "bad", "03-Apr-25", "2025-05-01"]
        kept = filter_by_date_range(raw, date(2025, 4, 1), date(2025, 4, 30), lambda d: d)
        assert kept == ["2025-04-01", "03-Apr-25"]
