"""Tests for interval name parsing."""

from datetime import datetime

import pytest

from rollup.intervals import INTERVAL_NAMES, IntervalParser
from rollup.models import MIN_INSTANT, Window

# A Wednesday afternoon
NOW = datetime(2026, 1, 7, 15, 30)


@pytest.fixture
def parser():
    return IntervalParser(NOW)


class TestIntervalParser:

    @pytest.mark.parametrize("name", ["all_time", "any", "All Time"])
    def test_all_time(self, parser, name):
        assert parser.parse(name) == Window(MIN_INSTANT, NOW, open_ended=True)

    def test_today_is_open_ended(self, parser):
        assert parser.parse("today") == Window(datetime(2026, 1, 7), NOW, open_ended=True)

    def test_yesterday_is_bounded(self, parser):
        assert parser.parse("yesterday") == Window(datetime(2026, 1, 6), datetime(2026, 1, 7))

    def test_week_starts_monday(self, parser):
        assert parser.parse("week").start == datetime(2026, 1, 5)

    def test_last_week(self, parser):
        assert parser.parse("last_week") == Window(datetime(2025, 12, 29), datetime(2026, 1, 5))

    def test_last_month(self, parser):
        assert parser.parse("last month") == Window(datetime(2025, 12, 1), datetime(2026, 1, 1))

    @pytest.mark.parametrize("name,start", [
        ("last_7_days", datetime(2025, 12, 31)),
        ("past 30 days", datetime(2025, 12, 8)),
        ("last_6_months", datetime(2025, 7, 7)),
        ("last_year", datetime(2025, 1, 7)),
    ])
    def test_rolling(self, parser, name, start):
        assert parser.parse(name) == Window(start, NOW, open_ended=True)

    def test_hours_start_on_the_hour(self, parser):
        assert parser.parse("last 2 hours") == Window(datetime(2026, 1, 7, 13), NOW, open_ended=True)

    def test_hour_window_is_stable_within_the_hour(self):
        earlier = IntervalParser(datetime(2026, 1, 7, 15, 1)).parse("last_12_hours")
        later = IntervalParser(datetime(2026, 1, 7, 15, 59)).parse("last_12_hours")
        assert earlier.start == later.start

    @pytest.mark.parametrize("name,start", [
        ("7_days", datetime(2025, 12, 31)),
        ("30_days", datetime(2025, 12, 8)),
        ("6_months", datetime(2025, 7, 7)),
        ("12_months", datetime(2025, 1, 7)),
    ])
    def test_prefix_is_optional(self, parser, name, start):
        assert parser.parse(name) == Window(start, NOW, open_ended=True)

    def test_single_date(self, parser):
        assert parser.parse("2026-01-01") == Window(datetime(2026, 1, 1), datetime(2026, 1, 2))

    def test_date_range(self, parser):
        assert parser.parse("2026-01-01 to 2026-01-03") == Window(datetime(2026, 1, 1), datetime(2026, 1, 4))

    def test_dateutil_fallback(self, parser):
        assert parser.parse("March 3 2025") == Window(datetime(2025, 3, 3), datetime(2025, 3, 4))

    def test_month_end_clamping(self):
        parser = IntervalParser(datetime(2026, 3, 31, 12))
        assert parser.parse("last 1 month").start == datetime(2026, 2, 28)

    def test_every_named_interval_parses(self, parser):
        for name in INTERVAL_NAMES:
            parser.parse(name).validate()

    @pytest.mark.parametrize("text", ["whenever works", "last_2_weeks", "12", "in 3 days"])
    def test_rejected(self, parser, text):
        with pytest.raises(ValueError):
            parser.parse(text)
