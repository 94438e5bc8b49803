"""Named interval parser for summary queries.

Turns interval names such as ``"today"``, ``"last_7_days"`` or ``"all_time"``
into query Windows. Intervals that run up to the present are open-ended so the
cache can extend them; intervals that are already over are bounded.

Example:
    >>> parser = IntervalParser(datetime(2026, 1, 7, 15, 30))
    >>> parser.parse("yesterday")
    Window(start=datetime.datetime(2026, 1, 6, 0, 0), end=datetime.datetime(2026, 1, 7, 0, 0), open_ended=False)
"""

from datetime import datetime, timedelta
import re

from dateutil import parser as dateutil_parser

from .models import Window

INTERVAL_NAMES = (
    "today", "yesterday", "week", "month", "year",
    "last_week", "last_month", "last_year", "all_time", "any",
    "last_7_days", "last_30_days", "last_6_months", "last_12_hours",
    "7_days", "30_days", "6_months", "12_months",
)


class IntervalParser:
    """Parse interval names and date expressions into Windows.

    Supports:
    - Running intervals: "today", "week", "month", "year", "all_time" / "any"
    - Finished intervals: "yesterday", "last_week", "last_month"
    - Rolling intervals: "last_7_days", "7_days", "last 30 days",
      "last_12_hours", "6_months", "last_year". Hour windows start on a
      whole hour so repeated queries share a cache entry.
    - Dates: "2026-01-05", "2026-01-01 to 2026-01-07"

    Attributes:
        now: Reference datetime for relative calculations (defaults to now)
        today_start: Start of current day at midnight
    """

    def __init__(self, reference_time: datetime = None):
        self.now = reference_time or datetime.now()
        self.today_start = self.now.replace(hour=0, minute=0, second=0, microsecond=0)
        self._hour_start = self.now.replace(minute=0, second=0, microsecond=0)

    def parse(self, text: str) -> Window:
        """Parse an interval expression.

        Args:
            text: Interval name or date expression. Case, spaces and
                underscores are interchangeable.

        Returns:
            Window for the interval.

        Raises:
            ValueError: If the text cannot be parsed.
        """
        text = re.sub(r"[\s_]+", " ", text.lower().strip())

        patterns = {
            r'^(all time|any)$': lambda m: Window.all_time(self.now),
            r'^today$': lambda m: Window.since(self.today_start, self.now),
            r'^yesterday$': lambda m: Window(self.today_start - timedelta(days=1), self.today_start),
            r'^(this )?week$': lambda m: Window.since(
                self.today_start - timedelta(days=self.now.weekday()), self.now
            ),
            r'^(this )?month$': lambda m: Window.since(self.today_start.replace(day=1), self.now),
            r'^(this )?year$': lambda m: Window.since(
                self.today_start.replace(month=1, day=1), self.now
            ),
            r'^last week$': lambda m: self._last_week(),
            r'^last month$': lambda m: self._last_month(),
            r'^last year$': lambda m: Window.since(self._months_ago(12), self.now),
            r'^(?:(?:last|past) )?(\d+) days?$': lambda m: Window.since(
                self.today_start - timedelta(days=int(m.group(1))), self.now
            ),
            r'^(?:(?:last|past) )?(\d+) hours?$': lambda m: Window.since(
                self._hour_start - timedelta(hours=int(m.group(1))), self.now
            ),
            r'^(?:(?:last|past) )?(\d+) months?$': lambda m: Window.since(
                self._months_ago(int(m.group(1))), self.now
            ),
            r'^(\d{4}-\d{2}-\d{2})$': lambda m: self._date_range(m.group(1), m.group(1)),
            r'^(\d{4}-\d{2}-\d{2}) to (\d{4}-\d{2}-\d{2})$':
                lambda m: self._date_range(m.group(1), m.group(2)),
        }

        for pattern, handler in patterns.items():
            match = re.match(pattern, text)
            if match:
                return handler(match)

        # Only whole-text dates; a lone number would become a day of this month
        try:
            if text.isdigit():
                raise ValueError("bare number")
            parsed = dateutil_parser.parse(text, default=self.today_start)
        except (ValueError, OverflowError) as e:
            raise ValueError(
                f"Could not parse interval: {text} "
                f"(expected a date or one of {', '.join(INTERVAL_NAMES)})"
            ) from e
        day = parsed.replace(hour=0, minute=0, second=0, microsecond=0)
        return Window(day, day + timedelta(days=1))

    def _last_week(self) -> Window:
        """Monday to Monday of the previous week."""
        this_monday = self.today_start - timedelta(days=self.now.weekday())
        return Window(this_monday - timedelta(days=7), this_monday)

    def _last_month(self) -> Window:
        """First day of previous month to first day of this month."""
        first_of_this_month = self.today_start.replace(day=1)
        first_of_prev_month = (first_of_this_month - timedelta(days=1)).replace(day=1)
        return Window(first_of_prev_month, first_of_this_month)

    def _months_ago(self, months: int) -> datetime:
        """Midnight on the same day ``months`` months back, clamped to month end."""
        year, month = divmod(self.today_start.year * 12 + self.today_start.month - 1 - months, 12)
        day = self.today_start.day
        while True:
            try:
                return self.today_start.replace(year=year, month=month + 1, day=day)
            except ValueError:
                day -= 1

    def _date_range(self, start_str: str, end_str: str) -> Window:
        """Whole days from ``start_str`` through ``end_str`` inclusive."""
        start = datetime.strptime(start_str, '%Y-%m-%d')
        end = datetime.strptime(end_str, '%Y-%m-%d') + timedelta(days=1)
        return Window(start, end)
