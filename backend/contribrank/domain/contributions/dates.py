"""UTC calendar-day helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List, Optional


def today_utc(now: Optional[datetime] = None) -> date:
	now = now or datetime.now(timezone.utc)
	return now.astimezone(timezone.utc).date()


def parse_day(value: str) -> date:
	"""Parse a ``YYYY-MM-DD`` string into a calendar day."""
	return date.fromisoformat(value)


def iter_days(from_day: date, to_day: date) -> Iterator[date]:
	"""Yield every day of the inclusive range."""
	current = from_day
	while current <= to_day:
		yield current
		current += timedelta(days=1)


def day_buckets(from_day: date, to_day: date) -> List[date]:
	return list(iter_days(from_day, to_day))


def window_start(today: date, days: int) -> date:
	"""First day of an N-day trailing window ending on ``today`` inclusive."""
	return today - timedelta(days=days - 1)


def day_bounds(day: date) -> tuple[datetime, datetime]:
	"""Half-open ``[start, end)`` UTC datetimes covering a calendar day."""
	start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
	return start, start + timedelta(days=1)


def yesterday_and_today(now: Optional[datetime] = None) -> tuple[date, date]:
	today = today_utc(now)
	return today - timedelta(days=1), today
