"""
Reporting Window Models

Time segments and the day / week / month reporting windows used by the
manufacturing calendar:
- Day windows cover one local calendar day
- Week windows cover 7 days starting on Monday
- Month windows cover a 6x7 grid starting on the Monday on/before the 1st
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional, Tuple, Union
import pytz
from dateutil.relativedelta import relativedelta

GRANULARITIES = ['day', 'week', 'month']
MONTH_GRID_DAYS = 42
DEFAULT_TIMEZONE = "Europe/Istanbul"

TimezoneLike = Union[str, pytz.BaseTzInfo, None]


def get_timezone(timezone: TimezoneLike = None) -> pytz.BaseTzInfo:
    """Resolve a timezone name (or an already built pytz zone)."""
    if timezone is None:
        return pytz.timezone(DEFAULT_TIMEZONE)
    if isinstance(timezone, str):
        return pytz.timezone(timezone)
    return timezone


def to_local(timestamp: datetime, timezone: TimezoneLike = None) -> datetime:
    """
    Convert a timestamp to the plant timezone.

    Naive timestamps are interpreted as plant-local wall clock time.
    """
    tz = get_timezone(timezone)
    if timestamp.tzinfo is None:
        return tz.localize(timestamp)
    return timestamp.astimezone(tz)


def localize(day: date, at: time, timezone: TimezoneLike = None) -> datetime:
    """Build the aware instant for a wall clock time on a given local day."""
    tz = get_timezone(timezone)
    return tz.localize(datetime.combine(day, at))


def start_of_day(day: date, timezone: TimezoneLike = None) -> datetime:
    return localize(day, time(0, 0), timezone)


def as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def week_start(day: Union[date, datetime]) -> date:
    """
    Monday on or before the given day.

    Sunday is ISO weekday 7, so a Sunday maps back six days rather than
    forward to the next Monday.
    """
    day = as_date(day)
    return day - timedelta(days=day.isoweekday() - 1)


def month_grid_start(day: Union[date, datetime]) -> date:
    """First cell of the 42-day month grid: the Monday on/before the 1st."""
    day = as_date(day)
    return week_start(day.replace(day=1))


def iter_days(first_day: date, count: int) -> Iterator[date]:
    for offset in range(count):
        yield first_day + timedelta(days=offset)


def local_dates(start: datetime, end: datetime, timezone: TimezoneLike = None) -> List[date]:
    """
    Local calendar dates touched by the half-open span [start, end).

    An end exactly at midnight does not touch the following day.
    """
    local_start = to_local(start, timezone)
    local_end = to_local(end, timezone)
    if local_end <= local_start:
        return []

    last_day = local_end.date()
    if local_end == start_of_day(last_day, timezone):
        last_day -= timedelta(days=1)

    days = []
    current = local_start.date()
    while current <= last_day:
        days.append(current)
        current += timedelta(days=1)
    return days


@dataclass(frozen=True)
class TimeSegment:
    """
    Half-open time range [start, end).

    Used for operation spans, working-hours windows and reporting windows.
    """
    start: datetime
    end: datetime
    description: str = ""

    def __post_init__(self):
        """Validate time segment"""
        if self.end <= self.start:
            raise ValueError(
                f"End time ({self.end}) must be after start time ({self.start})"
            )

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()

    @property
    def duration_hours(self) -> float:
        """Calculate segment duration in hours"""
        return self.duration_seconds / 3600.0

    def contains(self, timestamp: datetime) -> bool:
        """Check if timestamp falls within this segment"""
        return self.start <= timestamp < self.end

    def overlaps_with(self, other: 'TimeSegment') -> bool:
        """Check if this segment overlaps with another"""
        return not (self.end <= other.start or self.start >= other.end)

    def intersection(self, other: 'TimeSegment') -> Optional['TimeSegment']:
        """Return the overlapping part of two segments, or None."""
        overlap_start = max(self.start, other.start)
        overlap_end = min(self.end, other.end)
        if overlap_end <= overlap_start:
            return None
        return TimeSegment(overlap_start, overlap_end, self.description)

    def overlap_hours(self, other: 'TimeSegment') -> float:
        overlap = self.intersection(other)
        return overlap.duration_hours if overlap is not None else 0.0

    def __repr__(self) -> str:
        desc = f" ({self.description})" if self.description else ""
        return (
            f"TimeSegment({self.start.strftime('%Y-%m-%d %H:%M')} → "
            f"{self.end.strftime('%Y-%m-%d %H:%M')}{desc})"
        )


@dataclass(frozen=True)
class ReportingWindow:
    """
    A day, week or month range of local calendar days.

    The window spans [start of first_day, start of the day after the last
    day) in the plant timezone.
    """
    granularity: str
    reference_date: date
    first_day: date
    day_count: int
    timezone: str = DEFAULT_TIMEZONE

    def __post_init__(self):
        if self.granularity not in GRANULARITIES:
            raise ValueError(
                f"Invalid granularity: '{self.granularity}'. "
                f"Must be one of: {GRANULARITIES}"
            )
        if self.day_count <= 0:
            raise ValueError(f"day_count must be positive, got {self.day_count}")

    @property
    def tz(self) -> pytz.BaseTzInfo:
        return get_timezone(self.timezone)

    @property
    def days(self) -> List[date]:
        return list(iter_days(self.first_day, self.day_count))

    @property
    def last_day(self) -> date:
        return self.first_day + timedelta(days=self.day_count - 1)

    @property
    def start(self) -> datetime:
        return start_of_day(self.first_day, self.tz)

    @property
    def end(self) -> datetime:
        return start_of_day(self.last_day + timedelta(days=1), self.tz)

    @property
    def segment(self) -> TimeSegment:
        return TimeSegment(self.start, self.end, f"{self.granularity} window")

    def day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        """Aware [start, end) instants of a local day."""
        return start_of_day(day, self.tz), start_of_day(day + timedelta(days=1), self.tz)

    def is_in_month(self, day: date) -> bool:
        """Month grids pad with days of the adjacent months; those are out-of-month."""
        if self.granularity != 'month':
            return True
        return day.year == self.reference_date.year and day.month == self.reference_date.month

    def weeks(self) -> List['ReportingWindow']:
        """Split the window into consecutive 7-day week windows."""
        weeks = []
        for offset in range(0, self.day_count, 7):
            first = self.first_day + timedelta(days=offset)
            weeks.append(ReportingWindow(
                granularity='week',
                reference_date=first,
                first_day=first,
                day_count=min(7, self.day_count - offset),
                timezone=self.timezone
            ))
        return weeks

    def __repr__(self) -> str:
        return (
            f"ReportingWindow({self.granularity}, "
            f"{self.first_day.isoformat()} → {self.last_day.isoformat()}, "
            f"days={self.day_count})"
        )


def day_window(reference: Union[date, datetime], timezone: str = DEFAULT_TIMEZONE) -> ReportingWindow:
    day = as_date(reference)
    return ReportingWindow('day', day, day, 1, timezone)


def week_window(reference: Union[date, datetime], timezone: str = DEFAULT_TIMEZONE) -> ReportingWindow:
    day = as_date(reference)
    return ReportingWindow('week', day, week_start(day), 7, timezone)


def month_window(reference: Union[date, datetime], timezone: str = DEFAULT_TIMEZONE) -> ReportingWindow:
    day = as_date(reference)
    return ReportingWindow('month', day, month_grid_start(day), MONTH_GRID_DAYS, timezone)


def build_window(
    granularity: str,
    reference: Union[date, datetime],
    timezone: str = DEFAULT_TIMEZONE
) -> ReportingWindow:
    """
    Create the reporting window for a view granularity.

    Args:
        granularity: 'day', 'week' or 'month'
        reference: Any date inside the wanted period
        timezone: Plant timezone name

    Returns:
        ReportingWindow covering the period

    Raises:
        ValueError: If granularity is not recognized
    """
    builders = {
        'day': day_window,
        'week': week_window,
        'month': month_window,
    }
    if granularity not in builders:
        raise ValueError(
            f"Invalid granularity: '{granularity}'. Must be one of: {GRANULARITIES}"
        )
    return builders[granularity](reference, timezone)


def shift_reference(granularity: str, reference: Union[date, datetime], direction: str) -> date:
    """
    Move a reference date one period back or forward.

    Day views move by one day, week views by 7 days and month views by one
    calendar month (clamped to the last day of shorter months).
    """
    if direction not in ('prev', 'next'):
        raise ValueError(f"Invalid direction: '{direction}'. Must be 'prev' or 'next'")
    step = 1 if direction == 'next' else -1
    day = as_date(reference)

    if granularity == 'day':
        return day + timedelta(days=step)
    if granularity == 'week':
        return day + timedelta(days=7 * step)
    if granularity == 'month':
        return day + relativedelta(months=step)
    raise ValueError(
        f"Invalid granularity: '{granularity}'. Must be one of: {GRANULARITIES}"
    )
