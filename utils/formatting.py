"""
Formatting Utilities

Functions for formatting timestamps, durations, utilization percentages and
reporting window labels for display.
"""

import logging
from datetime import date, datetime
from typing import Optional

import pandas as pd
import pytz
from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)


def format_timestamp(timestamp, timezone: Optional[str] = None, fmt: str = "%Y-%m-%d %H:%M") -> str:
    """
    Convert an ISO 8601 string or datetime to a readable local time.

    Args:
        timestamp: ISO timestamp string, datetime object, or None
        timezone: Optional timezone name to convert aware values into
        fmt: strftime format

    Returns:
        Formatted timestamp string or empty string if missing
    """
    if timestamp is None or (not isinstance(timestamp, datetime) and pd.isna(timestamp)):
        return ""

    try:
        if isinstance(timestamp, str):
            dt_obj = dateutil_parser.isoparse(timestamp)
        elif isinstance(timestamp, datetime):
            dt_obj = timestamp
        else:
            dt_obj = dateutil_parser.isoparse(str(timestamp))
    except (ValueError, TypeError):
        # If parsing fails, return the original value
        return str(timestamp)

    if timezone and dt_obj.tzinfo is not None:
        dt_obj = dt_obj.astimezone(pytz.timezone(timezone))
    return dt_obj.strftime(fmt)


def format_time_range(start: datetime, end: datetime, timezone: Optional[str] = None) -> str:
    """'HH:MM - HH:MM', with dates when the range spans several days."""
    if timezone:
        tz = pytz.timezone(timezone)
        start, end = start.astimezone(tz), end.astimezone(tz)
    if start.date() == end.date():
        return f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}"
    return f"{start.strftime('%d %b %H:%M')} - {end.strftime('%d %b %H:%M')}"


def format_duration_hours(hours: float) -> str:
    """
    Format a duration in hours as '2h 30m', '45m' or '0m'.

    Example:
        >>> format_duration_hours(2.5)
        '2h 30m'
    """
    if hours is None or hours <= 0:
        return "0m"
    total_minutes = int(round(hours * 60))
    h, m = divmod(total_minutes, 60)
    if h and m:
        return f"{h}h {m}m"
    if h:
        return f"{h}h"
    return f"{m}m"


def format_percent(value: float, decimals: int = 1) -> str:
    if value is None or pd.isna(value):
        return "n/a"
    return f"{value:.{decimals}f}%"


def format_window_label(granularity: str, first_day: date, last_day: date, reference_date: date) -> str:
    """
    Heading for a reporting window.

    Returns:
        'Monday, 04 March 2024' for days, '04 Mar - 10 Mar 2024' for weeks,
        'March 2024' for months
    """
    if granularity == 'day':
        return reference_date.strftime("%A, %d %B %Y")
    if granularity == 'week':
        if first_day.year != last_day.year:
            return f"{first_day.strftime('%d %b %Y')} - {last_day.strftime('%d %b %Y')}"
        return f"{first_day.strftime('%d %b')} - {last_day.strftime('%d %b %Y')}"
    if granularity == 'month':
        return reference_date.strftime("%B %Y")
    logger.warning(f"Unknown granularity for label: {granularity}")
    return f"{first_day.isoformat()} - {last_day.isoformat()}"
