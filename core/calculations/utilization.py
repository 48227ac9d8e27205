"""
Machine Utilization Calculator

Utilization of a machine over a reporting window:
    utilization % = clipped busy hours / standard capacity hours × 100

- Busy time is clipped to the window and to each day's working hours
- Each day contributes the MAX overlap across operations, never the sum,
  and never more than the machine's daily capacity
- Capacity = each working day's capacity, prorated when the window covers
  only part of that day's working hours
- Month utilization = the week calculation applied per grid week, summed

The percentage is not capped, but per-day capping keeps busy time within
capacity. Double-booked machines are reported by core.calendar.conflicts.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple
import pandas as pd

from core.calendar.dedup import deduplicate_operations
from core.calendar.models import Machine, Operation
from core.calendar.windows import ReportingWindow, TimeSegment, TimezoneLike, get_timezone, local_dates
from core.calculations.allocation import is_over_scheduled

logger = logging.getLogger(__name__)


@dataclass
class UtilizationResult:
    """Container for utilization calculation results"""
    machine_id: str
    window_start: datetime
    window_end: datetime
    busy_hours: float
    capacity_hours: float
    percent: float
    daily_busy_hours: Dict[date, float] = field(default_factory=dict)
    operation_count: int = 0
    duplicates_removed: int = 0

    @property
    def is_over_scheduled(self) -> bool:
        return is_over_scheduled(self.percent)

    def to_dict(self) -> Dict:
        """Convert to dictionary for easy display"""
        return {
            'machine_id': self.machine_id,
            'window_start': self.window_start.isoformat(),
            'window_end': self.window_end.isoformat(),
            'busy_hours': round(self.busy_hours, 2),
            'capacity_hours': round(self.capacity_hours, 2),
            'utilization_percent': round(self.percent, 1),
            'is_over_scheduled': self.is_over_scheduled,
            'operation_count': self.operation_count,
        }


def window_days(window_start: datetime, window_end: datetime, timezone: TimezoneLike = None) -> List[date]:
    """Local calendar days touched by [window_start, window_end)."""
    return local_dates(window_start, window_end, timezone)


def working_day_capacity(
    machine: Machine,
    day: date,
    window: TimeSegment,
    timezone: TimezoneLike = None
) -> Tuple[Optional[TimeSegment], float]:
    """
    Working hours of one local day inside the window, and their capacity.

    A day whose working hours lie fully inside the window has the machine's
    daily capacity; a partly covered day gets that capacity prorated by the
    covered share of its working span.

    Returns:
        Tuple of (clipped working segment or None, capacity hours)
    """
    hours = machine.working_hours
    working = hours.segment_for(day, timezone)
    if working is None:
        return None, 0.0

    clipped = working.intersection(window)
    if clipped is None:
        return None, 0.0

    if clipped == working:
        return clipped, hours.daily_capacity_hours
    share = clipped.duration_seconds / working.duration_seconds
    return clipped, hours.daily_capacity_hours * share


def calculate_capacity_hours(
    machine: Machine,
    window_start: datetime,
    window_end: datetime,
    timezone: TimezoneLike = None
) -> float:
    """
    Standard capacity of a machine over a window.

    Returns:
        Sum over the window's working days of each day's capacity; equal to
        daily capacity × working days for windows aligned to local midnight
    """
    window = TimeSegment(window_start, window_end, "capacity window")
    return sum(
        working_day_capacity(machine, day, window, timezone)[1]
        for day in window_days(window_start, window_end, timezone)
    )


def calculate_daily_busy_hours(
    machine: Machine,
    operations: Iterable[Operation],
    window_start: datetime,
    window_end: datetime,
    timezone: TimezoneLike = None
) -> Dict[date, float]:
    """
    Busy hours per working day of the window.

    For every working day, each operation is clipped to the window and to
    that day's working hours; the day's value is the largest such overlap,
    capped at that day's capacity. Days without working hours inside the
    window are omitted.

    Args:
        machine: Machine whose working-hours calendar applies
        operations: Operations already restricted to this machine
        window_start: Window start (inclusive)
        window_end: Window end (exclusive)
        timezone: Plant timezone

    Returns:
        Dictionary of local date -> busy hours, one entry per working day
    """
    tz = get_timezone(timezone)
    window = TimeSegment(window_start, window_end, "utilization window")

    # Clip to the window once; operations outside it drop out here
    clipped = []
    for operation in operations:
        segment = operation.segment.intersection(window)
        if segment is not None:
            clipped.append(segment)

    daily: Dict[date, float] = {}
    for day in window_days(window_start, window_end, tz):
        working, day_capacity = working_day_capacity(machine, day, window, tz)
        if working is None:
            continue

        day_max = 0.0
        for segment in clipped:
            day_max = max(day_max, segment.overlap_hours(working))

        daily[day] = min(day_max, day_capacity)

    return daily


def compute_utilization(
    machine: Machine,
    operations: Iterable[Operation],
    window_start: datetime,
    window_end: datetime,
    timezone: TimezoneLike = None
) -> UtilizationResult:
    """
    Calculate utilization of one machine for a day or week window.

    Only operations assigned to this machine are considered; duplicates are
    removed before any duration math.

    Args:
        machine: Machine with its working-hours calendar
        operations: Operations (may include other machines' operations)
        window_start: Window start (inclusive, timezone-aware)
        window_end: Window end (exclusive, timezone-aware)
        timezone: Plant timezone for day boundaries

    Returns:
        UtilizationResult; percent is 0 when the window has no capacity

    Raises:
        ValueError: If window_end is not after window_start

    Example:
        >>> week = week_window(date(2024, 3, 4))
        >>> result = compute_utilization(machine, operations, week.start, week.end, week.tz)
        >>> print(f"{machine.name}: {result.percent:.1f}%")
    """
    if window_end <= window_start:
        raise ValueError(
            f"Window end ({window_end}) must be after window start ({window_start})"
        )

    operations = list(operations)
    unique = deduplicate_operations(operations)
    duplicates_removed = len(operations) - len(unique)

    machine_operations = [op for op in unique if op.machine_id == machine.id]
    in_window = [op for op in machine_operations if op.overlaps(window_start, window_end)]

    daily = calculate_daily_busy_hours(machine, in_window, window_start, window_end, timezone)
    busy_hours = sum(daily.values())
    capacity_hours = calculate_capacity_hours(machine, window_start, window_end, timezone)
    percent = (busy_hours / capacity_hours * 100.0) if capacity_hours > 0 else 0.0

    logger.debug(
        f"Utilization {machine.id}: {busy_hours:.2f}h / {capacity_hours:.2f}h = {percent:.1f}% "
        f"({len(in_window)} operations)"
    )

    return UtilizationResult(
        machine_id=machine.id,
        window_start=window_start,
        window_end=window_end,
        busy_hours=busy_hours,
        capacity_hours=capacity_hours,
        percent=percent,
        daily_busy_hours=daily,
        operation_count=len(in_window),
        duplicates_removed=duplicates_removed,
    )


def compute_month_utilization(
    machine: Machine,
    operations: Iterable[Operation],
    window: ReportingWindow
) -> Tuple[UtilizationResult, List[UtilizationResult]]:
    """
    Month utilization as the sum of the week calculation over each grid week.

    Returns:
        Tuple of (month total, per-week results in grid order). The total's
        percent is the summed weekly busy hours over the summed weekly capacity.
    """
    operations = deduplicate_operations(operations)

    weekly = [
        compute_utilization(machine, operations, week.start, week.end, week.tz)
        for week in window.weeks()
    ]

    busy_hours = sum(w.busy_hours for w in weekly)
    capacity_hours = sum(w.capacity_hours for w in weekly)
    percent = (busy_hours / capacity_hours * 100.0) if capacity_hours > 0 else 0.0

    daily: Dict[date, float] = {}
    for week in weekly:
        daily.update(week.daily_busy_hours)

    total = UtilizationResult(
        machine_id=machine.id,
        window_start=window.start,
        window_end=window.end,
        busy_hours=busy_hours,
        capacity_hours=capacity_hours,
        percent=percent,
        daily_busy_hours=daily,
        operation_count=len([
            op for op in operations
            if op.machine_id == machine.id and op.overlaps(window.start, window.end)
        ]),
    )
    return total, weekly


def utilization_table(
    results: Iterable[UtilizationResult],
    machine_names: Optional[Dict[str, str]] = None
) -> pd.DataFrame:
    """
    Tabulate utilization results, highest utilization first.

    Args:
        results: UtilizationResult objects
        machine_names: Optional machine id -> display name map

    Returns:
        DataFrame with machine, busy/capacity hours, utilization and flag columns
    """
    machine_names = machine_names or {}
    rows = []
    for result in results:
        row = result.to_dict()
        row['machine_name'] = machine_names.get(result.machine_id, result.machine_id)
        rows.append(row)

    columns = [
        'machine_id', 'machine_name', 'busy_hours', 'capacity_hours',
        'utilization_percent', 'is_over_scheduled', 'operation_count'
    ]
    if not rows:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rows)[columns]
    return df.sort_values(
        ['utilization_percent', 'machine_id'], ascending=[False, True]
    ).reset_index(drop=True)
