"""
Calendar View Builder

Turns an operation snapshot into a day, week or month view:

    dedupe -> filter -> window selection -> dependency sort -> dependency
    validation -> day buckets -> machine utilization -> resource conflicts
    and free slots -> over-allocation -> stats

The builder is pure: operations and machines go in, a new CalendarView comes
out. Nothing here fetches data or keeps state between builds.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .conflicts import MachineConflict, available_slots, conflicts_by_operation, detect_conflicts
from .dedup import deduplicate_operations
from .dependencies import DependencyViolation, sort_by_dependencies, validate_dependencies, violations_by_operation
from .filters import CalendarFilter, filter_operations, filter_operations_by_window, operations_to_dataframe
from .models import DataQualityWarning, Machine, Operation
from .windows import DEFAULT_TIMEZONE, ReportingWindow, TimeSegment, build_window
from core.calculations.allocation import is_over_scheduled, over_allocated_machines, utilization_level
from core.calculations.utilization import UtilizationResult, compute_month_utilization, compute_utilization

logger = logging.getLogger(__name__)

UNASSIGNED_MACHINE = 'unassigned'
MACHINE_STATUSES = ['running', 'scheduled', 'idle']
DEFAULT_LOOKAHEAD_HOURS = 2.0


@dataclass
class DayBucket:
    """Operations touching one local calendar day."""
    date: date
    operations: List[Operation] = field(default_factory=list)
    machine_buckets: Dict[str, List[Operation]] = field(default_factory=dict)
    in_month: bool = True

    @property
    def operation_count(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'in_month': self.in_month,
            'operation_ids': [op.id for op in self.operations],
            'machines': {mid: [op.id for op in ops] for mid, ops in self.machine_buckets.items()},
        }


@dataclass
class MachineSummary:
    """Per-machine row of a view: utilization, load flag and live status."""
    machine_id: str
    machine_name: str
    machine_type: str
    is_active: bool
    utilization_percent: float
    busy_hours: float
    capacity_hours: float
    operation_count: int
    status: str = 'idle'
    current_operation: Optional[Operation] = None
    next_operation: Optional[Operation] = None
    weekly_utilization: List[UtilizationResult] = field(default_factory=list)
    available_slots: List[TimeSegment] = field(default_factory=list)
    conflict_count: int = 0

    def __post_init__(self):
        if self.status not in MACHINE_STATUSES:
            raise ValueError(f"Invalid machine status: {self.status}. Must be one of {MACHINE_STATUSES}")

    @property
    def is_over_scheduled(self) -> bool:
        return is_over_scheduled(self.utilization_percent)

    @property
    def utilization_level(self) -> str:
        return utilization_level(self.utilization_percent)

    @property
    def available_hours(self) -> float:
        return sum(slot.duration_hours for slot in self.available_slots)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for easy display"""
        return {
            'machine_id': self.machine_id,
            'machine_name': self.machine_name,
            'machine_type': self.machine_type,
            'is_active': self.is_active,
            'utilization_percent': round(self.utilization_percent, 1),
            'busy_hours': round(self.busy_hours, 2),
            'capacity_hours': round(self.capacity_hours, 2),
            'is_over_scheduled': self.is_over_scheduled,
            'operation_count': self.operation_count,
            'status': self.status,
            'current_operation': self.current_operation.id if self.current_operation else None,
            'next_operation': self.next_operation.id if self.next_operation else None,
            'weekly_utilization': [round(w.percent, 1) for w in self.weekly_utilization],
            'available_hours': round(self.available_hours, 2),
            'available_slots': [
                {'start': slot.start.isoformat(), 'end': slot.end.isoformat()}
                for slot in self.available_slots
            ],
            'conflict_count': self.conflict_count,
        }


@dataclass
class ViewStats:
    """Window totals; each operation is counted once per window."""
    total_operations: int = 0
    manufacturing: int = 0
    maintenance: int = 0
    completed: int = 0
    delayed: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)
    by_priority: Dict[str, int] = field(default_factory=dict)
    average_utilization: float = 0.0
    machine_utilization: Dict[str, float] = field(default_factory=dict)
    over_allocated_count: int = 0
    conflict_count: int = 0

    @classmethod
    def from_view_parts(
        cls,
        operations: List[Operation],
        summaries: List[MachineSummary],
        conflicts: Optional[List[MachineConflict]] = None
    ) -> 'ViewStats':
        df = operations_to_dataframe(operations)

        def counts(column: str) -> Dict[str, int]:
            if df.empty:
                return {}
            return {str(k): int(v) for k, v in df[column].value_counts().items()}

        by_status = counts('status')
        by_type = counts('type')
        utilizations = [s.utilization_percent for s in summaries]

        return cls(
            total_operations=len(df),
            manufacturing=by_type.get('manufacturing', 0),
            maintenance=by_type.get('maintenance', 0),
            completed=by_status.get('completed', 0),
            delayed=by_status.get('delayed', 0),
            by_status=by_status,
            by_type=by_type,
            by_priority=counts('priority'),
            average_utilization=sum(utilizations) / len(utilizations) if utilizations else 0.0,
            machine_utilization={s.machine_id: round(s.utilization_percent, 1) for s in summaries},
            over_allocated_count=len(over_allocated_machines(summaries)),
            conflict_count=len(conflicts or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_operations': self.total_operations,
            'manufacturing': self.manufacturing,
            'maintenance': self.maintenance,
            'completed': self.completed,
            'delayed': self.delayed,
            'by_status': dict(self.by_status),
            'by_type': dict(self.by_type),
            'by_priority': dict(self.by_priority),
            'average_utilization': round(self.average_utilization, 1),
            'machine_utilization': dict(self.machine_utilization),
            'over_allocated_count': self.over_allocated_count,
            'conflict_count': self.conflict_count,
        }


@dataclass
class CalendarView:
    """Result of one view build."""
    granularity: str
    reference_date: date
    start: datetime
    end: datetime
    days: List[DayBucket]
    machine_summaries: List[MachineSummary]
    stats: ViewStats
    operations: List[Operation] = field(default_factory=list)
    violations: List[DependencyViolation] = field(default_factory=list)
    conflicts: List[MachineConflict] = field(default_factory=list)
    warnings: List[DataQualityWarning] = field(default_factory=list)

    def get_day(self, day: date) -> Optional[DayBucket]:
        for bucket in self.days:
            if bucket.date == day:
                return bucket
        return None

    def get_machine(self, machine_id: str) -> Optional[MachineSummary]:
        for summary in self.machine_summaries:
            if summary.machine_id == machine_id:
                return summary
        return None

    def violations_for(self, operation_id: str) -> List[DependencyViolation]:
        """Dependency violations in which the operation starts too early."""
        return violations_by_operation(self.violations).get(operation_id, [])

    def conflicts_for(self, operation_id: str) -> List[MachineConflict]:
        """Machine and operator conflicts the operation takes part in."""
        return conflicts_by_operation(self.conflicts).get(operation_id, [])

    @property
    def over_allocated(self) -> List[MachineSummary]:
        return over_allocated_machines(self.machine_summaries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'granularity': self.granularity,
            'reference_date': self.reference_date.isoformat(),
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'days': [d.to_dict() for d in self.days],
            'machine_summaries': [s.to_dict() for s in self.machine_summaries],
            'stats': self.stats.to_dict(),
            'violations': [v.to_dict() for v in self.violations],
            'conflicts': [c.to_dict() for c in self.conflicts],
            'warnings': [str(w) for w in self.warnings],
        }


def place_operations(operations: Iterable[Operation], window: ReportingWindow) -> List[DayBucket]:
    """
    Place operations into one bucket per day of the window.

    An operation goes into every day its span intersects (half-open), so a
    multi-day operation appears in several buckets. Input order is kept
    inside each bucket.
    """
    operations = list(operations)
    buckets = []

    for day in window.days:
        day_start, day_end = window.day_bounds(day)
        day_operations = [op for op in operations if op.overlaps(day_start, day_end)]

        machine_buckets: Dict[str, List[Operation]] = {}
        for op in day_operations:
            machine_buckets.setdefault(op.machine_id or UNASSIGNED_MACHINE, []).append(op)

        buckets.append(DayBucket(
            date=day,
            operations=day_operations,
            machine_buckets=machine_buckets,
            in_month=window.is_in_month(day),
        ))

    return buckets


def determine_machine_status(
    operations: Iterable[Operation],
    now: datetime,
    lookahead_hours: float = DEFAULT_LOOKAHEAD_HOURS
) -> Tuple[str, Optional[Operation], Optional[Operation]]:
    """
    Live status of a machine from its operations.

    Returns:
        Tuple of (status, current operation, next operation). status is
        'running' when an operation spans now, 'scheduled' when one starts
        within the lookahead, otherwise 'idle'.
    """
    ordered = sorted(operations, key=lambda op: (op.start_time, op.id))
    horizon = now + timedelta(hours=lookahead_hours)

    current = next((op for op in ordered if op.start_time <= now < op.end_time), None)
    upcoming = next((op for op in ordered if now < op.start_time <= horizon), None)

    if current is not None:
        return 'running', current, upcoming
    if upcoming is not None:
        return 'scheduled', None, upcoming
    return 'idle', None, None


def build_machine_summaries(
    machines: Iterable[Machine],
    operations: List[Operation],
    window: ReportingWindow,
    now: datetime,
    lookahead_hours: float = DEFAULT_LOOKAHEAD_HOURS,
    conflicts: Optional[List[MachineConflict]] = None
) -> Tuple[List[MachineSummary], List[DataQualityWarning]]:
    """
    Summarize every relevant machine for the window.

    Active machines are always listed (0% when idle); inactive machines only
    when they have operations in the window. Operations on machines missing
    from the registry stay in the day buckets but produce a warning.

    Returns:
        Tuple of (summaries in registry order, warnings)
    """
    by_machine: Dict[str, List[Operation]] = {}
    for op in operations:
        if op.machine_id:
            by_machine.setdefault(op.machine_id, []).append(op)

    conflict_counts: Dict[str, int] = {}
    for conflict in conflicts or []:
        if conflict.is_machine_conflict:
            conflict_counts[conflict.resource_id] = conflict_counts.get(conflict.resource_id, 0) + 1

    summaries: List[MachineSummary] = []
    known_ids = set()

    for machine in machines:
        known_ids.add(machine.id)
        machine_operations = by_machine.get(machine.id, [])
        if not machine.is_active and not machine_operations:
            continue

        weekly: List[UtilizationResult] = []
        if window.granularity == 'month':
            result, weekly = compute_month_utilization(machine, machine_operations, window)
        else:
            result = compute_utilization(machine, machine_operations, window.start, window.end, window.tz)

        status, current, upcoming = determine_machine_status(machine_operations, now, lookahead_hours)

        summaries.append(MachineSummary(
            machine_id=machine.id,
            machine_name=machine.name,
            machine_type=machine.type,
            is_active=machine.is_active,
            utilization_percent=result.percent,
            busy_hours=result.busy_hours,
            capacity_hours=result.capacity_hours,
            operation_count=len(machine_operations),
            status=status,
            current_operation=current,
            next_operation=upcoming,
            weekly_utilization=weekly,
            available_slots=available_slots(
                machine, machine_operations, window.start, window.end, window.tz
            ),
            conflict_count=conflict_counts.get(machine.id, 0),
        ))

    warnings = []
    for machine_id in by_machine:
        if machine_id not in known_ids:
            count = len(by_machine[machine_id])
            logger.warning(f"{count} operation(s) reference unknown machine '{machine_id}'")
            warnings.extend(
                DataQualityWarning(op.id, f"unknown machine '{machine_id}'", 'unknown_machine')
                for op in by_machine[machine_id]
            )

    return summaries, warnings


def build_view(
    granularity: str,
    reference_date: date,
    operations: Iterable[Operation],
    machines: Iterable[Machine],
    calendar_filter: Optional[CalendarFilter] = None,
    timezone: str = DEFAULT_TIMEZONE,
    now: Optional[datetime] = None,
    lookahead_hours: float = DEFAULT_LOOKAHEAD_HOURS,
    min_gap_minutes: float = 0,
    warnings: Optional[List[DataQualityWarning]] = None
) -> CalendarView:
    """
    Build a day, week or month calendar view from an operation snapshot.

    Args:
        granularity: 'day', 'week' or 'month'
        reference_date: Any date inside the wanted period
        operations: Parsed operations (may include duplicates and
            operations outside the window)
        machines: Machine registry
        calendar_filter: Optional filter; None matches everything
        timezone: Plant timezone name
        now: Reference instant for machine status (defaults to current time)
        lookahead_hours: How far ahead a machine's next operation is shown
        min_gap_minutes: Minimum changeover gap for dependency advisories
        warnings: Data-quality warnings from record parsing to carry along

    Returns:
        CalendarView

    Raises:
        ValueError: If granularity is not recognized

    Example:
        >>> view = build_view('week', date(2024, 3, 6), operations, machines)
        >>> for machine in view.over_allocated:
        ...     print(f"{machine.machine_name}: {machine.utilization_percent:.0f}%")
    """
    window = build_window(granularity, reference_date, timezone)
    now = now if now is not None else datetime.now(window.tz)
    machines = list(machines)

    # Dedupe first: the surviving copy of an id must not depend on the filter
    selected = deduplicate_operations(operations)
    selected = filter_operations(selected, calendar_filter)
    selected = filter_operations_by_window(selected, window.start, window.end)
    ordered = sort_by_dependencies(selected)

    violations = validate_dependencies(ordered, min_gap_minutes)
    for violation in violations:
        logger.warning(f"Dependency violation: {violation.message}")

    conflicts = detect_conflicts(ordered)
    for conflict in conflicts:
        logger.warning(f"Resource conflict: {conflict.message}")

    days = place_operations(ordered, window)
    summaries, machine_warnings = build_machine_summaries(
        machines, ordered, window, now, lookahead_hours, conflicts
    )
    stats = ViewStats.from_view_parts(ordered, summaries, conflicts)

    all_warnings = list(warnings or []) + machine_warnings

    logger.info(
        f"Built {granularity} view {window.first_day} → {window.last_day}: "
        f"{stats.total_operations} operations, {len(summaries)} machines, "
        f"{len(violations)} dependency violations, {len(conflicts)} conflicts, "
        f"{stats.over_allocated_count} over-allocated"
    )

    return CalendarView(
        granularity=granularity,
        reference_date=window.reference_date,
        start=window.start,
        end=window.end,
        days=days,
        machine_summaries=summaries,
        stats=stats,
        operations=ordered,
        violations=violations,
        conflicts=conflicts,
        warnings=all_warnings,
    )
