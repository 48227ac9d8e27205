"""
Resource Conflict Detection

Operations that claim the same machine or the same operator at the same
time, and the free working-hour slots left on each machine.

Conflicts are advisory like dependency violations: they are attached to the
view and logged, never raised. Cancelled operations occupy nothing and are
ignored here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Tuple

from .dedup import deduplicate_operations
from .models import Machine, Operation
from .windows import TimeSegment, TimezoneLike, get_timezone, local_dates

logger = logging.getLogger(__name__)

CONFLICT_KINDS = ['machine_busy', 'maintenance_window', 'operator_busy']


@dataclass(frozen=True)
class MachineConflict:
    """
    Two operations holding one resource at once.

    kind 'machine_busy': two production operations on one machine.
    'maintenance_window': production overlapping maintenance on one machine.
    'operator_busy': one operator assigned to both. minutes is the overlap.
    """
    kind: str
    resource_id: str
    first: Operation
    second: Operation
    minutes: float

    def __post_init__(self):
        if self.kind not in CONFLICT_KINDS:
            raise ValueError(f"Invalid conflict kind: {self.kind}. Must be one of {CONFLICT_KINDS}")

    @property
    def start(self) -> datetime:
        return max(self.first.start_time, self.second.start_time)

    @property
    def end(self) -> datetime:
        return min(self.first.end_time, self.second.end_time)

    @property
    def is_machine_conflict(self) -> bool:
        return self.kind != 'operator_busy'

    @property
    def message(self) -> str:
        pair = f"'{self.first.display_title}' and '{self.second.display_title}'"
        if self.kind == 'operator_busy':
            return f"Operator {self.resource_id} is assigned to {pair} at the same time ({self.minutes:.0f} min)"
        if self.kind == 'maintenance_window':
            return f"Machine {self.resource_id} has maintenance during {pair} ({self.minutes:.0f} min)"
        return f"Machine {self.resource_id} is double-booked by {pair} ({self.minutes:.0f} min)"

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind,
            'resource_id': self.resource_id,
            'first_id': self.first.id,
            'second_id': self.second.id,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'minutes': round(self.minutes, 1),
            'message': self.message,
        }


def _group_by(operations: Iterable[Operation], key) -> Dict[str, List[Operation]]:
    groups: Dict[str, List[Operation]] = {}
    for op in operations:
        value = key(op)
        if value:
            groups.setdefault(value, []).append(op)
    return groups


def _overlapping_pairs(operations: List[Operation]) -> Iterator[Tuple[Operation, Operation]]:
    """Pairs of operations whose spans intersect, earlier start first."""
    ordered = sorted(operations, key=lambda op: (op.start_time, op.end_time, op.id))
    for i, first in enumerate(ordered):
        for second in ordered[i + 1:]:
            if second.start_time >= first.end_time:
                break
            yield first, second


def _overlap_minutes(first: Operation, second: Operation) -> float:
    end = min(first.end_time, second.end_time)
    return (end - second.start_time).total_seconds() / 60.0


def _machine_conflict_kind(first: Operation, second: Operation) -> str:
    if first.type != second.type and 'maintenance' in (first.type, second.type):
        return 'maintenance_window'
    return 'machine_busy'


def detect_conflicts(operations: Iterable[Operation]) -> List[MachineConflict]:
    """
    Find machine and operator double-bookings.

    Every overlapping pair on one machine yields a machine conflict and every
    overlapping pair sharing an operator yields an operator conflict.
    Duplicates are removed first, so a repeated record never conflicts with
    itself.

    Returns:
        Machine conflicts (by machine, then start) followed by operator conflicts
    """
    active = [op for op in deduplicate_operations(operations) if op.status != 'cancelled']
    conflicts: List[MachineConflict] = []

    for machine_id, machine_ops in _group_by(active, lambda op: op.machine_id).items():
        for first, second in _overlapping_pairs(machine_ops):
            conflicts.append(MachineConflict(
                _machine_conflict_kind(first, second), machine_id,
                first, second, _overlap_minutes(first, second)
            ))

    for operator_id, operator_ops in _group_by(active, lambda op: op.operator_id).items():
        for first, second in _overlapping_pairs(operator_ops):
            conflicts.append(MachineConflict(
                'operator_busy', operator_id, first, second, _overlap_minutes(first, second)
            ))

    if conflicts:
        logger.info(f"Detected {len(conflicts)} resource conflicts in {len(active)} operations")
    return conflicts


def conflicts_by_operation(conflicts: Iterable[MachineConflict]) -> Dict[str, List[MachineConflict]]:
    """Index conflicts under both operation ids."""
    index: Dict[str, List[MachineConflict]] = {}
    for conflict in conflicts:
        index.setdefault(conflict.first.id, []).append(conflict)
        if conflict.second.id != conflict.first.id:
            index.setdefault(conflict.second.id, []).append(conflict)
    return index


def available_slots(
    machine: Machine,
    operations: Iterable[Operation],
    window_start: datetime,
    window_end: datetime,
    timezone: TimezoneLike = None,
    min_minutes: float = 0
) -> List[TimeSegment]:
    """
    Free parts of a machine's working hours inside a window.

    Each working day's working hours (clipped to the window) minus the spans
    of the machine's non-cancelled operations. The break has no fixed time of
    day and is not subtracted.

    Args:
        machine: Machine with its working-hours calendar
        operations: Operations (other machines' operations are ignored)
        window_start: Window start (inclusive)
        window_end: Window end (exclusive)
        timezone: Plant timezone for day boundaries
        min_minutes: Drop slots shorter than this

    Returns:
        Free segments in chronological order
    """
    tz = get_timezone(timezone)
    window = TimeSegment(window_start, window_end, "slot window")

    busy = sorted(
        (segment for segment in (
            op.segment.intersection(window)
            for op in deduplicate_operations(operations)
            if op.machine_id == machine.id and op.status != 'cancelled'
        ) if segment is not None),
        key=lambda segment: segment.start
    )

    slots: List[TimeSegment] = []
    for day in local_dates(window_start, window_end, tz):
        working = machine.working_hours.segment_for(day, tz)
        working = working.intersection(window) if working is not None else None
        if working is None:
            continue

        cursor = working.start
        for segment in busy:
            if segment.end <= cursor:
                continue
            if segment.start >= working.end:
                break
            if segment.start > cursor:
                slots.append(TimeSegment(cursor, segment.start, "available"))
            cursor = max(cursor, segment.end)
            if cursor >= working.end:
                break

        if cursor < working.end:
            slots.append(TimeSegment(cursor, working.end, "available"))

    return [slot for slot in slots if slot.duration_seconds >= min_minutes * 60]
