"""
Calendar Filtering Utilities

Functions to filter operations by calendar filter fields and by reporting
window, plus DataFrame conversion for tabular display.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
import pandas as pd

from .models import Operation, VALID_EVENT_TYPES, VALID_PRIORITIES, VALID_STATUSES

# Filter field -> (operation attribute, allowed values or None)
_FILTER_FIELDS = {
    'machine_ids': ('machine_id', None),
    'event_types': ('type', VALID_EVENT_TYPES),
    'statuses': ('status', VALID_STATUSES),
    'priorities': ('priority', VALID_PRIORITIES),
    'job_ids': ('job_id', None),
    'operators': ('operator_id', None),
}

_CAMEL_CASE_KEYS = {
    'machineIds': 'machine_ids',
    'eventTypes': 'event_types',
    'jobIds': 'job_ids',
}


@dataclass(frozen=True)
class CalendarFilter:
    """
    Optional filter applied when building a view.

    An absent (None) or empty field matches everything. Present fields are
    combined with AND; values inside one field are combined with OR.
    """
    machine_ids: Optional[FrozenSet[str]] = None
    event_types: Optional[FrozenSet[str]] = None
    statuses: Optional[FrozenSet[str]] = None
    priorities: Optional[FrozenSet[str]] = None
    job_ids: Optional[FrozenSet[str]] = None
    operators: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        """Normalize value sets and validate enumerated fields"""
        for name, (_, allowed) in _FILTER_FIELDS.items():
            values = getattr(self, name)
            if values is None:
                continue
            if isinstance(values, str):
                values = [values]
            normalized = frozenset(str(v) for v in values)
            if allowed is not None:
                unknown = sorted(normalized - set(allowed))
                if unknown:
                    raise ValueError(
                        f"Invalid {name} filter values: {unknown}. "
                        f"Must be one of: {allowed}"
                    )
            object.__setattr__(self, name, normalized or None)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CalendarFilter':
        """Build a filter from a dict using snake_case or camelCase keys."""
        if not data:
            return cls()
        kwargs = {}
        for key, value in data.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in _FILTER_FIELDS:
                raise ValueError(f"Unknown filter field: '{key}'")
            kwargs[name] = value
        return cls(**kwargs)

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def matches(self, operation: Operation) -> bool:
        """Check if an operation passes every present filter field."""
        for name, (attribute, _) in _FILTER_FIELDS.items():
            values = getattr(self, name)
            if values is None:
                continue
            if getattr(operation, attribute) not in values:
                return False
        return True

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            name: sorted(getattr(self, name))
            for name in _FILTER_FIELDS
            if getattr(self, name) is not None
        }


def filter_operations(
    operations: Iterable[Operation],
    calendar_filter: Optional[CalendarFilter] = None
) -> List[Operation]:
    """
    Filter operations by a CalendarFilter.

    Args:
        operations: Operations to filter
        calendar_filter: Filter to apply; None matches everything

    Returns:
        Operations passing the filter, in input order

    Example:
        >>> only_lathes = CalendarFilter(machine_ids={'lathe-1', 'lathe-2'})
        >>> filtered = filter_operations(operations, only_lathes)
    """
    if calendar_filter is None or calendar_filter.is_empty:
        return list(operations)
    return [op for op in operations if calendar_filter.matches(op)]


def filter_operations_by_window(
    operations: Iterable[Operation],
    window_start: datetime,
    window_end: datetime
) -> List[Operation]:
    """
    Keep operations whose span intersects [window_start, window_end).

    Multi-day operations that start before or end after the window are kept.
    """
    return [op for op in operations if op.overlaps(window_start, window_end)]


def operations_to_dataframe(operations: Iterable[Operation]) -> pd.DataFrame:
    """
    Convert operations to a DataFrame with one row per operation.

    Returns:
        DataFrame with the Operation.to_dict() columns, or an empty DataFrame
        with those columns when there are no operations
    """
    rows = [op.to_dict() for op in operations]
    if not rows:
        return pd.DataFrame(columns=[
            'id', 'title', 'job_id', 'part_name', 'operation_name', 'operation_index',
            'machine_id', 'machine_name', 'operator_id', 'start_time', 'end_time',
            'duration_hours', 'quantity', 'estimated_duration', 'status', 'priority', 'type'
        ])
    df = pd.DataFrame(rows)
    df['start_time'] = pd.to_datetime(df['start_time'], utc=True)
    df['end_time'] = pd.to_datetime(df['end_time'], utc=True)
    return df
