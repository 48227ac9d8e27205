"""
Manufacturing Calendar Models

Operations (calendar events), machines with their working-hours calendar,
and parsing of raw document-store records into those models.

Raw records are never trusted: a record that cannot be turned into a valid
Operation is excluded and reported as a DataQualityWarning instead of
aborting the whole view build.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
import pytz
from dateutil import parser as dateutil_parser

from .errors import InvalidRecordError, UnsupportedRecordError
from .windows import TimeSegment, TimezoneLike, get_timezone, local_dates, localize, to_local

logger = logging.getLogger(__name__)

VALID_STATUSES = ['scheduled', 'in_progress', 'completed', 'delayed', 'cancelled']
VALID_PRIORITIES = ['low', 'medium', 'high', 'critical']
VALID_EVENT_TYPES = ['manufacturing', 'maintenance']
WARNING_KINDS = ['malformed', 'unsupported', 'unknown_machine']

# Legacy values still found in older records
PRIORITY_ALIASES = {'emergency': 'critical', 'normal': 'medium'}
EVENT_TYPE_ALIASES = {'setup': 'manufacturing'}


def _normalize_choice(value: str) -> str:
    return str(value).strip().lower().replace('-', '_').replace(' ', '_')


@dataclass(frozen=True)
class Operation:
    """
    A scheduled manufacturing or maintenance operation on a machine.

    start_time/end_time are timezone-aware and authoritative for all time
    math. estimated_duration (minutes) is informational only and may disagree
    with the actual span.
    """
    id: str
    start_time: datetime
    end_time: datetime
    job_id: Optional[str] = None
    part_name: str = ""
    operation_name: str = ""
    operation_index: Optional[int] = None
    machine_id: Optional[str] = None
    machine_name: str = ""
    operator_id: Optional[str] = None
    quantity: Optional[int] = None
    estimated_duration: Optional[float] = None
    status: str = 'scheduled'
    priority: str = 'medium'
    type: str = 'manufacturing'
    title: str = ""
    notes: str = ""

    def __post_init__(self):
        """Validate operation"""
        if not self.id:
            raise ValueError("Operation id must not be empty")
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError(f"Operation {self.id}: start_time and end_time must be timezone-aware")
        if self.end_time <= self.start_time:
            raise ValueError(
                f"Operation {self.id}: end time ({self.end_time}) must be after "
                f"start time ({self.start_time})"
            )
        if self.status not in VALID_STATUSES:
            raise ValueError(
                f"Operation {self.id}: invalid status '{self.status}'. "
                f"Must be one of: {VALID_STATUSES}"
            )
        if self.priority not in VALID_PRIORITIES:
            raise ValueError(
                f"Operation {self.id}: invalid priority '{self.priority}'. "
                f"Must be one of: {VALID_PRIORITIES}"
            )
        if self.type not in VALID_EVENT_TYPES:
            raise ValueError(
                f"Operation {self.id}: invalid type '{self.type}'. "
                f"Must be one of: {VALID_EVENT_TYPES}"
            )

    @property
    def segment(self) -> TimeSegment:
        return TimeSegment(self.start_time, self.end_time, self.id)

    @property
    def duration_hours(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 3600.0

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open intersection test against [start, end)."""
        return self.start_time < end and self.end_time > start

    def local_dates(self, timezone: TimezoneLike = None) -> List[date]:
        """Calendar days (plant timezone) this operation's span touches."""
        tz = timezone if timezone is not None else self.start_time.tzinfo
        return local_dates(self.start_time, self.end_time, tz)

    def is_multi_day(self, timezone: TimezoneLike = None) -> bool:
        return len(self.local_dates(timezone)) > 1

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        parts = [p for p in (self.part_name, self.operation_name) if p]
        return " - ".join(parts) if parts else self.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for easy display"""
        return {
            'id': self.id,
            'title': self.display_title,
            'job_id': self.job_id,
            'part_name': self.part_name,
            'operation_name': self.operation_name,
            'operation_index': self.operation_index,
            'machine_id': self.machine_id,
            'machine_name': self.machine_name,
            'operator_id': self.operator_id,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'duration_hours': round(self.duration_hours, 2),
            'quantity': self.quantity,
            'estimated_duration': self.estimated_duration,
            'status': self.status,
            'priority': self.priority,
            'type': self.type,
        }


@dataclass(frozen=True)
class WorkingHours:
    """
    Working-hours calendar of a machine.

    working_days are ISO weekdays (Monday=1 ... Sunday=7). Daily capacity is
    the start-end span minus the break.
    """
    start: time = time(8, 0)
    end: time = time(17, 0)
    working_days: Tuple[int, ...] = (1, 2, 3, 4, 5)
    break_minutes: int = 0

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError(
                f"Working hours end ({self.end}) must be after start ({self.start})"
            )
        for weekday in self.working_days:
            if weekday < 1 or weekday > 7:
                raise ValueError(f"Weekday indices must be in range 1..7, got {weekday}")
        if self.break_minutes < 0:
            raise ValueError("Break duration must not be negative")
        if self.break_minutes * 60 >= self.span_seconds:
            raise ValueError("Break duration must be shorter than the working day")

    @property
    def span_seconds(self) -> float:
        start = datetime.combine(date.min, self.start)
        end = datetime.combine(date.min, self.end)
        return (end - start).total_seconds()

    @property
    def daily_capacity_hours(self) -> float:
        return (self.span_seconds - self.break_minutes * 60) / 3600.0

    @property
    def weekly_capacity_hours(self) -> float:
        return self.daily_capacity_hours * len(set(self.working_days))

    def is_working_day(self, day: date) -> bool:
        return day.isoweekday() in self.working_days

    def segment_for(self, day: date, timezone: TimezoneLike = None) -> Optional[TimeSegment]:
        """Working window of a local day, or None on non-working days."""
        if not self.is_working_day(day):
            return None
        return TimeSegment(
            localize(day, self.start, timezone),
            localize(day, self.end, timezone),
            f"working hours {day.isoformat()}"
        )


@dataclass(frozen=True)
class Machine:
    """A machine from the registry with its working-hours calendar."""
    id: str
    name: str
    type: str = ""
    is_active: bool = True
    capabilities: Tuple[str, ...] = tuple()
    working_hours: WorkingHours = field(default_factory=WorkingHours)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'is_active': self.is_active,
            'capabilities': list(self.capabilities),
            'working_start': self.working_hours.start.strftime('%H:%M'),
            'working_end': self.working_hours.end.strftime('%H:%M'),
            'working_days': list(self.working_hours.working_days),
            'daily_capacity_hours': self.working_hours.daily_capacity_hours,
        }


@dataclass(frozen=True)
class DataQualityWarning:
    """
    A record the view could not use as-is, with the reason.

    kind 'malformed': broken record, excluded. 'unsupported': valid record of
    an event type this engine does not schedule, excluded. 'unknown_machine':
    operation kept in the day buckets but not in any machine summary.
    """
    record_id: Optional[str]
    reason: str
    kind: str = 'malformed'

    def __post_init__(self):
        if self.kind not in WARNING_KINDS:
            raise ValueError(f"Invalid warning kind: {self.kind}. Must be one of {WARNING_KINDS}")

    def __str__(self) -> str:
        return f"Record {self.record_id or '<unknown>'}: {self.reason}"


# ---------------------------------------------------------------------------
# Record parsing
# ---------------------------------------------------------------------------

_OPERATION_FIELDS = {
    'id': ('id', '_id'),
    'job_id': ('jobId', 'job_id', 'processInstanceId'),
    'part_name': ('partName', 'part_name'),
    'operation_name': ('operationName', 'operation_name'),
    'operation_index': ('operationIndex', 'operation_index'),
    'machine_id': ('machineId', 'machine_id'),
    'machine_name': ('machineName', 'machine_name'),
    'operator_id': ('operatorId', 'operator_id'),
    'start_time': ('startTime', 'start_time', 'scheduledStartTime'),
    'end_time': ('endTime', 'end_time', 'scheduledEndTime'),
    'quantity': ('quantity',),
    'estimated_duration': ('estimatedDuration', 'estimated_duration'),
    'status': ('status',),
    'priority': ('priority',),
    'type': ('type', 'event_type'),
    'title': ('title',),
    'notes': ('notes',),
}


def _get(record: Dict[str, Any], aliases: Iterable[str]) -> Any:
    for key in aliases:
        value = record.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_timestamp(value: Any, timezone: TimezoneLike = None) -> datetime:
    """
    Convert a stored timestamp into an aware datetime in the plant timezone.

    Accepts datetimes, ISO 8601 strings (with or without 'Z'), epoch seconds
    and document-store timestamp objects ({'seconds': ...} or the
    serialized {'_seconds': ..., '_nanoseconds': ...} form).

    Raises:
        InvalidRecordError: If the value is missing or cannot be parsed
    """
    if value is None:
        raise InvalidRecordError("missing timestamp")

    if isinstance(value, datetime):
        return to_local(value, timezone)

    if isinstance(value, dict):
        seconds = _get(value, ('seconds', '_seconds'))
        if seconds is None:
            raise InvalidRecordError(f"timestamp object without seconds: {value!r}")
        nanoseconds = _get(value, ('nanoseconds', '_nanoseconds')) or 0
        try:
            value = float(seconds) + float(nanoseconds) / 1e9
        except (TypeError, ValueError) as e:
            raise InvalidRecordError(f"invalid timestamp object {value!r}") from e

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return to_local(datetime.fromtimestamp(value, tz=pytz.UTC), timezone)

    if isinstance(value, str):
        try:
            parsed = dateutil_parser.isoparse(value.strip())
        except (ValueError, OverflowError) as e:
            raise InvalidRecordError(f"unparseable timestamp {value!r}") from e
        return to_local(parsed, timezone)

    raise InvalidRecordError(f"unsupported timestamp type {type(value).__name__}")


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidRecordError(f"invalid {name} {value!r}") from e


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidRecordError(f"invalid {name} {value!r}") from e


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def operation_from_record(record: Dict[str, Any], timezone: TimezoneLike = None) -> Operation:
    """
    Build an Operation from a raw document-store record.

    Args:
        record: Dictionary with camelCase or snake_case keys
        timezone: Plant timezone used for naive timestamps

    Returns:
        Operation

    Raises:
        InvalidRecordError: If the record is malformed
    """
    tz = get_timezone(timezone)
    values = {name: _get(record, aliases) for name, aliases in _OPERATION_FIELDS.items()}
    record_id = _optional_str(values['id'])

    if not record_id:
        raise InvalidRecordError("missing id")

    try:
        start_time = parse_timestamp(values['start_time'], tz)
        end_time = parse_timestamp(values['end_time'], tz)
    except InvalidRecordError as e:
        raise InvalidRecordError(f"invalid start/end time: {e}", record_id) from e

    if end_time <= start_time:
        raise InvalidRecordError(
            f"start time {start_time.isoformat()} is not before end time {end_time.isoformat()}",
            record_id
        )

    status = _normalize_choice(values['status'] or 'scheduled')
    priority = _normalize_choice(values['priority'] or 'medium')
    priority = PRIORITY_ALIASES.get(priority, priority)
    event_type = _normalize_choice(values['type'] or 'manufacturing')
    event_type = EVENT_TYPE_ALIASES.get(event_type, event_type)
    if event_type not in VALID_EVENT_TYPES:
        raise UnsupportedRecordError(f"unsupported event type '{event_type}'", record_id)

    try:
        return Operation(
            id=record_id,
            start_time=start_time,
            end_time=end_time,
            job_id=_optional_str(values['job_id']),
            part_name=str(values['part_name'] or ""),
            operation_name=str(values['operation_name'] or ""),
            operation_index=_optional_int(values['operation_index'], 'operation index'),
            machine_id=_optional_str(values['machine_id']),
            machine_name=str(values['machine_name'] or ""),
            operator_id=_optional_str(values['operator_id']),
            quantity=_optional_int(values['quantity'], 'quantity'),
            estimated_duration=_optional_float(values['estimated_duration'], 'estimated duration'),
            status=status,
            priority=priority,
            type=event_type,
            title=str(values['title'] or ""),
            notes=str(values['notes'] or ""),
        )
    except InvalidRecordError as e:
        raise InvalidRecordError(str(e), record_id) from e
    except ValueError as e:
        raise InvalidRecordError(str(e), record_id) from e


def parse_operation_records(
    records: Iterable[Dict[str, Any]],
    timezone: TimezoneLike = None
) -> Tuple[List[Operation], List[DataQualityWarning]]:
    """
    Parse raw records, excluding malformed ones.

    Returns:
        Tuple of (valid operations in input order, data-quality warnings)
    """
    operations: List[Operation] = []
    warnings: List[DataQualityWarning] = []

    for record in records:
        try:
            operations.append(operation_from_record(record, timezone))
        except InvalidRecordError as e:
            record_id = e.record_id or _optional_str(_get(record, _OPERATION_FIELDS['id']))
            if isinstance(e, UnsupportedRecordError):
                warning = DataQualityWarning(record_id, str(e), 'unsupported')
                logger.info(f"Skipping unsupported operation record: {warning}")
            else:
                warning = DataQualityWarning(record_id, str(e))
                logger.warning(f"Excluding malformed operation record: {warning}")
            warnings.append(warning)

    if warnings:
        logger.info(
            f"Parsed {len(operations)} operations, excluded {len(warnings)} records"
        )
    return operations, warnings


def _parse_time_value(value: Any, default: time) -> time:
    if value is None or value == "":
        return default
    if isinstance(value, time):
        return value
    if isinstance(value, timedelta):
        return (datetime.min + value).time()
    try:
        hour, minute = str(value).strip().split(":")[:2]
        return time(int(hour), int(minute))
    except (TypeError, ValueError) as e:
        raise InvalidRecordError(f"invalid time of day {value!r}") from e


def _parse_working_days(value: Any, default: Tuple[int, ...]) -> Tuple[int, ...]:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        value = [part for part in value.split(",") if part.strip()]
    try:
        # 0 is Sunday in JavaScript-style calendars
        days = {7 if int(day) == 0 else int(day) for day in value}
    except (TypeError, ValueError) as e:
        raise InvalidRecordError(f"invalid working days {value!r}") from e
    return tuple(sorted(days))


def machine_from_record(
    record: Dict[str, Any],
    defaults: Optional[Dict[str, Any]] = None
) -> Machine:
    """
    Build a Machine from a registry record.

    Working hours may be nested ({'workingHours': {'start', 'end', 'workingDays'}})
    or flat columns (working_start, working_end, working_days, break_minutes).
    Missing values fall back to the configured defaults.

    Raises:
        InvalidRecordError: If the record is malformed
    """
    defaults = defaults or {}
    default_hours = WorkingHours(
        start=defaults.get('start', time(8, 0)),
        end=defaults.get('end', time(17, 0)),
        working_days=tuple(defaults.get('working_days', (1, 2, 3, 4, 5))),
        break_minutes=defaults.get('break_minutes', 0),
    )

    machine_id = _optional_str(_get(record, ('id', '_id')))
    if not machine_id:
        raise InvalidRecordError("missing machine id")

    nested = record.get('workingHours') or record.get('working_hours')
    if not isinstance(nested, dict):
        nested = {}

    break_minutes = _get(nested, ('breakMinutes', 'break_minutes'))
    if break_minutes is None:
        break_minutes = _get(record, ('break_minutes', 'breakMinutes'))
    if break_minutes is None:
        break_minutes = default_hours.break_minutes

    try:
        working_hours = WorkingHours(
            start=_parse_time_value(
                _get(nested, ('start',)) or _get(record, ('working_start', 'workingStart')),
                default_hours.start
            ),
            end=_parse_time_value(
                _get(nested, ('end',)) or _get(record, ('working_end', 'workingEnd')),
                default_hours.end
            ),
            working_days=_parse_working_days(
                _get(nested, ('workingDays', 'working_days'))
                or _get(record, ('working_days', 'workingDays')),
                default_hours.working_days
            ),
            break_minutes=int(break_minutes),
        )
    except InvalidRecordError as e:
        raise InvalidRecordError(str(e), machine_id) from e
    except ValueError as e:
        raise InvalidRecordError(str(e), machine_id) from e

    is_active = record.get('isActive', record.get('is_active', True))
    capabilities = record.get('capabilities') or ()

    return Machine(
        id=machine_id,
        name=str(record.get('name') or machine_id),
        type=str(record.get('type') or ""),
        is_active=bool(is_active),
        capabilities=tuple(str(c) for c in capabilities),
        working_hours=working_hours,
    )


def parse_machine_records(
    records: Iterable[Dict[str, Any]],
    defaults: Optional[Dict[str, Any]] = None
) -> Tuple[List[Machine], List[DataQualityWarning]]:
    """Parse registry records, excluding malformed machines."""
    machines: List[Machine] = []
    warnings: List[DataQualityWarning] = []

    for record in records:
        try:
            machines.append(machine_from_record(record, defaults))
        except InvalidRecordError as e:
            warning = DataQualityWarning(e.record_id, str(e))
            logger.warning(f"Excluding malformed machine record: {warning}")
            warnings.append(warning)

    return machines, warnings
