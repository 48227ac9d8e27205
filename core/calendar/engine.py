"""
Calendar Engine

Entry point that wires the record source and machine registry to the pure
view builder. A fetch failure fails the whole build with a retryable
CalendarFetchError; no partial view is ever returned.
"""

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional

from .conflicts import MachineConflict
from .conflicts import available_slots as _available_slots
from .conflicts import detect_conflicts as _detect_conflicts
from .dependencies import DependencyViolation
from .dependencies import validate_dependencies as _validate_dependencies
from .errors import CalendarError, CalendarFetchError
from .filters import CalendarFilter
from .models import Machine, Operation, parse_operation_records
from .sources import MachineRegistry, OperationRecordSource
from .views import DEFAULT_LOOKAHEAD_HOURS, CalendarView, build_view
from .windows import DEFAULT_TIMEZONE, TimeSegment, build_window, get_timezone
from core.calculations.utilization import UtilizationResult
from core.calculations.utilization import compute_utilization as _compute_utilization

logger = logging.getLogger(__name__)


class CalendarEngine:
    """
    Builds calendar views from a record source and a machine registry.

    Example:
        >>> engine = CalendarEngine(PostgresOperationSource(), PostgresMachineRegistry())
        >>> view = engine.build_view('week', date.today())
        >>> print(view.stats.total_operations)
    """

    def __init__(
        self,
        record_source: OperationRecordSource,
        machine_registry: MachineRegistry,
        timezone: str = DEFAULT_TIMEZONE,
        lookahead_hours: float = DEFAULT_LOOKAHEAD_HOURS,
        min_gap_minutes: float = 0
    ):
        self.record_source = record_source
        self.machine_registry = machine_registry
        self.timezone = timezone
        self.lookahead_hours = lookahead_hours
        self.min_gap_minutes = min_gap_minutes

    @classmethod
    def from_config(
        cls,
        record_source: OperationRecordSource,
        machine_registry: MachineRegistry,
        app_config: dict
    ) -> 'CalendarEngine':
        """Create an engine using the settings from utils.config.get_app_config()."""
        return cls(
            record_source,
            machine_registry,
            timezone=app_config['timezone'],
            lookahead_hours=app_config['next_operation_lookahead_hours'],
            min_gap_minutes=app_config['dependency_min_gap_minutes'],
        )

    def build_view(
        self,
        granularity: str,
        reference_date: date,
        calendar_filter: Optional[CalendarFilter] = None,
        now: Optional[datetime] = None
    ) -> CalendarView:
        """
        Fetch the window's records and machines and build the view.

        Raises:
            ValueError: If granularity is not recognized
            CalendarFetchError: If the record source or registry fails
        """
        window = build_window(granularity, reference_date, self.timezone)

        try:
            records = self.record_source.fetch_operations(window.start, window.end, calendar_filter)
            machines = self.machine_registry.fetch_machines()
        except CalendarError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch calendar data for {window}: {e}", exc_info=True)
            raise CalendarFetchError(f"Failed to fetch calendar data: {e}") from e

        operations, warnings = parse_operation_records(records, self.timezone)
        logger.info(
            f"Fetched {len(records)} records and {len(machines)} machines for {window}"
        )

        return build_view(
            granularity,
            reference_date,
            operations,
            machines,
            calendar_filter=calendar_filter,
            timezone=self.timezone,
            now=now,
            lookahead_hours=self.lookahead_hours,
            min_gap_minutes=self.min_gap_minutes,
            warnings=warnings,
        )

    def compute_utilization(
        self,
        machine: Machine,
        operations: Iterable[Operation],
        window_start: datetime,
        window_end: datetime
    ) -> UtilizationResult:
        """Utilization of one machine; result.is_over_scheduled carries the flag."""
        return _compute_utilization(
            machine, operations, window_start, window_end, get_timezone(self.timezone)
        )

    def validate_dependencies(self, operations: Iterable[Operation]) -> List[DependencyViolation]:
        return _validate_dependencies(operations, self.min_gap_minutes)

    def detect_conflicts(self, operations: Iterable[Operation]) -> List[MachineConflict]:
        return _detect_conflicts(operations)

    def available_slots(
        self,
        machine: Machine,
        operations: Iterable[Operation],
        window_start: datetime,
        window_end: datetime,
        min_minutes: float = 0
    ) -> List[TimeSegment]:
        """Free working-hour segments of one machine inside the window."""
        return _available_slots(
            machine, operations, window_start, window_end, get_timezone(self.timezone), min_minutes
        )
