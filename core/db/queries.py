"""
Secure Query Builder Module

Parameterized query building for the calendar database. Identifiers coming
from filters are validated before use and always passed as parameters,
never interpolated into SQL.

Tables:
- calendar_events: scheduled manufacturing/maintenance operations
- machines: machine registry with working-hours columns
- schedules: operations placed by the upstream scheduler, copied into
  calendar_events by the sync
"""

import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple, Any

from core.calendar.filters import CalendarFilter

logger = logging.getLogger(__name__)

SYNCED_EVENT_PREFIX = "sched-"

_IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z0-9_.:-]+$')

OPERATION_COLUMNS = [
    "id", "job_id", "part_name", "operation_name", "operation_index",
    "machine_id", "machine_name", "operator_id", "start_time", "end_time",
    "quantity", "estimated_duration", "status", "priority", "type",
    "title", "notes",
]

MACHINE_COLUMNS = [
    "id", "name", "type", "is_active", "capabilities",
    "working_start", "working_end", "working_days", "break_minutes",
]

# Filter field -> calendar_events column
_FILTER_COLUMNS = [
    ("machine_ids", "machine_id", True),
    ("event_types", "type", False),
    ("statuses", "status", False),
    ("priorities", "priority", False),
    ("job_ids", "job_id", True),
    ("operators", "operator_id", True),
]


class CalendarQueryBuilder:
    """Secure query builder with parameterized queries and input validation."""

    @staticmethod
    def validate_identifier(value: str) -> bool:
        """
        Validate a machine, job or operator identifier.

        Args:
            value: Identifier to validate

        Returns:
            bool: True if the identifier is safe to query with
        """
        if not value or len(value) > 100:
            return False
        return bool(_IDENTIFIER_PATTERN.match(value))

    @staticmethod
    def validate_window(window_start: datetime, window_end: datetime) -> bool:
        """Both bounds timezone-aware and end after start."""
        if window_start.tzinfo is None or window_end.tzinfo is None:
            return False
        return window_end > window_start

    def build_operations_query(
        self,
        window_start: datetime,
        window_end: datetime,
        calendar_filter: Optional[CalendarFilter] = None
    ) -> Tuple[str, List[Any]]:
        """
        Build query for calendar events intersecting [window_start, window_end).

        Filter fields are pushed down as ANY(%s) conditions. Invalid
        identifiers are dropped; a field left with no valid values matches
        nothing.

        Args:
            window_start: Window start (inclusive, timezone-aware)
            window_end: Window end (exclusive, timezone-aware)
            calendar_filter: Optional calendar filter

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)

        Raises:
            ValueError: If the window is invalid
        """
        if not self.validate_window(window_start, window_end):
            raise ValueError(
                f"Invalid query window: {window_start} → {window_end} "
                f"(bounds must be timezone-aware and end after start)"
            )

        conditions = ["start_time < %s", "end_time > %s"]
        parameters: List[Any] = [window_end, window_start]

        if calendar_filter is not None:
            for field_name, column, is_identifier in _FILTER_COLUMNS:
                values = getattr(calendar_filter, field_name)
                if values is None:
                    continue

                values = sorted(values)
                if is_identifier:
                    valid = [v for v in values if self.validate_identifier(v)]
                    for invalid in set(values) - set(valid):
                        logger.warning(f"Invalid {field_name} value filtered out: {invalid!r}")
                    values = valid

                if not values:
                    conditions.append("1=0")
                    continue

                conditions.append(f"{column} = ANY(%s)")
                parameters.append(values)

        query = f"""
            SELECT {', '.join(OPERATION_COLUMNS)}
            FROM calendar_events
            WHERE {' AND '.join(conditions)}
            ORDER BY start_time ASC, id ASC;
        """

        logger.info(f"Built calendar events query with {len(conditions)} conditions")
        return query, parameters

    def build_machines_query(self, active_only: bool = False) -> Tuple[str, List[Any]]:
        """
        Build query for the machine registry.

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)
        """
        where = "WHERE is_active = %s" if active_only else ""
        query = f"""
            SELECT {', '.join(MACHINE_COLUMNS)}
            FROM machines
            {where}
            ORDER BY name ASC, id ASC;
        """
        return query, [True] if active_only else []

    def build_delete_synced_events_query(self) -> Tuple[str, List[Any]]:
        """Remove manufacturing events previously copied from schedules."""
        query = """
            DELETE FROM calendar_events
            WHERE type = %s AND id LIKE %s;
        """
        return query, ["manufacturing", f"{SYNCED_EVENT_PREFIX}%"]

    def build_insert_synced_events_query(self) -> Tuple[str, List[Any]]:
        """
        Copy scheduled operations into calendar_events as manufacturing events.

        Event ids are derived from the schedule row id so repeated syncs
        produce the same ids.
        """
        query = """
            INSERT INTO calendar_events (
                id, job_id, part_name, operation_name, operation_index,
                machine_id, machine_name, operator_id, start_time, end_time,
                quantity, estimated_duration, status, priority, type, title, notes
            )
            SELECT
                %s || s.id::text,
                s.job_id, s.part_name, s.operation_name, s.operation_index,
                s.machine_id, s.machine_name, s.operator_id,
                s.scheduled_start_time, s.scheduled_end_time,
                s.quantity, s.estimated_duration,
                COALESCE(s.status, 'scheduled'), COALESCE(s.priority, 'medium'),
                'manufacturing',
                concat_ws(' - ', s.part_name, s.operation_name),
                ''
            FROM schedules s
            WHERE s.scheduled_start_time IS NOT NULL
              AND s.scheduled_end_time > s.scheduled_start_time;
        """
        return query, [SYNCED_EVENT_PREFIX]

    def build_sync_status_query(self) -> Tuple[str, List[Any]]:
        """Counts of schedulable operations and manufacturing calendar events."""
        query = """
            SELECT
                (SELECT COUNT(*) FROM schedules
                 WHERE scheduled_start_time IS NOT NULL) AS scheduled_operations,
                (SELECT COUNT(*) FROM calendar_events
                 WHERE type = %s) AS calendar_events;
        """
        return query, ["manufacturing"]


# Module-level instance
calendar_query_builder = CalendarQueryBuilder()
