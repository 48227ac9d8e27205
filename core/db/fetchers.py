"""
Data Fetching Module

PostgreSQL implementations of the calendar's record source and machine
registry. Any database failure is raised as a retryable CalendarFetchError
so the caller can keep its last good view.
"""

import logging
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import psycopg2

from .pool import get_calendar_connection
from .queries import CalendarQueryBuilder, calendar_query_builder
from core.calendar.errors import CalendarFetchError
from core.calendar.filters import CalendarFilter
from core.calendar.models import Machine, parse_machine_records
from core.calendar.sources import MachineRegistry, OperationRecordSource
from utils.config import get_working_hours_defaults

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractContextManager]


def rows_to_records(cursor) -> List[Dict[str, Any]]:
    """Convert fetched rows to dicts keyed by cursor column names."""
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


class PostgresOperationSource(OperationRecordSource):
    """Reads calendar events from the calendar_events table."""

    def __init__(
        self,
        connection_factory: ConnectionFactory = get_calendar_connection,
        query_builder: CalendarQueryBuilder = calendar_query_builder
    ):
        self.connection_factory = connection_factory
        self.query_builder = query_builder

    def fetch_operations(
        self,
        window_start: datetime,
        window_end: datetime,
        calendar_filter: Optional[CalendarFilter] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch raw calendar event records intersecting the window.

        Raises:
            CalendarFetchError: If the database cannot be queried
        """
        logger.info(f"Fetching calendar events {window_start} → {window_end}")
        query, parameters = self.query_builder.build_operations_query(
            window_start, window_end, calendar_filter
        )

        try:
            with self.connection_factory() as conn:
                cursor = conn.cursor()
                cursor.execute(query, parameters)
                records = rows_to_records(cursor)
        except (psycopg2.Error, ValueError) as e:
            logger.error(f"Error fetching calendar events: {e}", exc_info=True)
            raise CalendarFetchError(f"Could not load calendar events: {e}") from e

        logger.info(f"Successfully fetched {len(records)} calendar event records")
        return records


class PostgresMachineRegistry(MachineRegistry):
    """Reads the machine registry from the machines table."""

    def __init__(
        self,
        connection_factory: ConnectionFactory = get_calendar_connection,
        query_builder: CalendarQueryBuilder = calendar_query_builder,
        working_hours_defaults: Optional[Dict[str, Any]] = None,
        active_only: bool = False
    ):
        self.connection_factory = connection_factory
        self.query_builder = query_builder
        self.working_hours_defaults = working_hours_defaults
        self.active_only = active_only

    def fetch_machines(self) -> List[Machine]:
        """
        Fetch and parse machines; malformed rows are skipped with a warning.

        Raises:
            CalendarFetchError: If the database cannot be queried
        """
        query, parameters = self.query_builder.build_machines_query(self.active_only)

        try:
            with self.connection_factory() as conn:
                cursor = conn.cursor()
                cursor.execute(query, parameters)
                records = rows_to_records(cursor)
        except (psycopg2.Error, ValueError) as e:
            logger.error(f"Error fetching machines: {e}", exc_info=True)
            raise CalendarFetchError(f"Could not load machine registry: {e}") from e

        defaults = self.working_hours_defaults or get_working_hours_defaults()
        machines, warnings = parse_machine_records(records, defaults)
        if warnings:
            logger.warning(f"Skipped {len(warnings)} malformed machine records")

        logger.info(f"Successfully fetched {len(machines)} machines")
        return machines
