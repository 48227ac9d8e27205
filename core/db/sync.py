"""
Schedule Synchronization

Copies operations placed by the upstream scheduler (schedules table) into
calendar_events as manufacturing events. Synced events get stable ids
('sched-<schedule id>'), so a re-sync replaces rather than duplicates them.
Manually created events and maintenance are never touched.
"""

import logging
from typing import Any, Dict

import psycopg2

from .fetchers import ConnectionFactory
from .pool import get_calendar_connection, transaction
from .queries import CalendarQueryBuilder, calendar_query_builder

logger = logging.getLogger(__name__)


def sync_scheduled_operations(
    connection_factory: ConnectionFactory = get_calendar_connection,
    query_builder: CalendarQueryBuilder = calendar_query_builder
) -> Dict[str, Any]:
    """
    Replace synced manufacturing events with the current schedule.

    Delete and insert run in one transaction.

    Returns:
        dict: {'events_removed': n, 'events_created': n}

    Raises:
        psycopg2.Error: If the sync fails; the transaction is rolled back
    """
    delete_query, delete_params = query_builder.build_delete_synced_events_query()
    insert_query, insert_params = query_builder.build_insert_synced_events_query()

    try:
        with transaction(connection_factory) as conn:
            cursor = conn.cursor()
            cursor.execute(delete_query, delete_params)
            removed = cursor.rowcount
            cursor.execute(insert_query, insert_params)
            created = cursor.rowcount
    except psycopg2.Error as e:
        logger.error(f"Schedule sync failed, rolled back: {e}", exc_info=True)
        raise

    logger.info(f"Synced schedule: removed {removed}, created {created} manufacturing events")
    return {"events_removed": removed, "events_created": created}


def get_sync_status(
    connection_factory: ConnectionFactory = get_calendar_connection,
    query_builder: CalendarQueryBuilder = calendar_query_builder
) -> Dict[str, Any]:
    """
    Compare scheduled operations with manufacturing calendar events.

    Returns:
        dict with scheduled_operations_count, calendar_events_count and
        sync_needed (scheduled operations exist but no events do)
    """
    query, parameters = query_builder.build_sync_status_query()

    with connection_factory() as conn:
        cursor = conn.cursor()
        cursor.execute(query, parameters)
        scheduled, events = cursor.fetchone()

    scheduled = int(scheduled or 0)
    events = int(events or 0)
    return {
        "scheduled_operations_count": scheduled,
        "calendar_events_count": events,
        "sync_needed": scheduled > 0 and events == 0,
    }


def auto_sync_if_needed(
    connection_factory: ConnectionFactory = get_calendar_connection,
    query_builder: CalendarQueryBuilder = calendar_query_builder
) -> Dict[str, Any]:
    """
    Sync only when the calendar has no manufacturing events yet.

    Used as the session's rate-limited sync callback.

    Returns:
        dict: Sync result, or {'events_created': 0, 'skipped': True}
    """
    status = get_sync_status(connection_factory, query_builder)
    if not status["sync_needed"]:
        logger.debug(f"Schedule sync not needed: {status}")
        return {"events_created": 0, "skipped": True}

    logger.info(
        f"Auto-syncing {status['scheduled_operations_count']} scheduled operations to calendar"
    )
    return sync_scheduled_operations(connection_factory, query_builder)
