"""
Data Source Interfaces

The engine reads operations and machines through two small interfaces so
the computation never depends on a particular store. PostgreSQL
implementations live in core.db.fetchers; the in-memory ones below back
tests and offline use.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .filters import CalendarFilter
from .models import Machine


class OperationRecordSource(ABC):
    """Supplies raw operation records for a window."""

    @abstractmethod
    def fetch_operations(
        self,
        window_start: datetime,
        window_end: datetime,
        calendar_filter: Optional[CalendarFilter] = None
    ) -> List[Dict[str, Any]]:
        """
        Return every record whose span intersects [window_start, window_end).

        Implementations may push the filter down; the engine re-applies it.

        Raises:
            CalendarFetchError: If the store cannot be read
        """


class MachineRegistry(ABC):
    """Supplies the machine registry with working-hours calendars."""

    @abstractmethod
    def fetch_machines(self) -> List[Machine]:
        """
        Raises:
            CalendarFetchError: If the registry cannot be read
        """


class InMemoryOperationSource(OperationRecordSource):
    """
    Operation source over a fixed list of raw records.

    Window selection is left to the engine, so malformed records still reach
    the parser and surface as data-quality warnings.
    """

    def __init__(self, records: Optional[Iterable[Dict[str, Any]]] = None):
        self.records = list(records or [])
        self.fetch_count = 0

    def add(self, record: Dict[str, Any]):
        self.records.append(record)

    def fetch_operations(self, window_start, window_end, calendar_filter=None):
        self.fetch_count += 1
        return [dict(record) for record in self.records]


class StaticMachineRegistry(MachineRegistry):
    def __init__(self, machines: Optional[Iterable[Machine]] = None):
        self.machines = list(machines or [])

    def fetch_machines(self) -> List[Machine]:
        return list(self.machines)
