"""
Shared fixtures for the calendar test suite.

All times are built in Europe/Istanbul (no DST) so day boundaries are stable.
March 4, 2024 is a Monday.
"""

import pytest
import pytz
from contextlib import contextmanager
from datetime import datetime, time
from unittest.mock import MagicMock

from core.calendar.models import Machine, Operation, WorkingHours

PLANT_TZ = "Europe/Istanbul"


@pytest.fixture
def tz():
    return pytz.timezone(PLANT_TZ)


@pytest.fixture
def at(tz):
    """Factory for aware plant-local datetimes: at(2024, 3, 4, 9) -> 09:00."""
    def _at(year, month, day, hour=0, minute=0):
        return tz.localize(datetime(year, month, day, hour, minute))
    return _at


@pytest.fixture
def make_operation(at):
    """Factory for operations on Monday March 4, 2024 unless times are given."""
    def _make(
        op_id,
        start=(2024, 3, 4, 9),
        end=(2024, 3, 4, 11),
        **kwargs
    ):
        kwargs.setdefault("machine_id", "m1")
        start_time = start if isinstance(start, datetime) else at(*start)
        end_time = end if isinstance(end, datetime) else at(*end)
        return Operation(id=op_id, start_time=start_time, end_time=end_time, **kwargs)
    return _make


@pytest.fixture
def make_machine():
    """Factory for machines with the standard 08:00-17:00, 60 minute break calendar."""
    def _make(machine_id="m1", name=None, is_active=True, **hours):
        hours.setdefault("start", time(8, 0))
        hours.setdefault("end", time(17, 0))
        hours.setdefault("working_days", (1, 2, 3, 4, 5))
        hours.setdefault("break_minutes", 60)
        return Machine(
            id=machine_id,
            name=name or machine_id.upper(),
            type="milling",
            is_active=is_active,
            working_hours=WorkingHours(**hours),
        )
    return _make


@pytest.fixture
def fake_db():
    """Connection factory yielding a MagicMock connection; returns (factory, conn, cursor)."""
    conn = MagicMock()
    cursor = conn.cursor.return_value

    @contextmanager
    def factory():
        yield conn

    return factory, conn, cursor
