"""
Tests for the CalendarEngine entry point.
"""

import pytest
from datetime import date
from unittest.mock import MagicMock

from core.calendar.engine import CalendarEngine
from core.calendar.errors import CalendarFetchError
from core.calendar.filters import CalendarFilter
from core.calendar.sources import InMemoryOperationSource, StaticMachineRegistry

TZ = "Europe/Istanbul"


@pytest.fixture
def records():
    return [
        {"id": "op1", "jobId": "J1", "operationIndex": 1, "machineId": "m1",
         "startTime": "2024-03-04T09:00:00+03:00", "endTime": "2024-03-04T11:00:00+03:00"},
        {"id": "op2", "jobId": "J1", "operationIndex": 2, "machineId": "m1",
         "startTime": "2024-03-04T10:00:00+03:00", "endTime": "2024-03-04T12:00:00+03:00"},
        {"id": "op2", "jobId": "J1", "operationIndex": 2, "machineId": "m1",
         "startTime": "2024-03-04T10:00:00+03:00", "endTime": "2024-03-04T12:00:00+03:00"},
        {"id": "broken", "machineId": "m1", "startTime": "2024-03-04T12:00:00+03:00",
         "endTime": "2024-03-04T12:00:00+03:00"},
        {"id": "maint", "machineId": "m2", "type": "maintenance",
         "startTime": "2024-03-05T08:00:00+03:00", "endTime": "2024-03-05T10:00:00+03:00"},
    ]


@pytest.fixture
def engine(records, make_machine):
    registry = StaticMachineRegistry([make_machine("m1"), make_machine("m2")])
    return CalendarEngine(InMemoryOperationSource(records), registry, timezone=TZ)


class TestBuildView:
    """Test fetch, parse and build."""

    def test_end_to_end(self, engine, at):
        view = engine.build_view("week", date(2024, 3, 6), now=at(2024, 3, 4, 10))

        assert view.stats.total_operations == 3
        assert [w.record_id for w in view.warnings] == ["broken"]
        assert len(view.violations) == 1
        lathe = view.get_machine("m1")
        assert lathe.status == "running"
        assert lathe.current_operation.id == "op1"
        assert lathe.busy_hours == 2.0

    def test_filter_passed_to_source_and_applied(self, engine, at):
        calendar_filter = CalendarFilter(event_types={"maintenance"})
        engine.record_source = MagicMock(wraps=engine.record_source)

        view = engine.build_view("week", date(2024, 3, 4), calendar_filter, now=at(2024, 3, 4))

        assert [op.id for op in view.operations] == ["maint"]
        args = engine.record_source.fetch_operations.call_args[0]
        assert args[0] == at(2024, 3, 4)
        assert args[1] == at(2024, 3, 11)
        assert args[2] is calendar_filter

    def test_source_failure_is_retryable_fetch_error(self, make_machine):
        source = MagicMock()
        source.fetch_operations.side_effect = ConnectionError("store offline")
        engine = CalendarEngine(source, StaticMachineRegistry([make_machine()]), timezone=TZ)

        with pytest.raises(CalendarFetchError) as exc_info:
            engine.build_view("day", date(2024, 3, 4))

        assert exc_info.value.retryable
        assert "store offline" in str(exc_info.value)

    def test_registry_fetch_error_propagates_unchanged(self):
        registry = MagicMock()
        error = CalendarFetchError("registry down", retryable=False)
        registry.fetch_machines.side_effect = error
        engine = CalendarEngine(InMemoryOperationSource([]), registry, timezone=TZ)

        with pytest.raises(CalendarFetchError) as exc_info:
            engine.build_view("day", date(2024, 3, 4))

        assert exc_info.value is error

    def test_invalid_granularity(self, engine):
        with pytest.raises(ValueError):
            engine.build_view("fortnight", date(2024, 3, 4))


class TestEngineCalculations:
    def test_compute_utilization(self, engine, make_machine, make_operation, at):
        result = engine.compute_utilization(
            make_machine("m1"), [make_operation("a")], at(2024, 3, 4), at(2024, 3, 5)
        )

        assert result.percent == pytest.approx(25.0)
        assert not result.is_over_scheduled

    def test_conflicts_and_free_slots(self, engine, make_machine, make_operation, at):
        ops = [make_operation("a"), make_operation("b", start=(2024, 3, 4, 10), end=(2024, 3, 4, 12))]

        conflicts = engine.detect_conflicts(ops)
        slots = engine.available_slots(make_machine("m1"), ops, at(2024, 3, 4), at(2024, 3, 5), min_minutes=90)

        assert [c.kind for c in conflicts] == ["machine_busy"]
        assert [(s.start, s.end) for s in slots] == [(at(2024, 3, 4, 12), at(2024, 3, 4, 17))]

    def test_validate_dependencies_uses_configured_gap(self, make_operation):
        engine = CalendarEngine(InMemoryOperationSource(), StaticMachineRegistry(), TZ, min_gap_minutes=30)
        ops = [
            make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11)),
            make_operation("op2", job_id="J1", operation_index=2, start=(2024, 3, 4, 11, 10), end=(2024, 3, 4, 12)),
        ]

        violations = engine.validate_dependencies(ops)

        assert [v.kind for v in violations] == ["insufficient_gap"]

    def test_from_config(self):
        config = {
            "timezone": "Europe/Berlin",
            "next_operation_lookahead_hours": 4.0,
            "dependency_min_gap_minutes": 15,
        }

        engine = CalendarEngine.from_config(InMemoryOperationSource(), StaticMachineRegistry(), config)

        assert engine.timezone == "Europe/Berlin"
        assert engine.lookahead_hours == 4.0
        assert engine.min_gap_minutes == 15
