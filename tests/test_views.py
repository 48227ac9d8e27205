"""
Tests for the calendar view builder.
"""

import pytest
from datetime import date, timedelta

from core.calendar.filters import CalendarFilter
from core.calendar.models import DataQualityWarning
from core.calendar.views import build_view, determine_machine_status, place_operations
from core.calendar.windows import build_window

TZ = "Europe/Istanbul"


@pytest.fixture
def machines(make_machine):
    return [make_machine("m1", "Lathe"), make_machine("m2", "Mill"), make_machine("m3", "Old Mill", is_active=False)]


class TestPlaceOperations:
    """Test bucket placement."""

    def test_multi_day_operation_in_every_day(self, make_operation):
        """Test an operation spanning Mon 22:00 - Wed 02:00 lands in three buckets."""
        window = build_window("week", date(2024, 3, 4), TZ)
        op = make_operation("long", start=(2024, 3, 4, 22), end=(2024, 3, 6, 2))

        buckets = place_operations([op], window)

        assert [b.date for b in buckets if not b.is_empty] == [date(2024, 3, 4), date(2024, 3, 5), date(2024, 3, 6)]

    def test_end_at_midnight_not_in_next_day(self, make_operation):
        window = build_window("week", date(2024, 3, 4), TZ)
        op = make_operation("evening", start=(2024, 3, 4, 20), end=(2024, 3, 5, 0))

        buckets = place_operations([op], window)

        assert buckets[0].operation_count == 1
        assert buckets[1].is_empty

    def test_machine_buckets(self, make_operation):
        window = build_window("day", date(2024, 3, 4), TZ)
        ops = [make_operation("a", machine_id="m1"), make_operation("b", machine_id=None)]

        bucket = place_operations(ops, window)[0]

        assert [op.id for op in bucket.machine_buckets["m1"]] == ["a"]
        assert [op.id for op in bucket.machine_buckets["unassigned"]] == ["b"]


class TestBuildView:
    """Test complete view builds."""

    def test_week_view_structure(self, machines, make_operation, at):
        view = build_view("week", date(2024, 3, 7), [make_operation("a")], machines, timezone=TZ, now=at(2024, 3, 1))

        assert len(view.days) == 7
        assert view.days[0].date == date(2024, 3, 4)
        assert view.start == at(2024, 3, 4)
        assert view.end == at(2024, 3, 11)
        assert all(bucket.in_month for bucket in view.days)

    def test_month_view_grid(self, machines, at):
        """Test the month view has 42 cells with padding marked out-of-month."""
        view = build_view("month", date(2024, 3, 20), [], machines, timezone=TZ, now=at(2024, 3, 1))

        assert len(view.days) == 42
        assert view.days[0].date == date(2024, 2, 26)
        assert not view.get_day(date(2024, 2, 29)).in_month
        assert view.get_day(date(2024, 3, 1)).in_month
        assert not view.get_day(date(2024, 4, 1)).in_month
        in_month = [b.date for b in view.days if b.in_month]
        assert in_month == [date(2024, 3, 1) + timedelta(days=i) for i in range(31)]

    def test_multi_day_counted_once(self, machines, make_operation, at):
        """Test window totals count a multi-day operation once."""
        op = make_operation("long", start=(2024, 3, 4, 8), end=(2024, 3, 6, 17))

        view = build_view("week", date(2024, 3, 4), [op], machines, timezone=TZ, now=at(2024, 3, 1))

        assert sum(b.operation_count for b in view.days) == 3
        assert view.stats.total_operations == 1

    def test_pipeline_filters_dedupes_and_sorts(self, machines, make_operation, at):
        ops = [
            make_operation("op2", job_id="J1", operation_index=2, start=(2024, 3, 4, 10), end=(2024, 3, 4, 12)),
            make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11)),
            make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11)),
            make_operation("other", machine_id="m2"),
            make_operation("next-week", start=(2024, 3, 12, 9), end=(2024, 3, 12, 10)),
        ]

        view = build_view(
            "week", date(2024, 3, 4), ops, machines,
            calendar_filter=CalendarFilter(machine_ids={"m1"}),
            timezone=TZ, now=at(2024, 3, 1)
        )

        assert [op.id for op in view.operations] == ["op1", "op2"]
        assert [op.id for op in view.get_day(date(2024, 3, 4)).operations] == ["op1", "op2"]
        assert len(view.violations) == 1
        assert view.violations_for("op2")[0].previous.id == "op1"

    def test_dedupe_happens_before_filter(self, machines, make_operation, at):
        """Test the first copy of a repeated id wins even when the filter would drop it."""
        ops = [
            make_operation("dup", machine_id="m2"),
            make_operation("dup", machine_id="m1"),
            make_operation("keep", machine_id="m1", start=(2024, 3, 4, 13), end=(2024, 3, 4, 14)),
        ]

        view = build_view(
            "day", date(2024, 3, 4), ops, machines,
            calendar_filter=CalendarFilter(machine_ids={"m1"}),
            timezone=TZ, now=at(2024, 3, 1)
        )

        assert [op.id for op in view.operations] == ["keep"]
        assert view.get_machine("m1").busy_hours == 1.0

    def test_machine_summaries(self, machines, make_operation, at):
        """Test active idle machines get 0%, inactive ones only appear with work."""
        ops = [make_operation("a", machine_id="m1", start=(2024, 3, 4, 9), end=(2024, 3, 4, 17))]

        view = build_view("week", date(2024, 3, 4), ops, machines, timezone=TZ, now=at(2024, 3, 1))

        assert [s.machine_id for s in view.machine_summaries] == ["m1", "m2"]
        lathe = view.get_machine("m1")
        assert lathe.busy_hours == 8.0
        assert lathe.utilization_percent == pytest.approx(20.0)
        assert view.get_machine("m2").utilization_percent == 0.0
        assert view.stats.machine_utilization == {"m1": 20.0, "m2": 0.0}
        assert view.stats.average_utilization == pytest.approx(10.0)

        inactive_op = make_operation("b", machine_id="m3")
        view = build_view("week", date(2024, 3, 4), ops + [inactive_op], machines, timezone=TZ, now=at(2024, 3, 1))
        assert view.get_machine("m3") is not None

    def test_month_summary_has_weekly_breakdown(self, machines, make_operation, at):
        ops = [make_operation("a", start=(2024, 3, 12, 9), end=(2024, 3, 12, 17))]

        view = build_view("month", date(2024, 3, 1), ops, machines, timezone=TZ, now=at(2024, 3, 1))

        lathe = view.get_machine("m1")
        assert len(lathe.weekly_utilization) == 6
        assert lathe.capacity_hours == 240.0
        assert lathe.busy_hours == 8.0

    def test_unknown_machine_warning(self, machines, make_operation, at):
        """Test operations on unregistered machines stay visible but are reported."""
        op = make_operation("ghost", machine_id="m99")
        parse_warning = DataQualityWarning("bad-1", "missing timestamp")

        view = build_view(
            "day", date(2024, 3, 4), [op], machines, timezone=TZ,
            now=at(2024, 3, 1), warnings=[parse_warning]
        )

        assert [o.id for o in view.days[0].operations] == ["ghost"]
        assert view.warnings[0] == parse_warning
        assert view.warnings[1].record_id == "ghost"
        assert view.warnings[1].kind == "unknown_machine"
        assert view.warnings[0].kind == "malformed"
        assert view.get_machine("m99") is None

    def test_stats_counts(self, machines, make_operation, at):
        ops = [
            make_operation("a", status="completed"),
            make_operation("b", status="delayed", type="maintenance", priority="high"),
            make_operation("c", status="cancelled"),
        ]

        stats = build_view("day", date(2024, 3, 4), ops, machines, timezone=TZ, now=at(2024, 3, 1)).stats

        assert stats.total_operations == 3
        assert stats.manufacturing == 2
        assert stats.maintenance == 1
        assert stats.completed == 1
        assert stats.delayed == 1
        assert stats.by_status == {"completed": 1, "delayed": 1, "cancelled": 1}
        assert stats.by_priority == {"medium": 2, "high": 1}
        assert stats.to_dict()["total_operations"] == 3

    def test_over_allocated_listed(self, machines, make_operation, at):
        view = build_view("week", date(2024, 3, 4), [make_operation("a")], machines, timezone=TZ, now=at(2024, 3, 1))

        assert view.over_allocated == []
        assert view.stats.over_allocated_count == 0
        assert view.to_dict()["granularity"] == "week"


class TestMachineStatus:
    """Test running / scheduled / idle status."""

    def test_running(self, make_operation, at):
        op = make_operation("a", start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        upcoming = make_operation("b", start=(2024, 3, 4, 11), end=(2024, 3, 4, 12))

        status, current, following = determine_machine_status([upcoming, op], at(2024, 3, 4, 10))

        assert status == "running"
        assert current.id == "a"
        assert following.id == "b"

    def test_scheduled_within_lookahead(self, make_operation, at):
        op = make_operation("a", start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))

        assert determine_machine_status([op], at(2024, 3, 4, 7, 30), 2)[0] == "scheduled"
        assert determine_machine_status([op], at(2024, 3, 4, 6, 30), 2)[0] == "idle"

    def test_idle_after_end(self, make_operation, at):
        op = make_operation("a", start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))

        assert determine_machine_status([op], at(2024, 3, 4, 11)) == ("idle", None, None)
