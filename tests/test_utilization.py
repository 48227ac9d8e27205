"""
Tests for machine utilization and over-allocation detection.

Machines use 08:00-17:00 with a one hour break: 8h/day, 40h/week.
"""

import pytest
from datetime import date, time
from types import SimpleNamespace

from core.calendar.windows import build_window
from core.calculations.allocation import (
    is_over_scheduled,
    over_allocated_machines,
    rank_by_attention,
    utilization_level,
)
from core.calculations.utilization import (
    UtilizationResult,
    calculate_capacity_hours,
    compute_month_utilization,
    compute_utilization,
    utilization_table,
)


@pytest.fixture
def week():
    return build_window("week", date(2024, 3, 4), "Europe/Istanbul")


@pytest.fixture
def machine(make_machine):
    return make_machine("m1")


class TestComputeUtilization:
    """Test the clipped, max-per-day utilization calculation."""

    def test_single_operation_exact(self, machine, make_operation, week):
        """Test a 2h operation inside working hours: 2 / 8 / 5 days × 100 = 5%."""
        op = make_operation("op-1", start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))

        result = compute_utilization(machine, [op], week.start, week.end, week.tz)

        assert result.busy_hours == 2.0
        assert result.capacity_hours == 40.0
        assert result.percent == pytest.approx(2 / 8 / 5 * 100)
        assert result.daily_busy_hours[date(2024, 3, 4)] == 2.0
        assert not result.is_over_scheduled

    def test_overlapping_operations_take_max_not_sum(self, machine, make_operation, week):
        """Test 09-12 and 10-14 on one day contribute 4h (the larger), not 7h."""
        ops = [
            make_operation("a", start=(2024, 3, 4, 9), end=(2024, 3, 4, 12)),
            make_operation("b", start=(2024, 3, 4, 10), end=(2024, 3, 4, 14)),
        ]

        result = compute_utilization(machine, ops, week.start, week.end, week.tz)

        assert result.busy_hours == 4.0

    def test_outside_working_hours_contributes_nothing(self, machine, make_operation, week):
        """Test a 02:00-04:00 operation on a day-shift machine."""
        op = make_operation("night", start=(2024, 3, 5, 2), end=(2024, 3, 5, 4))

        result = compute_utilization(machine, [op], week.start, week.end, week.tz)

        assert result.busy_hours == 0.0
        assert result.percent == 0.0
        assert result.operation_count == 1

    def test_weekend_operation_contributes_nothing(self, machine, make_operation, week):
        op = make_operation("sat", start=(2024, 3, 9, 9), end=(2024, 3, 9, 15))

        result = compute_utilization(machine, [op], week.start, week.end, week.tz)

        assert result.busy_hours == 0.0
        assert result.capacity_hours == 40.0

    def test_multi_day_operation_capped_per_day(self, machine, make_operation, week):
        """Test Mon 08:00 - Wed 17:00 counts at most 8h on each of three days."""
        op = make_operation("long", start=(2024, 3, 4, 8), end=(2024, 3, 6, 17))

        result = compute_utilization(machine, [op], week.start, week.end, week.tz)

        assert result.busy_hours == 24.0
        assert result.percent == pytest.approx(60.0)

    def test_operation_clipped_to_window(self, machine, make_operation, at):
        """Test only the part inside a day window is counted."""
        day = build_window("day", date(2024, 3, 5), "Europe/Istanbul")
        op = make_operation("spill", start=(2024, 3, 4, 14), end=(2024, 3, 5, 10))

        result = compute_utilization(machine, [op], day.start, day.end, day.tz)

        assert result.busy_hours == 2.0
        assert result.capacity_hours == 8.0
        assert result.percent == pytest.approx(25.0)

    def test_duplicates_do_not_inflate(self, machine, make_operation, week):
        """Test a duplicated operation counts once."""
        op = make_operation("op-1", start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        twin = make_operation("op-1", start=(2024, 3, 5, 9), end=(2024, 3, 5, 11))

        deduped = compute_utilization(machine, [op], week.start, week.end, week.tz)
        raw = compute_utilization(machine, [op, twin], week.start, week.end, week.tz)

        assert raw.duplicates_removed == 1
        assert deduped.percent <= raw.percent
        assert raw.busy_hours == 2.0

    def test_other_machines_ignored(self, machine, make_operation, week):
        ops = [
            make_operation("mine", machine_id="m1"),
            make_operation("theirs", machine_id="m2", start=(2024, 3, 5, 9), end=(2024, 3, 5, 17)),
            make_operation("nobody", machine_id=None, start=(2024, 3, 6, 9), end=(2024, 3, 6, 17)),
        ]

        result = compute_utilization(machine, ops, week.start, week.end, week.tz)

        assert result.busy_hours == 2.0
        assert result.operation_count == 1

    def test_busy_never_exceeds_capacity(self, machine, make_operation, week):
        """Test heavy overlapping load stays within hours/day × active days."""
        ops = [
            make_operation(f"op-{i}", start=(2024, 3, 4 + (i % 7), 0), end=(2024, 3, 4 + (i % 7), 23))
            for i in range(20)
        ]

        result = compute_utilization(machine, ops, week.start, week.end, week.tz)

        assert 0 <= result.busy_hours <= result.capacity_hours
        assert result.busy_hours == 40.0

    def test_zero_capacity_is_zero_percent(self, machine, make_operation):
        """Test a Saturday window has no capacity and 0% utilization."""
        saturday = build_window("day", date(2024, 3, 9), "Europe/Istanbul")
        op = make_operation("sat", start=(2024, 3, 9, 9), end=(2024, 3, 9, 12))

        result = compute_utilization(machine, [op], saturday.start, saturday.end, saturday.tz)

        assert result.capacity_hours == 0.0
        assert result.percent == 0.0

    def test_invalid_window(self, machine, week):
        with pytest.raises(ValueError, match="must be after window start"):
            compute_utilization(machine, [], week.end, week.start, week.tz)

    def test_capacity_follows_machine_calendar(self, make_machine, week):
        """Test a four-day 06:00-14:00 machine has 32h weekly capacity."""
        machine = make_machine("m9", start=time(6, 0), end=time(14, 0), working_days=(1, 2, 3, 4), break_minutes=0)

        assert calculate_capacity_hours(machine, week.start, week.end, week.tz) == 32.0

    def test_window_not_aligned_to_midnight(self, machine, make_operation, at):
        """Test a Monday noon to Monday noon week counts 40h, not 48h."""
        op = make_operation("a", start=(2024, 3, 4, 12), end=(2024, 3, 4, 14))

        result = compute_utilization(machine, [op], at(2024, 3, 4, 12), at(2024, 3, 11, 12), "Europe/Istanbul")

        assert result.capacity_hours == pytest.approx(40.0)
        assert result.busy_hours == 2.0
        assert result.percent == pytest.approx(5.0)

    def test_partial_day_capacity_prorated(self, machine, at):
        """Test covering 5 of 9 working hours gives 5/9 of the daily capacity."""
        capacity = calculate_capacity_hours(machine, at(2024, 3, 4, 12), at(2024, 3, 5), "Europe/Istanbul")

        assert capacity == pytest.approx(8.0 * 5 / 9)


class TestMonthUtilization:
    """Test month utilization as the sum of the weekly calculation."""

    def test_month_sums_weeks(self, machine, make_operation):
        month = build_window("month", date(2024, 3, 15), "Europe/Istanbul")
        ops = [
            make_operation("feb", start=(2024, 2, 27, 8), end=(2024, 2, 27, 12)),
            make_operation("mar", start=(2024, 3, 12, 9), end=(2024, 3, 12, 17)),
            make_operation("apr", start=(2024, 4, 5, 13), end=(2024, 4, 5, 15)),
        ]

        total, weekly = compute_month_utilization(machine, ops, month)

        assert len(weekly) == 6
        assert total.busy_hours == sum(w.busy_hours for w in weekly) == 14.0
        assert total.capacity_hours == sum(w.capacity_hours for w in weekly) == 240.0
        assert total.percent == pytest.approx(14.0 / 240.0 * 100)
        assert weekly[0].busy_hours == 4.0
        assert total.operation_count == 3


class TestUtilizationTable:
    def test_sorted_highest_first(self, at):
        results = [
            UtilizationResult("m1", at(2024, 3, 4), at(2024, 3, 11), 10.0, 40.0, 25.0),
            UtilizationResult("m2", at(2024, 3, 4), at(2024, 3, 11), 30.0, 40.0, 75.0),
        ]

        df = utilization_table(results, {"m2": "Lathe"})

        assert list(df["machine_id"]) == ["m2", "m1"]
        assert df.iloc[0]["machine_name"] == "Lathe"

    def test_empty(self):
        assert utilization_table([]).empty


class TestOverAllocation:
    """Test the over-allocation predicate and ranking."""

    def test_boundary(self):
        """Test exactly 100% is fully loaded, not over-scheduled."""
        assert not is_over_scheduled(100.0)
        assert is_over_scheduled(100.01)
        assert not is_over_scheduled(0.0)

    def test_levels(self):
        assert utilization_level(120) == "over"
        assert utilization_level(100) == "high"
        assert utilization_level(75) == "medium"
        assert utilization_level(10) == "low"

    def test_rank_by_attention(self):
        summaries = [
            SimpleNamespace(machine_id="b", utilization_percent=50.0),
            SimpleNamespace(machine_id="a", utilization_percent=50.0),
            SimpleNamespace(machine_id="c", utilization_percent=120.0),
            SimpleNamespace(machine_id="d", utilization_percent=95.0),
        ]

        assert [s.machine_id for s in rank_by_attention(summaries)] == ["c", "d", "a", "b"]
        assert [s.machine_id for s in over_allocated_machines(summaries)] == ["c"]
