"""
Tests for dependency ordering and validation within jobs.
"""

from collections import Counter

from core.calendar.dependencies import sort_by_dependencies, validate_dependencies, violations_by_operation


class TestSortByDependencies:
    """Test routing order of operations."""

    def test_jobs_in_first_appearance_order_then_index(self, make_operation):
        """Test jobs keep first-appearance order and operations follow the routing."""
        ops = [
            make_operation("j2-op2", job_id="J2", operation_index=2),
            make_operation("j1-op2", job_id="J1", operation_index=2),
            make_operation("loose", job_id=None),
            make_operation("j2-op1", job_id="J2", operation_index=1),
            make_operation("j1-op1", job_id="J1", operation_index=1),
            make_operation("j1-noindex", job_id="J1"),
        ]

        result = sort_by_dependencies(ops)

        assert [op.id for op in result] == [
            "j2-op1", "j2-op2", "j1-op1", "j1-op2", "j1-noindex", "loose"
        ]

    def test_ties_broken_by_start_time(self, make_operation):
        ops = [
            make_operation("late", job_id="J1", operation_index=1, start=(2024, 3, 4, 13), end=(2024, 3, 4, 14)),
            make_operation("early", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 10)),
        ]

        assert [op.id for op in sort_by_dependencies(ops)] == ["early", "late"]

    def test_output_is_permutation(self, make_operation):
        """Test nothing is added or lost, duplicates included."""
        ops = [
            make_operation("a", job_id="J1", operation_index=3),
            make_operation("a", job_id="J1", operation_index=3),
            make_operation("b"),
            make_operation("c", job_id="J2"),
            make_operation("d", job_id="J1", operation_index=1),
        ]

        result = sort_by_dependencies(ops)

        assert Counter(id(op) for op in result) == Counter(id(op) for op in ops)

    def test_input_not_mutated(self, make_operation):
        ops = [
            make_operation("b", job_id="J1", operation_index=2),
            make_operation("a", job_id="J1", operation_index=1),
        ]
        original = list(ops)

        sort_by_dependencies(ops)

        assert ops == original


class TestValidateDependencies:
    """Test detection of operations that start before their predecessor ends."""

    def test_overlap_is_violation(self, make_operation):
        """Test op 2 starting at 10:00 while op 1 runs until 11:00."""
        op1 = make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        op2 = make_operation("op2", job_id="J1", operation_index=2, start=(2024, 3, 4, 10), end=(2024, 3, 4, 12))

        violations = validate_dependencies([op2, op1])

        assert len(violations) == 1
        violation = violations[0]
        assert violation.kind == "overlap"
        assert violation.previous.id == "op1"
        assert violation.following.id == "op2"
        assert violation.minutes == 60
        assert "J1" in violation.message

    def test_hand_off_at_end_is_fine(self, make_operation):
        """Test op 2 starting exactly when op 1 ends (or later) is valid."""
        op1 = make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        on_time = make_operation("op2", job_id="J1", operation_index=2, start=(2024, 3, 4, 11), end=(2024, 3, 4, 12))
        later = make_operation("op2b", job_id="J2", operation_index=2, start=(2024, 3, 4, 13), end=(2024, 3, 4, 14))

        assert validate_dependencies([op1, on_time]) == []
        assert validate_dependencies([op1, later]) == []

    def test_different_jobs_never_compared(self, make_operation):
        op1 = make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        op2 = make_operation("op2", job_id="J2", operation_index=2, start=(2024, 3, 4, 10), end=(2024, 3, 4, 12))

        assert validate_dependencies([op1, op2]) == []

    def test_equal_and_missing_indices_skipped(self, make_operation):
        ops = [
            make_operation("a", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11)),
            make_operation("b", job_id="J1", operation_index=1, start=(2024, 3, 4, 10), end=(2024, 3, 4, 12)),
            make_operation("c", job_id="J1", start=(2024, 3, 4, 9), end=(2024, 3, 4, 10)),
            make_operation("d", job_id=None, operation_index=2, start=(2024, 3, 4, 9), end=(2024, 3, 4, 10)),
        ]

        assert validate_dependencies(ops) == []

    def test_compared_with_every_operation_at_previous_index(self, make_operation):
        """Test all predecessors at the immediately lower index are checked."""
        ops = [
            make_operation("1a", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11)),
            make_operation("1b", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 13)),
            make_operation("3", job_id="J1", operation_index=3, start=(2024, 3, 4, 12), end=(2024, 3, 4, 14)),
        ]

        violations = validate_dependencies(ops)

        assert [(v.previous.id, v.following.id) for v in violations] == [("1b", "3")]

    def test_duplicates_reported_once(self, make_operation):
        op1 = make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        op2 = make_operation("op2", job_id="J1", operation_index=2, start=(2024, 3, 4, 10), end=(2024, 3, 4, 12))

        assert len(validate_dependencies([op1, op2, op2, op1])) == 1

    def test_insufficient_gap_only_when_configured(self, make_operation):
        """Test changeover gap advisories are off by default."""
        op1 = make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        op2 = make_operation("op2", job_id="J1", operation_index=2, start=(2024, 3, 4, 11, 15), end=(2024, 3, 4, 12))

        assert validate_dependencies([op1, op2]) == []

        violations = validate_dependencies([op1, op2], min_gap_minutes=30)
        assert len(violations) == 1
        assert violations[0].kind == "insufficient_gap"
        assert violations[0].minutes == 15

    def test_violations_by_operation(self, make_operation):
        op1 = make_operation("op1", job_id="J1", operation_index=1, start=(2024, 3, 4, 9), end=(2024, 3, 4, 11))
        op2 = make_operation("op2", job_id="J1", operation_index=2, start=(2024, 3, 4, 10), end=(2024, 3, 4, 12))

        index = violations_by_operation(validate_dependencies([op1, op2]))

        assert list(index) == ["op2"]
        assert index["op2"][0].to_dict()["previous_operation_id"] == "op1"
