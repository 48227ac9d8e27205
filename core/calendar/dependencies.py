"""
Operation Dependency Ordering and Validation

Operations of a job follow its routing: operation_index 1 must finish
before operation_index 2 may start, and so on.

- sort_by_dependencies: display order that respects each job's routing
- validate_dependencies: advisory list of sequencing violations

Neither function mutates its input or blocks view construction.
"""

import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .dedup import deduplicate_operations
from .models import Operation

logger = logging.getLogger(__name__)

VIOLATION_KINDS = ['overlap', 'insufficient_gap']


@dataclass(frozen=True)
class DependencyViolation:
    """
    A later-sequenced operation that starts too early.

    kind 'overlap': following starts before previous ends; minutes is the
    overlap. kind 'insufficient_gap': following starts after previous ends
    but within the minimum changeover gap; minutes is the actual gap.
    """
    job_id: str
    previous: Operation
    following: Operation
    kind: str
    minutes: float

    def __post_init__(self):
        if self.kind not in VIOLATION_KINDS:
            raise ValueError(f"Invalid violation kind: {self.kind}. Must be one of {VIOLATION_KINDS}")

    @property
    def message(self) -> str:
        if self.kind == 'overlap':
            return (
                f"Job {self.job_id}: operation #{self.following.operation_index} "
                f"({self.following.display_title}) starts before operation "
                f"#{self.previous.operation_index} ({self.previous.display_title}) "
                f"completes (overlap {self.minutes:.0f} min)"
            )
        return (
            f"Job {self.job_id}: only {self.minutes:.0f} min between operation "
            f"#{self.previous.operation_index} and #{self.following.operation_index}"
        )

    @property
    def suggestion(self) -> str:
        if self.kind == 'overlap':
            return f"Reschedule to start after {self.previous.end_time.strftime('%Y-%m-%d %H:%M')}"
        return "Allow more time between operations for setup/changeover"

    def to_dict(self) -> Dict:
        return {
            'job_id': self.job_id,
            'kind': self.kind,
            'previous_operation_id': self.previous.id,
            'following_operation_id': self.following.id,
            'previous_index': self.previous.operation_index,
            'following_index': self.following.operation_index,
            'minutes': round(self.minutes, 1),
            'message': self.message,
            'suggestion': self.suggestion,
        }


def _group_by_job(operations: Iterable[Operation]) -> "OrderedDict[str, List[Operation]]":
    groups: "OrderedDict[str, List[Operation]]" = OrderedDict()
    for operation in operations:
        if operation.job_id:
            groups.setdefault(operation.job_id, []).append(operation)
    return groups


def sort_by_dependencies(operations: Iterable[Operation]) -> List[Operation]:
    """
    Order operations so each job's routing reads top to bottom.

    Jobs appear in order of their first operation in the input. Inside a job
    operations are ordered by operation_index (operations without an index
    last), then start time, then input position. Operations without a job
    follow all jobs in input order. The result is a permutation of the input.
    """
    operations = list(operations)
    position = {id(op): i for i, op in enumerate(operations)}

    def routing_key(op: Operation):
        return (
            op.operation_index is None,
            op.operation_index if op.operation_index is not None else 0,
            op.start_time,
            position[id(op)],
        )

    ordered: List[Operation] = []
    for job_operations in _group_by_job(operations).values():
        ordered.extend(sorted(job_operations, key=routing_key))

    ordered.extend(op for op in operations if not op.job_id)
    return ordered


def validate_dependencies(
    operations: Iterable[Operation],
    min_gap_minutes: float = 0
) -> List[DependencyViolation]:
    """
    Detect operations that start before their same-job predecessor finishes.

    Each operation is compared with every operation of the same job at the
    immediately lower operation_index present in the set. Operations of
    different jobs, operations sharing an index, and operations without a
    job or index are never compared.

    Args:
        operations: Operation set of a day, week or month
        min_gap_minutes: When > 0, also flag hand-offs shorter than this gap

    Returns:
        List of DependencyViolation (empty when the schedule is consistent)

    Example:
        >>> violations = validate_dependencies(week_operations)
        >>> for v in violations:
        ...     print(v.message)
    """
    violations: List[DependencyViolation] = []

    for job_id, job_operations in _group_by_job(deduplicate_operations(operations)).items():
        by_index: Dict[int, List[Operation]] = defaultdict(list)
        for op in job_operations:
            if op.operation_index is not None:
                by_index[op.operation_index].append(op)

        indices = sorted(by_index)
        for previous_index, following_index in zip(indices, indices[1:]):
            predecessors = sorted(by_index[previous_index], key=lambda o: (o.start_time, o.id))
            followers = sorted(by_index[following_index], key=lambda o: (o.start_time, o.id))

            for following in followers:
                for previous in predecessors:
                    violation = _check_pair(job_id, previous, following, min_gap_minutes)
                    if violation is not None:
                        violations.append(violation)

    if violations:
        logger.info(f"Operation dependency check: {len(violations)} item(s) noted")

    return violations


def _check_pair(
    job_id: str,
    previous: Operation,
    following: Operation,
    min_gap_minutes: float
) -> Optional[DependencyViolation]:
    if following.start_time < previous.end_time:
        overlap = (previous.end_time - following.start_time).total_seconds() / 60.0
        return DependencyViolation(job_id, previous, following, 'overlap', overlap)

    if min_gap_minutes > 0:
        gap = (following.start_time - previous.end_time).total_seconds() / 60.0
        if gap < min_gap_minutes:
            return DependencyViolation(job_id, previous, following, 'insufficient_gap', gap)

    return None


def violations_by_operation(violations: Iterable[DependencyViolation]) -> Dict[str, List[DependencyViolation]]:
    """Index violations by the id of the operation that starts too early."""
    index: Dict[str, List[DependencyViolation]] = defaultdict(list)
    for violation in violations:
        index[violation.following.id].append(violation)
    return dict(index)
