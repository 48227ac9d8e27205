"""
Over-Allocation Detection

Pure predicates over utilization output. A machine is over-scheduled when
its utilization exceeds 100% of standard capacity; exactly 100% is fully
loaded, not over-scheduled.
"""

from typing import Iterable, List

OVER_ALLOCATION_THRESHOLD_PERCENT = 100.0
HIGH_UTILIZATION_PERCENT = 90.0
MEDIUM_UTILIZATION_PERCENT = 70.0


def is_over_scheduled(percent: float) -> bool:
    """True iff utilization percent is strictly above 100."""
    return percent > OVER_ALLOCATION_THRESHOLD_PERCENT


def utilization_level(percent: float) -> str:
    """
    Bucket a utilization percentage for highlighting.

    Returns:
        'over' (> 100), 'high' (>= 90), 'medium' (>= 70) or 'low'
    """
    if is_over_scheduled(percent):
        return 'over'
    if percent >= HIGH_UTILIZATION_PERCENT:
        return 'high'
    if percent >= MEDIUM_UTILIZATION_PERCENT:
        return 'medium'
    return 'low'


def over_allocated_machines(summaries: Iterable) -> List:
    """Machine summaries flagged as over-scheduled, in input order."""
    return [s for s in summaries if is_over_scheduled(s.utilization_percent)]


def rank_by_attention(summaries: Iterable) -> List:
    """
    Order machine summaries by how urgently they need attention.

    Over-scheduled machines first, then by utilization descending, then by
    machine id for a stable display order.
    """
    return sorted(
        summaries,
        key=lambda s: (
            not is_over_scheduled(s.utilization_percent),
            -s.utilization_percent,
            s.machine_id,
        )
    )
