"""
Operation Deduplication

Redundant upstream writes can store the same operation more than once.
Duplicates must be collapsed before any duration or utilization math,
otherwise utilization is silently inflated.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List

from .models import Operation

logger = logging.getLogger(__name__)


def deduplicate_operations(operations: Iterable[Operation]) -> List[Operation]:
    """
    Return at most one operation per id; the first-seen copy wins.

    Input order of the kept operations is preserved.
    """
    seen = set()
    unique: List[Operation] = []
    duplicates = 0

    for operation in operations:
        if operation.id in seen:
            duplicates += 1
            logger.debug(
                f"Duplicate operation filtered out: {operation.id} "
                f"({operation.part_name} {operation.operation_name})".rstrip()
            )
            continue
        seen.add(operation.id)
        unique.append(operation)

    if duplicates:
        logger.warning(f"Removed {duplicates} duplicate operation record(s)")

    return unique


def find_duplicate_ids(operations: Iterable[Operation]) -> Dict[str, int]:
    """Ids that occur more than once, with their occurrence count."""
    counts = Counter(op.id for op in operations)
    return {op_id: count for op_id, count in counts.items() if count > 1}
