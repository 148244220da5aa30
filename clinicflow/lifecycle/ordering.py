"""
Queue ordering policy.

Emergency entries first, then higher priority level, then earlier check-in.
Queue number breaks exact ties so the order is total. Everything here is a
pure function of the entries passed in; positions are derived on each read
and never stored.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from clinicflow.lifecycle.enums import PRIORITY_RANK, PriorityLevel, QueueStatus

PRIORITY_WEIGHTS = {
    PriorityLevel.LOW: 25.0,
    PriorityLevel.MEDIUM: 50.0,
    PriorityLevel.HIGH: 75.0,
    PriorityLevel.EMERGENCY: 100.0,
}
EMERGENCY_BONUS = 100.0


def priority_rank(level) -> int:
    return PRIORITY_RANK[PriorityLevel(level)]


def priority_score(level, is_emergency: bool) -> float:
    score = PRIORITY_WEIGHTS[PriorityLevel(level)]
    if is_emergency:
        score += EMERGENCY_BONUS
    return score


def ordering_key(entry) -> tuple:
    return (
        0 if entry.is_emergency else 1,
        -priority_rank(entry.priority_level),
        entry.check_in_time,
        entry.queue_number,
    )


def ranks_before(a, b) -> bool:
    return ordering_key(a) < ordering_key(b)


def _is(entry, status: QueueStatus) -> bool:
    return QueueStatus(entry.status) == status


def rank_waiting(entries: Iterable, department: Optional[str] = None) -> List:
    waiting = [
        e for e in entries
        if _is(e, QueueStatus.WAITING) and (department is None or e.department == department)
    ]
    return sorted(waiting, key=ordering_key)


def partition_by_department(entries: Iterable) -> Dict[str, List]:
    partitions = defaultdict(list)
    for entry in entries:
        if _is(entry, QueueStatus.WAITING):
            partitions[entry.department].append(entry)
    return {department: sorted(items, key=ordering_key) for department, items in partitions.items()}


def next_to_call(entries: Iterable, department: str):
    ranked = rank_waiting(entries, department)
    return ranked[0] if ranked else None


def rank_active(entries: Iterable, department: Optional[str] = None) -> List:
    """CALLED entries (in call order) ahead of the ranked WAITING ones."""
    entries = list(entries)
    called = sorted(
        (e for e in entries if _is(e, QueueStatus.CALLED) and (department is None or e.department == department)),
        key=lambda e: (e.called_time, e.queue_number),
    )
    return called + rank_waiting(entries, department)


def position_of(entry, entries: Iterable) -> Optional[int]:
    """1-based position among CALLED/WAITING entries of the entry's department."""
    for index, candidate in enumerate(rank_active(entries, entry.department), start=1):
        if candidate.id == entry.id:
            return index
    return None


def estimate_wait_times(entries: Iterable, avg_service_minutes: float, department: Optional[str] = None) -> Dict:
    """Minutes each WAITING entry should expect, keyed by entry id."""
    estimates = {}
    for ahead, entry in enumerate(rank_waiting(entries, department)):
        estimates[entry.id] = int(round(ahead * avg_service_minutes))
    return estimates
