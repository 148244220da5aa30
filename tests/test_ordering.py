import random
from datetime import date, datetime
from uuid import uuid4

from clinicflow.db.models import QueueEntry
from clinicflow.lifecycle.enums import PriorityLevel, QueueStatus
from clinicflow.lifecycle.ordering import (
    estimate_wait_times,
    next_to_call,
    partition_by_department,
    position_of,
    priority_score,
    rank_active,
    rank_waiting,
    ranks_before,
)

_numbers = iter(range(1, 10_000))


def entry(hour, minute, priority=PriorityLevel.MEDIUM, emergency=False, status=QueueStatus.WAITING,
          department="General", called_time=None, number=None):
    return QueueEntry(
        queue_date=date(2026, 3, 2),
        department=department,
        queue_number=number if number is not None else next(_numbers),
        patient_id=uuid4(),
        status=status,
        priority_level=priority,
        is_emergency=emergency,
        check_in_time=datetime(2026, 3, 2, hour, minute),
        called_time=called_time,
    )


def test_emergency_preempts_earlier_check_in():
    early = entry(8, 50)
    emergency = entry(9, 0, priority=PriorityLevel.EMERGENCY, emergency=True)
    assert next_to_call([early, emergency], "General") is emergency
    assert ranks_before(emergency, early)


def test_priority_then_check_in_then_queue_number():
    low_early = entry(8, 0, priority=PriorityLevel.LOW)
    high_late = entry(8, 40, priority=PriorityLevel.HIGH)
    medium_a = entry(8, 10, priority=PriorityLevel.MEDIUM, number=7)
    medium_b = entry(8, 10, priority=PriorityLevel.MEDIUM, number=3)
    ranked = rank_waiting([low_early, medium_a, high_late, medium_b])
    assert ranked == [high_late, medium_b, medium_a, low_early]


def test_ordering_is_idempotent_and_input_order_independent():
    entries = [
        entry(8, m % 60, priority=random.choice(list(PriorityLevel)), emergency=random.random() < 0.2)
        for m in range(0, 120, 7)
    ]
    once = rank_waiting(entries)
    assert rank_waiting(once) == once
    shuffled = entries[:]
    random.shuffle(shuffled)
    assert rank_waiting(shuffled) == once


def test_only_waiting_entries_of_the_department_are_ranked():
    waiting = entry(8, 0)
    called = entry(7, 0, status=QueueStatus.CALLED, called_time=datetime(2026, 3, 2, 8, 1))
    elsewhere = entry(7, 30, department="Pediatrics")
    assert rank_waiting([waiting, called, elsewhere], "General") == [waiting]
    assert next_to_call([called, elsewhere], "General") is None

    partitions = partition_by_department([waiting, called, elsewhere])
    assert partitions == {"General": [waiting], "Pediatrics": [elsewhere]}


def test_position_counts_called_entries_first():
    called = entry(8, 30, status=QueueStatus.CALLED, called_time=datetime(2026, 3, 2, 8, 45))
    first = entry(8, 0)
    second = entry(8, 10)
    done = entry(7, 0, status=QueueStatus.COMPLETED)
    entries = [second, done, first, called]

    assert rank_active(entries) == [called, first, second]
    assert position_of(called, entries) == 1
    assert position_of(first, entries) == 2
    assert position_of(second, entries) == 3
    assert position_of(done, entries) is None


def test_wait_estimates_sum_average_service_time_ahead():
    first = entry(8, 0)
    second = entry(8, 5)
    urgent = entry(8, 10, priority=PriorityLevel.HIGH)
    estimates = estimate_wait_times([first, second, urgent], 12.5)
    assert estimates == {urgent.id: 0, first.id: 12, second.id: 25}


def test_priority_score_weights():
    assert priority_score(PriorityLevel.LOW, False) == 25.0
    assert priority_score(PriorityLevel.MEDIUM, False) == 50.0
    assert priority_score(PriorityLevel.HIGH, False) == 75.0
    assert priority_score(PriorityLevel.EMERGENCY, True) == 200.0
