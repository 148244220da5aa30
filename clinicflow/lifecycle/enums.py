from enum import Enum


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


class AppointmentType(str, Enum):
    CONSULTATION = "CONSULTATION"
    FOLLOW_UP = "FOLLOW_UP"
    LABORATORY = "LABORATORY"
    EMERGENCY = "EMERGENCY"
    VACCINATION = "VACCINATION"
    CHECKUP = "CHECKUP"


class PriorityLevel(str, Enum):
    EMERGENCY = "EMERGENCY"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class QueueStatus(str, Enum):
    WAITING = "WAITING"
    CALLED = "CALLED"
    IN_SERVICE = "IN_SERVICE"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    LEFT = "LEFT"


TERMINAL_APPOINTMENT_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

TERMINAL_QUEUE_STATUSES = frozenset({
    QueueStatus.COMPLETED,
    QueueStatus.SKIPPED,
    QueueStatus.LEFT,
})

ACTIVE_QUEUE_STATUSES = frozenset({
    QueueStatus.WAITING,
    QueueStatus.CALLED,
    QueueStatus.IN_SERVICE,
})

# Higher rank is served first
PRIORITY_RANK = {
    PriorityLevel.LOW: 0,
    PriorityLevel.MEDIUM: 1,
    PriorityLevel.HIGH: 2,
    PriorityLevel.EMERGENCY: 3,
}
