"""
Error taxonomy for lifecycle operations.

Services raise these; the API layer turns them into HTTP responses
(see ``clinicflow.main``).
"""
from typing import Optional


class LifecycleError(Exception):
    """Base class for every error a lifecycle operation can raise."""

    code = "lifecycle_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GuardViolation(LifecycleError):
    """A transition precondition (status set, time window, required field) is not met."""

    code = "guard_violation"

    def __init__(self, guard: str, message: str):
        super().__init__(message)
        self.guard = guard

    def __str__(self):
        return f"[{self.guard}] {self.message}"


class StaleState(LifecycleError):
    """The entity changed between read and conditional write. Re-fetch and retry."""

    code = "stale_state"
    retryable = True

    def __init__(self, entity: str, entity_id, message: Optional[str] = None):
        super().__init__(message or f"{entity} {entity_id} was modified concurrently")
        self.entity = entity
        self.entity_id = entity_id


class CollaboratorUnavailable(LifecycleError):
    """A predictor or notification call failed. Never blocks a transition."""

    code = "collaborator_unavailable"

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class ConsistencyViolation(LifecycleError):
    """A coupled appointment / queue entry pair diverged and needs manual reconciliation."""

    code = "consistency_violation"

    def __init__(self, message: str, problems: Optional[list] = None):
        super().__init__(message)
        self.problems = problems or []


class EntityNotFound(LifecycleError):
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class PermissionDenied(LifecycleError):
    """The authenticated actor may not perform this operation."""

    code = "forbidden"
