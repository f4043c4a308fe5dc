"""
Error taxonomy for the task mutation engine.

Every error the core raises derives from TaskTrackerError so the HTTP layer
can register one handler per kind. StaleVersionError is store-level and never
leaves the service; it is translated into TaskConflictError.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional


class TaskTrackerError(Exception):
    """Base class for task tracker domain errors."""


@dataclass(frozen=True)
class Violation:
    """Single structural violation on a task field."""
    field: str
    message: str

    def to_dict(self):
        return {"field": self.field, "message": self.message}


class TaskNotFoundError(TaskTrackerError):
    """Task is absent or owned by someone else. Both cases look the same."""

    def __init__(self, task_id: int, owner_id: Optional[int] = None):
        self.task_id = task_id
        self.owner_id = owner_id
        super().__init__(f"Task {task_id} not found")


class TaskConflictError(TaskTrackerError):
    """Submitted version does not match the stored version."""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} was modified concurrently; re-fetch and retry")


class TaskValidationError(TaskTrackerError):
    """One or more field violations, reported together."""

    def __init__(self, violations: Iterable[Violation]):
        self.violations: List[Violation] = list(violations)
        fields = ", ".join(v.field for v in self.violations)
        super().__init__(f"Validation failed for: {fields}")

    @classmethod
    def single(cls, field: str, message: str) -> "TaskValidationError":
        return cls([Violation(field, message)])


class MalformedBodyError(TaskTrackerError):
    """A request field could not be decoded into a valid value."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class TaskStateError(TaskTrackerError):
    """Internal consistency fault, e.g. a stored task without a status."""


class StaleVersionError(TaskTrackerError):
    """Raised by the store when a conditional save matched no row."""

    def __init__(self, task_id: int, expected_version: int):
        self.task_id = task_id
        self.expected_version = expected_version
        super().__init__(
            f"Conditional save of task {task_id} at version {expected_version} matched no row"
        )
