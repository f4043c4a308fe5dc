"""
Task snapshot types and Pydantic models for request/response validation.

Task is an immutable snapshot of one stored row. Mutations never touch a
snapshot in place: they build a new one with dataclasses.replace and hand it
to the store's conditional save.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import TaskValidationError, Violation

TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 1000


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class Task:
    """Immutable snapshot of a task row."""
    id: Optional[int]
    owner_id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    version: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class TaskInfo:
    """Trimmed task entry used in owner reports."""
    id: int
    title: str


@dataclass
class OwnerTaskReport:
    """Per-owner digest of recently completed and oldest pending tasks."""
    owner_id: int
    email: str
    tasks_completed: List[TaskInfo] = field(default_factory=list)
    tasks_pending: List[TaskInfo] = field(default_factory=list)


class TaskFields(BaseModel):
    """Structural rules shared by create, replace and patch."""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v):
        """Reject titles made only of whitespace."""
        if not v.strip():
            raise ValueError("Title must not be blank")
        return v


def violations_from_validation_error(exc: ValidationError) -> List[Violation]:
    """Flatten a Pydantic ValidationError into field/message pairs."""
    violations = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        field_name = ".".join(loc) or "body"
        if error.get("type") == "value_error" and "error" in error.get("ctx", {}):
            message = str(error["ctx"]["error"])
        else:
            message = error.get("msg", "Invalid value")
        violations.append(Violation(field_name, message))
    return violations


def validate_task_fields(title: Any, description: Any) -> None:
    """
    Validate mutable task fields, collecting every violation.

    Raises:
        TaskValidationError: If any field breaks the structural rules
    """
    try:
        TaskFields(title=title, description=description)
    except ValidationError as exc:
        raise TaskValidationError(violations_from_validation_error(exc)) from None


# Request/response models for the HTTP layer


class TaskCreateRequest(BaseModel):
    """Request model for task creation. Constraints are enforced by the service."""
    title: str
    description: Optional[str] = None


class TaskReplaceRequest(BaseModel):
    """Request model for full replacement; every field is part of the contract."""
    title: str
    description: Optional[str] = None
    status: str
    version: int = Field(ge=0, strict=True)


class TaskResponse(BaseModel):
    """Response model for a single task."""
    id: int
    owner_id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    version: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            owner_id=task.owner_id,
            title=task.title,
            description=task.description,
            status=task.status,
            version=task.version,
            created_at=task.created_at,
            updated_at=task.updated_at,
            completed_at=task.completed_at,
        )


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str
    database_connected: bool
    timestamp: str


def create_problem_detail(
    status: int, type_suffix: str, title: str, detail: str, **extra: Any
) -> Dict[str, Any]:
    """Create a problem-details style error body."""
    body = {
        "type": f"/problems/{type_suffix}",
        "title": title,
        "status": status,
        "detail": detail,
    }
    body.update(extra)
    return body
