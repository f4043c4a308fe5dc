"""
Merge-patch support for tasks.

A patch is an explicit sum type: every mutable field is either UNCHANGED or
SetTo(value). decode_patch is the only place that looks at raw JSON; the rest
of the engine works on TaskPatch values.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

from .completion import derive_completed_at
from .errors import MalformedBodyError, TaskValidationError, Violation
from .models import Task, TaskStatus, validate_task_fields

logger = logging.getLogger(__name__)

T = TypeVar("T")

PATCHABLE_FIELDS = ("title", "description", "status", "version")


class Unchanged(Enum):
    UNCHANGED = "unchanged"

    def __repr__(self):
        return "UNCHANGED"


UNCHANGED = Unchanged.UNCHANGED


@dataclass(frozen=True)
class SetTo(Generic[T]):
    value: T


FieldChange = Union[Unchanged, SetTo]


@dataclass(frozen=True)
class TaskPatch:
    """Sparse update of a task. version is the caller's expected version."""
    version: int
    title: FieldChange = UNCHANGED
    description: FieldChange = UNCHANGED
    status: FieldChange = UNCHANGED


def decode_status(value: Any) -> TaskStatus:
    """
    Decode a status literal.

    Raises:
        MalformedBodyError: For non-string values or unknown literals
    """
    if not isinstance(value, str):
        raise MalformedBodyError(f"Cannot decode status from {type(value).__name__} value")
    try:
        return TaskStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise MalformedBodyError(f"Unknown status '{value}'; expected one of: {allowed}") from None


def _decode_version(document: dict) -> int:
    if "version" not in document or document["version"] is None:
        raise TaskValidationError.single("version", "Version is required")
    version = document["version"]
    # bool is an int subclass; JSON true/false is not a version
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise TaskValidationError.single("version", "Version must be a non-negative integer")
    return version


def _decode_text(document: dict, key: str) -> FieldChange:
    if key not in document:
        return UNCHANGED
    value = document[key]
    if value is not None and not isinstance(value, str):
        raise MalformedBodyError(f"Cannot decode {key} from {type(value).__name__} value")
    return SetTo(value)


def decode_patch(document: Any) -> TaskPatch:
    """
    Decode an untyped JSON object into a TaskPatch.

    The version key is checked before anything else, so a patch without it
    fails the same way whatever else it carries. Keys outside the mutable
    set are ignored.

    Args:
        document: Parsed JSON body

    Returns:
        TaskPatch with UNCHANGED for every absent key

    Raises:
        TaskValidationError: If version is missing or not a non-negative integer
        MalformedBodyError: If a present field cannot be decoded
    """
    if not isinstance(document, dict):
        raise MalformedBodyError("Patch document must be a JSON object")

    version = _decode_version(document)

    ignored = sorted(k for k in document if k not in PATCHABLE_FIELDS)
    if ignored:
        logger.debug(f"Ignoring non-patchable keys in patch document: {ignored}")

    status: FieldChange = UNCHANGED
    if "status" in document:
        raw = document["status"]
        status = SetTo(None if raw is None else decode_status(raw))

    return TaskPatch(
        version=version,
        title=_decode_text(document, "title"),
        description=_decode_text(document, "description"),
        status=status,
    )


def _resolve(change: FieldChange, current: Any) -> Any:
    return change.value if isinstance(change, SetTo) else current


def apply_patch(snapshot: Task, patch: TaskPatch, now: datetime) -> Task:
    """
    Apply a patch to a snapshot and validate the resulting working copy.

    The returned task carries the caller's version as the expected version
    for the store's conditional save, and updated_at set to now.

    Raises:
        TaskValidationError: With every violation found on the working copy
    """
    title = _resolve(patch.title, snapshot.title)
    description = _resolve(patch.description, snapshot.description)
    status: Optional[TaskStatus] = _resolve(patch.status, snapshot.status)

    violations = []
    try:
        validate_task_fields(title, description)
    except TaskValidationError as exc:
        violations.extend(exc.violations)
    if status is None:
        violations.append(Violation("status", "Status must not be null"))
    if violations:
        raise TaskValidationError(violations)

    completed_at = derive_completed_at(snapshot.status, status, now, snapshot.completed_at)

    return replace(
        snapshot,
        title=title,
        description=description,
        status=status,
        completed_at=completed_at,
        updated_at=now,
        version=patch.version,
    )
