"""
Task Mutation Service

Orchestrates create/read/replace/patch/delete for an authenticated owner.
Every write follows the same shape: load an owned snapshot, compute a new
snapshot, then hand it to the store's conditional save inside an explicit
transaction, with commit-time version failures translated into conflicts.
"""

import logging
from dataclasses import replace as replace_snapshot
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .completion import derive_completed_at
from .conflicts import translate_version_conflicts
from .database import TaskStore
from .errors import TaskConflictError, TaskNotFoundError, TaskValidationError
from .models import OwnerTaskReport, Task, TaskStatus, validate_task_fields
from .patch import TaskPatch, apply_patch

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TaskService:
    """
    Task operations scoped to the calling owner.

    owner_id always comes from the caller's resolved identity, never from a
    request body. No operation retries on conflict: the caller re-fetches
    and resubmits.
    """

    def __init__(self, store: TaskStore, clock: Optional[Clock] = None):
        self._store = store
        self._clock = clock or utc_now

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    def _load_owned(self, task_id: int, owner_id: int) -> Task:
        task = self._store.find_owned(task_id, owner_id)
        if task is None:
            logger.warning(f"Task not found or access denied for task {task_id} and owner {owner_id}")
            raise TaskNotFoundError(task_id, owner_id)
        return task

    def _check_version(self, current: Task, expected_version: int) -> None:
        if current.version != expected_version:
            logger.warning(
                f"Optimistic lock conflict for task {current.id}. "
                f"Stored version: {current.version}, request version: {expected_version}"
            )
            raise TaskConflictError(current.id)

    def _apply_and_save(self, working: Task) -> Task:
        """Submit a working copy to the conditional save in one transaction."""
        with translate_version_conflicts(working.id):
            return self._store.run_in_transaction(lambda: self._store.save(working))

    def create(self, owner_id: int, title: str, description: Optional[str] = None) -> Task:
        """
        Create a new PENDING task at version 0.

        Raises:
            TaskValidationError: If title/description break the field rules
            sqlite3.IntegrityError: If owner_id does not resolve to an owner
        """
        logger.debug(f"Creating task for owner {owner_id} with title: '{title}'")
        validate_task_fields(title, description)

        now = self._now()
        task = Task(
            id=None,
            owner_id=owner_id,
            title=title,
            description=description,
            status=TaskStatus.PENDING,
            version=0,
            created_at=now,
            updated_at=now,
            completed_at=None,
        )
        saved = self._store.save(task)
        logger.info(f"Task {saved.id} created for owner {owner_id}")
        return saved

    def get_by_id(self, owner_id: int, task_id: int) -> Task:
        """Return an owned task or raise TaskNotFoundError."""
        logger.debug(f"Fetching task {task_id} for owner {owner_id}")
        return self._load_owned(task_id, owner_id)

    def list_all(self, owner_id: int) -> List[Task]:
        """Return every task of the owner, newest-created-first."""
        tasks = self._store.list_owned(owner_id)
        logger.info(f"Found {len(tasks)} tasks for owner {owner_id}")
        return tasks

    def replace(
        self,
        owner_id: int,
        task_id: int,
        title: str,
        description: Optional[str],
        status: TaskStatus,
        expected_version: int,
    ) -> Task:
        """
        Overwrite all mutable fields of an owned task.

        Full-replace semantics: description is written as given, so None
        clears it.

        Raises:
            TaskValidationError: If the new field values are invalid
            TaskNotFoundError: If the task is absent or not owned
            TaskConflictError: If expected_version is stale, locally or at commit
        """
        logger.debug(
            f"Replacing task {task_id} for owner {owner_id}: title='{title}', "
            f"status={status.value}, version={expected_version}"
        )
        validate_task_fields(title, description)

        current = self._load_owned(task_id, owner_id)
        self._check_version(current, expected_version)

        now = self._now()
        working = replace_snapshot(
            current,
            title=title,
            description=description,
            status=status,
            completed_at=derive_completed_at(current.status, status, now, current.completed_at),
            updated_at=now,
        )
        saved = self._apply_and_save(working)
        logger.info(f"Task {task_id} replaced for owner {owner_id}, now at version {saved.version}")
        return saved

    def patch(self, owner_id: int, task_id: int, patch: TaskPatch) -> Task:
        """
        Merge a sparse patch into an owned task.

        Raises:
            TaskNotFoundError: If the task is absent or not owned
            TaskValidationError: With all violations on the patched result
            TaskConflictError: If patch.version is stale, locally or at commit
        """
        logger.debug(f"Patching task {task_id} for owner {owner_id}: {patch}")
        current = self._load_owned(task_id, owner_id)

        working = apply_patch(current, patch, self._now())
        self._check_version(current, patch.version)

        saved = self._apply_and_save(working)
        logger.info(f"Task {task_id} patched for owner {owner_id}, now at version {saved.version}")
        return saved

    def delete(self, owner_id: int, task_id: int) -> None:
        """Hard-delete an owned task or raise TaskNotFoundError."""
        logger.debug(f"Deleting task {task_id} for owner {owner_id}")
        deleted = self._store.delete_owned(task_id, owner_id)
        if deleted == 0:
            logger.warning(f"Delete failed: task {task_id} not found or not owned by {owner_id}")
            raise TaskNotFoundError(task_id, owner_id)
        logger.info(f"Task {task_id} deleted for owner {owner_id}")

    def report(
        self, owner_ids: Sequence[int], start: datetime, end: datetime
    ) -> List[OwnerTaskReport]:
        """
        Per-owner digest of tasks completed in [start, end) and oldest pending.

        Raises:
            TaskValidationError: If start is not before end
        """
        if start >= end:
            raise TaskValidationError.single("start", "Report start must be before end")
        return self._store.find_task_reports(owner_ids, start, end)
