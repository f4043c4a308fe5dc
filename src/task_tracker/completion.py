"""
Completion timestamp derivation.

completed_at is set on a transition into COMPLETED, cleared on a transition
out of it, and carried over when the status does not change.
"""

import logging
from datetime import datetime
from typing import Optional

from .errors import TaskStateError
from .models import TaskStatus

logger = logging.getLogger(__name__)


def derive_completed_at(
    old_status: Optional[TaskStatus],
    new_status: TaskStatus,
    now: datetime,
    old_completed_at: Optional[datetime],
) -> Optional[datetime]:
    """
    Compute the completed_at value for a status change.

    Args:
        old_status: Status currently stored for the task
        new_status: Status the mutation writes
        now: Timestamp of the mutation
        old_completed_at: completed_at currently stored for the task

    Returns:
        now when entering COMPLETED, None when leaving it, else old_completed_at

    Raises:
        TaskStateError: If old_status is None, which no stored task may have
    """
    if old_status is None:
        raise TaskStateError("Stored task has no status; cannot derive completed_at")

    was_completed = old_status == TaskStatus.COMPLETED
    is_completed = new_status == TaskStatus.COMPLETED

    if is_completed and not was_completed:
        logger.debug(f"Status {old_status.value} -> COMPLETED, completed_at={now.isoformat()}")
        return now
    if was_completed and not is_completed:
        logger.debug(f"Status COMPLETED -> {new_status.value}, clearing completed_at")
        return None
    return old_completed_at
