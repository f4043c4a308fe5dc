"""
Version conflict translation.

The local version pre-check catches most stale writes, but the window between
reading a task and committing the write can only be closed by the store's own
compare-and-swap. Both paths must look identical to callers, so commit-time
failures are re-raised as the same TaskConflictError the pre-check raises.
"""

import logging
from contextlib import contextmanager

from .errors import StaleVersionError, TaskConflictError

logger = logging.getLogger(__name__)


@contextmanager
def translate_version_conflicts(task_id: int):
    """Re-raise StaleVersionError from the wrapped save as TaskConflictError."""
    try:
        yield
    except StaleVersionError as e:
        logger.warning(
            f"Optimistic lock conflict for task {task_id} at commit time "
            f"(expected version {e.expected_version})"
        )
        raise TaskConflictError(task_id) from e
