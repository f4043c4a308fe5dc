"""
Task Record Store with Atomic Version Checks

Provides SQLite-based persistence for task snapshots with WAL mode for
concurrent access. Writes to existing tasks are compare-and-swap on the
version column: the UPDATE only matches when the stored version still equals
the submitted one, so the database is the single serialization point.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .errors import StaleVersionError
from .models import OwnerTaskReport, Task, TaskInfo, TaskStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fixed width so that string comparison in SQL matches chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

REPORT_PENDING_LIMIT = 5

_TASK_COLUMNS = (
    "id, owner_id, title, description, status, version, "
    "created_at, updated_at, completed_at"
)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as a fixed-width UTC string."""
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if text is None:
        return None
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class TaskStore:
    """
    SQLite record store for owner-scoped task rows.

    Features:
    - WAL mode for concurrent read/write access across processes and threads
    - Owner-scoped lookup and delete; other owners' rows are invisible
    - Compare-and-swap save keyed on the version column
    - Explicit transaction boundary for multi-statement units of work
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000):
        """
        Open (and create if needed) the task database.

        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long a writer waits for a competing writer
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        # Guards the shared connection only; version checks live in SQL
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _initialize_database(self) -> None:
        """Connect in autocommit mode, configure WAL and create schema."""
        try:
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,  # Autocommit; transactions are explicit
                check_same_thread=False,
            )
            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            cursor.execute("PRAGMA foreign_keys=ON")
            self._create_schema()
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to initialize database at {self.db_path}: {e}")

    def _create_schema(self) -> None:
        """Create owners/tasks tables and their indexes."""
        cursor = self._connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS owners (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                FOREIGN KEY (owner_id) REFERENCES owners (id) ON DELETE CASCADE,
                CONSTRAINT status_vocabulary CHECK (status IN ('PENDING', 'COMPLETED')),
                CONSTRAINT version_non_negative CHECK (version >= 0)
            )
        """)

        # Listing: newest-created-first per owner
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_owner_created
            ON tasks (owner_id, created_at DESC)
        """)

        # Report query: pending tasks per owner
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_owner_pending
            ON tasks (owner_id)
            WHERE status = 'PENDING'
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_owner_completed
            ON tasks (owner_id, completed_at)
            WHERE status = 'COMPLETED'
        """)

    @contextmanager
    def _transaction(self):
        """Context manager for explicit write transaction control."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
                cursor.execute("COMMIT")
            except Exception:
                cursor.execute("ROLLBACK")
                raise

    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        """
        Run fn inside one write transaction.

        Any exception raised by fn (including StaleVersionError from save)
        rolls the transaction back and propagates unchanged.
        """
        with self._transaction():
            return fn()

    @staticmethod
    def _row_to_task(row: Sequence[Any]) -> Task:
        return Task(
            id=row[0],
            owner_id=row[1],
            title=row[2],
            description=row[3],
            status=TaskStatus(row[4]),
            version=row[5],
            created_at=parse_timestamp(row[6]),
            updated_at=parse_timestamp(row[7]),
            completed_at=parse_timestamp(row[8]),
        )

    # Owners

    def create_owner(self, email: str) -> int:
        """
        Register an owner and return its ID.

        Raises sqlite3.IntegrityError if the email is already registered.
        """
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "INSERT INTO owners (email, created_at) VALUES (?, ?)",
                (email, format_timestamp(datetime.now(timezone.utc))),
            )
            return cursor.lastrowid

    def owner_exists(self, owner_id: int) -> bool:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("SELECT 1 FROM owners WHERE id = ?", (owner_id,))
            return cursor.fetchone() is not None

    def list_owner_ids(self, after_id: int = 0, limit: int = 100) -> List[int]:
        """Return owner IDs greater than after_id in ascending order."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "SELECT id FROM owners WHERE id > ? ORDER BY id ASC LIMIT ?",
                (after_id, limit),
            )
            return [row[0] for row in cursor.fetchall()]

    # Tasks

    def find_owned(self, task_id: int, owner_id: int) -> Optional[Task]:
        """
        Get a task by ID, scoped to its owner.

        Returns:
            Task snapshot, or None if absent or owned by someone else
        """
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ? AND owner_id = ?",
                (task_id, owner_id),
            )
            row = cursor.fetchone()
            return self._row_to_task(row) if row else None

    def list_owned(self, owner_id: int) -> List[Task]:
        """Return all tasks of an owner, newest-created-first."""
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                f"""
                SELECT {_TASK_COLUMNS} FROM tasks
                WHERE owner_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (owner_id,),
            )
            return [self._row_to_task(row) for row in cursor.fetchall()]

    def save(self, task: Task) -> Task:
        """
        Persist a task snapshot.

        A task without an ID is inserted at version 0. For an existing task
        the single UPDATE below is the compare-and-swap: it only matches when
        the stored version equals task.version, and bumps it by one.

        Args:
            task: Snapshot to write; task.version is the expected version

        Returns:
            The stored snapshot (with its ID and new version)

        Raises:
            StaleVersionError: If no row matched the ID, owner and version
            sqlite3.IntegrityError: If the owner reference does not resolve
        """
        with self._connection_lock:
            cursor = self._connection.cursor()

            if task.id is None:
                cursor.execute(
                    """
                    INSERT INTO tasks (
                        owner_id, title, description, status, version,
                        created_at, updated_at, completed_at
                    ) VALUES (?, ?, ?, ?, 0, ?, ?, ?)
                    """,
                    (
                        task.owner_id, task.title, task.description, task.status.value,
                        format_timestamp(task.created_at),
                        format_timestamp(task.updated_at),
                        format_timestamp(task.completed_at) if task.completed_at else None,
                    ),
                )
                return replace(task, id=cursor.lastrowid, version=0)

            cursor.execute(
                """
                UPDATE tasks
                SET title = ?, description = ?, status = ?,
                    version = version + 1, updated_at = ?, completed_at = ?
                WHERE id = ? AND owner_id = ? AND version = ?
                """,
                (
                    task.title, task.description, task.status.value,
                    format_timestamp(task.updated_at),
                    format_timestamp(task.completed_at) if task.completed_at else None,
                    task.id, task.owner_id, task.version,
                ),
            )

            if cursor.rowcount == 0:
                raise StaleVersionError(task.id, task.version)

            return replace(task, version=task.version + 1)

    def delete_owned(self, task_id: int, owner_id: int) -> int:
        """
        Delete a task in one statement, scoped to its owner.

        Returns:
            Number of rows removed (0 or 1)
        """
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "DELETE FROM tasks WHERE id = ? AND owner_id = ?",
                (task_id, owner_id),
            )
            return cursor.rowcount

    def find_task_reports(
        self, owner_ids: Sequence[int], start: datetime, end: datetime
    ) -> List[OwnerTaskReport]:
        """
        Build per-owner task digests for the interval [start, end).

        Completed tasks are those whose completed_at falls in the interval,
        newest completion first. Pending tasks are the oldest
        REPORT_PENDING_LIMIT pending tasks, oldest first. Owners with nothing
        to report are left out.
        """
        if not owner_ids:
            return []

        placeholders = ", ".join("?" for _ in owner_ids)
        query = f"""
            WITH relevant AS (
                SELECT t.owner_id, t.id, t.title, t.status, t.created_at, t.completed_at,
                       ROW_NUMBER() OVER (
                           PARTITION BY t.owner_id, t.status
                           ORDER BY t.created_at ASC, t.id ASC
                       ) AS status_rank
                FROM tasks t
                WHERE t.owner_id IN ({placeholders})
                  AND (t.status = 'PENDING'
                       OR (t.status = 'COMPLETED' AND t.completed_at >= ? AND t.completed_at < ?))
            )
            SELECT r.owner_id, o.email, r.id, r.title, r.status
            FROM relevant r
            JOIN owners o ON o.id = r.owner_id
            WHERE r.status = 'COMPLETED' OR r.status_rank <= ?
            ORDER BY r.owner_id ASC, r.completed_at DESC, r.created_at ASC, r.id ASC
        """
        params = [*owner_ids, format_timestamp(start), format_timestamp(end), REPORT_PENDING_LIMIT]

        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()

        reports: Dict[int, OwnerTaskReport] = {}
        for owner_id, email, task_id, title, status in rows:
            report = reports.setdefault(owner_id, OwnerTaskReport(owner_id=owner_id, email=email))
            info = TaskInfo(id=task_id, title=title)
            if status == TaskStatus.COMPLETED.value:
                report.tasks_completed.append(info)
            else:
                report.tasks_pending.append(info)

        logger.debug(f"Built task reports for {len(reports)} of {len(owner_ids)} owners")
        return list(reports.values())

    def close(self):
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
