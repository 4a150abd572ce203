"""SQLite record store for tasks with soft-delete.

Every local mutation resets the task to ``pending`` and enqueues a snapshot
in the same transaction.
"""

import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..errors import ValidationError
from ..models import (
    OperationKind,
    ReconciledRecord,
    SyncState,
    Task,
    parse_timestamp,
    to_iso,
    utc_now,
)
from .database import Database

if TYPE_CHECKING:
    from ..sync.queue import MutationQueue

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _row_to_task(row: sqlite3.Row) -> Task:
    """Convert a stored row; integer flags become booleans here only."""
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        completed=row["completed"] == 1,
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        is_deleted=row["is_deleted"] == 1,
        sync_status=SyncState(row["sync_status"]),
        server_id=row["server_id"],
        last_synced_at=(
            parse_timestamp(row["last_synced_at"]) if row["last_synced_at"] else None
        ),
    )


def _validate_description(description: Any) -> None:
    if description is not None and not isinstance(description, str):
        raise ValidationError("Description must be a string")


class TaskStore:
    """Keyed task table with soft-delete and sync bookkeeping."""

    def __init__(
        self,
        db: Database,
        queue: "MutationQueue",
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        """Initialize the store.

        Args:
            db: Shared database connection.
            queue: Queue receiving a snapshot of every local mutation.
            clock: Returns the current time for modification timestamps.
            id_factory: Generates task identifiers.
        """
        self._db = db
        self._queue = queue
        self._clock = clock
        self._id_factory = id_factory

    # ==================== Local Mutations ====================

    def create_task(self, title: Any, description: Any = None) -> Task:
        """Create a task and queue it for sync.

        Raises:
            ValidationError: If the title is missing or not a string.
        """
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("Title is required and must be a string")
        _validate_description(description)

        now = self._clock()
        task = Task(
            id=self._id_factory(),
            title=title,
            description=description,
            completed=False,
            created_at=now,
            updated_at=now,
        )

        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO tasks (
                    id, title, description, completed, created_at,
                    updated_at, is_deleted, sync_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.title,
                    task.description,
                    1 if task.completed else 0,
                    to_iso(task.created_at),
                    to_iso(task.updated_at),
                    1 if task.is_deleted else 0,
                    task.sync_status.value,
                ),
            )
            self._queue.enqueue(task.id, OperationKind.CREATE, task.snapshot())

        logger.debug(f"Created task {task.id}")
        return task

    def update_task(
        self,
        task_id: str,
        title: Any = _UNSET,
        description: Any = _UNSET,
        completed: Any = _UNSET,
    ) -> Task | None:
        """Apply a partial update and queue it for sync.

        Returns:
            The updated task, or None if it does not exist or is deleted.

        Raises:
            ValidationError: If a field has the wrong type.
        """
        if title is not _UNSET and (not isinstance(title, str) or not title.strip()):
            raise ValidationError("Title must be a string")
        if completed is not _UNSET and not isinstance(completed, bool):
            raise ValidationError("Completed must be a boolean")
        if description is not _UNSET:
            _validate_description(description)

        with self._db.transaction() as conn:
            task = self._get_live(conn, task_id)
            if task is None:
                return None

            if title is not _UNSET:
                task.title = title
            if description is not _UNSET:
                task.description = description
            if completed is not _UNSET:
                task.completed = completed
            task.updated_at = self._clock()
            task.sync_status = SyncState.PENDING

            conn.execute(
                """
                UPDATE tasks
                SET title = ?, description = ?, completed = ?,
                    updated_at = ?, sync_status = ?
                WHERE id = ?
                """,
                (
                    task.title,
                    task.description,
                    1 if task.completed else 0,
                    to_iso(task.updated_at),
                    task.sync_status.value,
                    task_id,
                ),
            )
            self._queue.enqueue(task_id, OperationKind.UPDATE, task.snapshot())

        return task

    def delete_task(self, task_id: str) -> bool:
        """Soft-delete a task and queue the deletion.

        Returns:
            False if the task does not exist or is already deleted.
        """
        with self._db.transaction() as conn:
            task = self._get_live(conn, task_id)
            if task is None:
                return False

            task.is_deleted = True
            task.updated_at = self._clock()
            task.sync_status = SyncState.PENDING

            conn.execute(
                """
                UPDATE tasks SET is_deleted = 1, updated_at = ?, sync_status = ?
                WHERE id = ?
                """,
                (to_iso(task.updated_at), task.sync_status.value, task_id),
            )
            self._queue.enqueue(task_id, OperationKind.DELETE, task.snapshot())

        return True

    # ==================== Reads ====================

    def _get_live(self, conn: sqlite3.Connection, task_id: str) -> Task | None:
        row = conn.execute(
            "SELECT * FROM tasks WHERE id = ? AND is_deleted = 0", (task_id,)
        ).fetchone()
        return _row_to_task(row) if row else None

    def get_task(self, task_id: str) -> Task | None:
        """Get a task unless it is soft-deleted."""
        with self._db.reading() as conn:
            return self._get_live(conn, task_id)

    def get(self, task_id: str) -> Task | None:
        """Get a task by id, including soft-deleted ones."""
        with self._db.reading() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None

    def list_tasks(self, exclude_deleted: bool = True) -> list[Task]:
        query = "SELECT * FROM tasks"
        if exclude_deleted:
            query += " WHERE is_deleted = 0"
        query += " ORDER BY created_at ASC"
        with self._db.reading() as conn:
            return [_row_to_task(row) for row in conn.execute(query)]

    def list_by_sync_state(self, states: Iterable[SyncState]) -> list[Task]:
        """Get tasks in any of the given sync states, deleted ones included."""
        values = [s.value for s in states]
        if not values:
            return []
        placeholders = ",".join("?" * len(values))
        with self._db.reading() as conn:
            cursor = conn.execute(
                f"""
                SELECT * FROM tasks WHERE sync_status IN ({placeholders})
                ORDER BY created_at ASC
                """,
                values,
            )
            return [_row_to_task(row) for row in cursor]

    def count_by_sync_state(self) -> dict[str, int]:
        with self._db.reading() as conn:
            cursor = conn.execute(
                "SELECT sync_status, COUNT(*) FROM tasks GROUP BY sync_status"
            )
            counts = {state.value: 0 for state in SyncState}
            counts.update({row[0]: row[1] for row in cursor})
        return counts

    def last_synced_at(self) -> datetime | None:
        """Most recent successful sync across all tasks."""
        with self._db.reading() as conn:
            row = conn.execute(
                "SELECT MAX(last_synced_at) FROM tasks WHERE last_synced_at IS NOT NULL"
            ).fetchone()
        return parse_timestamp(row[0]) if row[0] else None

    # ==================== Sync Bookkeeping ====================

    def transaction(self):
        """Group several bookkeeping writes into one commit."""
        return self._db.transaction()

    def mark_synced(
        self,
        task_id: str,
        synced_at: datetime,
        server_id: str | None = None,
    ) -> bool:
        """Record a confirmed sync.

        The server id and sync time are always recorded. The state only
        becomes ``synced`` when no queue item for the task remains, so a task
        re-mutated during the pass stays ``pending``.

        Returns:
            True if the task is now ``synced``.
        """
        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE tasks
                SET server_id = COALESCE(?, server_id), last_synced_at = ?
                WHERE id = ?
                """,
                (server_id, to_iso(synced_at), task_id),
            )
            cursor = conn.execute(
                """
                UPDATE tasks SET sync_status = ?
                WHERE id = ?
                  AND NOT EXISTS (SELECT 1 FROM sync_queue WHERE task_id = ?)
                """,
                (SyncState.SYNCED.value, task_id, task_id),
            )
        return cursor.rowcount > 0

    def set_sync_state(self, task_id: str, state: SyncState) -> bool:
        """Set the sync state of a task.

        Returns:
            True if the task exists.
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE tasks SET sync_status = ? WHERE id = ?",
                (state.value, task_id),
            )
        return cursor.rowcount > 0

    def apply_outcome(self, task_id: str, reconciled: ReconciledRecord) -> bool:
        """Write the winner of a conflict into the store.

        Fields are only overwritten when the stored modification time is not
        newer than the winner's, so a local edit made after the conflicting
        item was queued survives.

        Returns:
            True if the fields were written.
        """
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT updated_at FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
            if row is None:
                return False
            if parse_timestamp(row["updated_at"]) > reconciled.updated_at:
                logger.info(
                    f"Task {task_id} changed locally after the conflicting "
                    f"item was queued; keeping local fields"
                )
                if reconciled.server_id:
                    conn.execute(
                        "UPDATE tasks SET server_id = ? WHERE id = ?",
                        (reconciled.server_id, task_id),
                    )
                return False

            conn.execute(
                """
                UPDATE tasks
                SET title = ?, description = ?, completed = ?, is_deleted = ?,
                    updated_at = ?, server_id = COALESCE(?, server_id)
                WHERE id = ?
                """,
                (
                    reconciled.title,
                    reconciled.description,
                    1 if reconciled.completed else 0,
                    1 if reconciled.is_deleted else 0,
                    to_iso(reconciled.updated_at),
                    reconciled.server_id,
                    task_id,
                ),
            )
        return True
