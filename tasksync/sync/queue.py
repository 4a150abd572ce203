"""Durable queue of mutations awaiting transmission to the authority.

Items are never removed by draining; removal is a separate step taken only
after the authority confirms an item, so a crash between the two simply
re-sends the item on the next pass.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..models import OperationKind, QueueItem, parse_timestamp, to_iso, utc_now
from ..store.database import Database

logger = logging.getLogger(__name__)

_COLUMNS = "id, task_id, operation, data, created_at, retry_count, error_message"


def new_id() -> str:
    """Default identifier factory."""
    return str(uuid.uuid4())


def _row_to_item(row: sqlite3.Row) -> QueueItem:
    return QueueItem(
        id=row["id"],
        task_id=row["task_id"],
        operation=OperationKind(row["operation"]),
        payload=json.loads(row["data"]),
        created_at=parse_timestamp(row["created_at"]),
        retry_count=row["retry_count"],
        error_message=row["error_message"],
    )


class MutationQueue:
    """Append-only log of pending operations keyed by task id."""

    def __init__(
        self,
        db: Database,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the queue.

        Args:
            db: Shared database connection.
            id_factory: Generates queue item identifiers.
            clock: Returns the current time for enqueue timestamps.
        """
        self._db = db
        self._id_factory = id_factory
        self._clock = clock

    def enqueue(
        self,
        task_id: str,
        operation: OperationKind,
        payload: dict[str, Any],
    ) -> QueueItem:
        """Append a new item to the queue.

        Args:
            task_id: Originating task identifier.
            operation: Kind of mutation.
            payload: Snapshot of the task at enqueue time.

        Returns:
            The stored QueueItem.

        Raises:
            sqlite3.Error: If the store is unavailable.
        """
        item = QueueItem(
            id=self._id_factory(),
            task_id=task_id,
            operation=operation,
            payload=payload,
            created_at=self._clock(),
        )

        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_queue (
                    id, task_id, operation, data, created_at, retry_count
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.task_id,
                    item.operation.value,
                    json.dumps(item.payload),
                    to_iso(item.created_at),
                    item.retry_count,
                ),
            )

        logger.debug(f"Enqueued {item.operation.value} {item.id} for task {task_id}")
        return item

    def drain(self) -> list[QueueItem]:
        """Get every queued item, oldest first, without removing anything.

        Returns:
            Items ordered by enqueue time, ties by insertion order.
        """
        with self._db.reading() as conn:
            cursor = conn.execute(
                f"SELECT {_COLUMNS} FROM sync_queue ORDER BY created_at ASC, seq ASC"
            )
            return [_row_to_item(row) for row in cursor]

    def get(self, item_id: str) -> QueueItem | None:
        with self._db.reading() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM sync_queue WHERE id = ?", (item_id,)
            ).fetchone()
        return _row_to_item(row) if row else None

    def items_for_task(self, task_id: str) -> list[QueueItem]:
        """Get the queued items of one task in enqueue order."""
        with self._db.reading() as conn:
            cursor = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM sync_queue
                WHERE task_id = ?
                ORDER BY created_at ASC, seq ASC
                """,
                (task_id,),
            )
            return [_row_to_item(row) for row in cursor]

    def remove(self, item_id: str) -> bool:
        """Delete a single item.

        Returns:
            True if an item was removed.
        """
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))
        return cursor.rowcount > 0

    def increment_attempt(self, item_id: str, error_message: str) -> int:
        """Record a failed attempt.

        Args:
            item_id: Queue item identifier.
            error_message: Latest error, replaces any earlier one.

        Returns:
            The new attempt count, or 0 if the item no longer exists.
        """
        with self._db.transaction() as conn:
            conn.execute(
                """
                UPDATE sync_queue
                SET retry_count = retry_count + 1, error_message = ?
                WHERE id = ?
                """,
                (error_message, item_id),
            )
            row = conn.execute(
                "SELECT retry_count FROM sync_queue WHERE id = ?", (item_id,)
            ).fetchone()
        return row["retry_count"] if row else 0

    def size(self) -> int:
        with self._db.reading() as conn:
            return conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]

    def dead_letters(self, ceiling: int) -> list[QueueItem]:
        """Get items whose attempt count reached the ceiling."""
        with self._db.reading() as conn:
            cursor = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM sync_queue
                WHERE retry_count >= ?
                ORDER BY created_at ASC, seq ASC
                """,
                (ceiling,),
            )
            return [_row_to_item(row) for row in cursor]

    def reset_attempts(
        self, ceiling: int, task_ids: list[str] | None = None
    ) -> list[str]:
        """Clear attempt counts of dead-lettered items.

        Args:
            ceiling: Retry ceiling that defines a dead letter.
            task_ids: Restrict to these tasks; all dead letters if None.

        Returns:
            Task ids whose items were reset.
        """
        params: list[Any] = [ceiling]
        task_filter = ""
        if task_ids is not None:
            if not task_ids:
                return []
            placeholders = ",".join("?" * len(task_ids))
            task_filter = f" AND task_id IN ({placeholders})"
            params.extend(task_ids)

        with self._db.transaction() as conn:
            rows = conn.execute(
                f"SELECT DISTINCT task_id FROM sync_queue WHERE retry_count >= ?{task_filter}",
                params,
            ).fetchall()
            conn.execute(
                f"""
                UPDATE sync_queue SET retry_count = 0, error_message = NULL
                WHERE retry_count >= ?{task_filter}
                """,
                params,
            )

        reset = [row["task_id"] for row in rows]
        if reset:
            logger.info(f"Requeued dead letters for {len(reset)} task(s)")
        return reset

    def get_stats(self, ceiling: int) -> dict[str, Any]:
        """Get queue statistics.

        Returns:
            Dictionary with item counts.
        """
        with self._db.reading() as conn:
            stats: dict[str, Any] = {
                "queue_size": conn.execute(
                    "SELECT COUNT(*) FROM sync_queue"
                ).fetchone()[0],
                "dead_letters": conn.execute(
                    "SELECT COUNT(*) FROM sync_queue WHERE retry_count >= ?",
                    (ceiling,),
                ).fetchone()[0],
            }
            cursor = conn.execute(
                "SELECT operation, COUNT(*) FROM sync_queue GROUP BY operation"
            )
            stats["items_by_operation"] = {row[0]: row[1] for row in cursor}
        return stats
