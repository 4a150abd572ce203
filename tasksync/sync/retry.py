"""Bounded retries with a dead-letter state for queue items."""

import logging

from ..models import QueueItem, SyncState
from ..store import TaskStore
from .queue import MutationQueue

logger = logging.getLogger(__name__)

DEFAULT_RETRY_CEILING = 3


class RetryPolicy:
    """Track per-item attempts and escalate to ``failed`` at the ceiling.

    Dead-lettered items stay in the queue for auditing and are skipped by
    later passes until ``requeue_dead_letters`` resets them.
    """

    def __init__(
        self,
        queue: MutationQueue,
        store: TaskStore,
        ceiling: int = DEFAULT_RETRY_CEILING,
    ):
        self.queue = queue
        self.store = store
        self.ceiling = ceiling

    def is_dead_letter(self, item: QueueItem) -> bool:
        return item.retry_count >= self.ceiling

    def on_item_failure(self, item: QueueItem, error: str | BaseException) -> SyncState:
        """Record a failed attempt for one queue item.

        Args:
            item: The item that failed.
            error: Error message or exception.

        Returns:
            The sync state written for the item's task. A task that still
            has a dead-lettered item stays ``failed``.

        Raises:
            sqlite3.Error: If the store is unavailable.
        """
        message = str(error) or type(error).__name__
        attempts = self.queue.increment_attempt(item.id, message)
        item.retry_count = attempts
        item.error_message = message
        context = {"task_id": item.task_id, "operation": item.operation.value, "attempt": attempts}

        if attempts >= self.ceiling:
            state = SyncState.FAILED
            logger.error(
                f"Task {item.task_id} {item.operation.value} exceeded "
                f"{self.ceiling} attempts, moved to dead letter: {message}",
                extra=context,
            )
        else:
            logger.warning(
                f"Task {item.task_id} {item.operation.value} failed "
                f"(attempt {attempts}/{self.ceiling}): {message}",
                extra=context,
            )
            # failed only clears through requeue_dead_letters
            if any(self.is_dead_letter(i) for i in self.queue.items_for_task(item.task_id)):
                state = SyncState.FAILED
            else:
                state = SyncState.ERROR

        self.store.set_sync_state(item.task_id, state)
        return state

    def requeue_dead_letters(self, task_ids: list[str] | None = None) -> int:
        """Give dead-lettered items a fresh set of attempts.

        Args:
            task_ids: Restrict to these tasks; all dead letters if None.

        Returns:
            Number of tasks returned to ``pending``.
        """
        reset = self.queue.reset_attempts(self.ceiling, task_ids)
        for task_id in reset:
            self.store.set_sync_state(task_id, SyncState.PENDING)
        return len(reset)
