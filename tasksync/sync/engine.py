"""Sync orchestrator: one full synchronization pass at a time.

A pass drains the mutation queue, sends it to the authority in batches and
folds every per-item outcome back into the record store and the queue.
Partial failure is the normal case: a pass always finishes and reports what
happened instead of raising.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from ..config import SyncConfig
from ..errors import TransportError
from ..models import (
    BatchOutcome,
    ItemError,
    OutcomeStatus,
    QueueItem,
    SyncState,
    SyncStatusReport,
    SyncSummary,
    utc_now,
)
from ..store import TaskStore
from .batcher import partition
from .queue import MutationQueue
from .resolver import ConflictResolver
from .retry import RetryPolicy
from .transport import Transport

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 3600


class PassState(Enum):
    """Phase of the current synchronization pass."""

    IDLE = "idle"
    CHECKING_CONNECTIVITY = "checking_connectivity"
    DRAINING = "draining"
    BATCHING = "batching"
    TRANSMITTING = "transmitting"
    RECONCILING = "reconciling"
    REPORTING = "reporting"


class SyncEngine:
    """Drives synchronization passes between the local store and the authority.

    Passes are serialized: a second caller waits for the running pass to
    finish. The database lock is never held across a transport call, so
    local edits keep flowing into the queue while a pass waits on the
    network.
    """

    def __init__(
        self,
        store: TaskStore,
        queue: MutationQueue,
        transport: Transport,
        config: SyncConfig | None = None,
        resolver: ConflictResolver | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the engine.

        Args:
            store: Record store updated with sync outcomes.
            queue: Queue of pending mutations.
            transport: Channel to the authority.
            config: Batch size, retry ceiling and timeouts.
            resolver: Conflict resolver; last-write-wins by default.
            clock: Returns the current time.
        """
        self.config = config or SyncConfig()
        self.store = store
        self.queue = queue
        self.transport = transport
        self.resolver = resolver or ConflictResolver()
        self.retry_policy = RetryPolicy(queue, store, self.config.retry_ceiling)
        self._clock = clock
        self._pass_lock = asyncio.Lock()
        self._state = PassState.IDLE
        self._last_pass: datetime | None = None
        self._consecutive_failures = 0

    @property
    def state(self) -> PassState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked()

    @property
    def last_pass(self) -> datetime | None:
        """Time the last completed pass finished."""
        return self._last_pass

    def _enter(self, state: PassState) -> None:
        logger.debug(f"Sync pass: {self._state.value} -> {state.value}")
        self._state = state

    async def run_pass(self, check_connectivity: bool = True) -> SyncSummary:
        """Run one synchronization pass.

        Args:
            check_connectivity: Probe the authority first and skip the pass
                when it is unreachable.

        Returns:
            SyncSummary for the pass.

        Raises:
            sqlite3.Error: If the queue cannot be read before the pass starts.
        """
        async with self._pass_lock:
            try:
                return await self._run_pass(check_connectivity)
            finally:
                self._enter(PassState.IDLE)

    async def _run_pass(self, check_connectivity: bool) -> SyncSummary:
        summary = SyncSummary()

        if check_connectivity:
            self._enter(PassState.CHECKING_CONNECTIVITY)
            if not await self.transport.check_reachability():
                self._enter(PassState.REPORTING)
                summary.offline = True
                self._consecutive_failures += 1
                logger.info("Authority unreachable, skipping sync pass")
                return summary

        self._enter(PassState.DRAINING)
        drained = self.queue.drain()
        items = [i for i in drained if not self.retry_policy.is_dead_letter(i)]
        summary.skipped_count = len(drained) - len(items)

        self._enter(PassState.BATCHING)
        batches = partition(items, self.config.batch_size)
        logger.info(
            f"Starting sync pass: {len(items)} item(s) in {len(batches)} batch(es), "
            f"{summary.skipped_count} dead letter(s) skipped"
        )

        for batch in batches:
            self._enter(PassState.TRANSMITTING)
            try:
                outcomes = await self.transport.send(batch, self._clock())
            except TransportError as e:
                logger.warning(f"Batch of {len(batch)} failed in transport: {e}")
                for item in batch:
                    self._fail_item(summary, item, str(e))
                continue

            self._enter(PassState.RECONCILING)
            self._reconcile_batch(summary, batch, outcomes)

        self._enter(PassState.REPORTING)
        self._last_pass = self._clock()
        if summary.success:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1

        logger.info(
            f"Sync pass finished: synced={summary.synced_count}, "
            f"failed={summary.failed_count}"
        )
        return summary

    def _reconcile_batch(
        self,
        summary: SyncSummary,
        batch: list[QueueItem],
        outcomes: list[BatchOutcome],
    ) -> None:
        """Match outcomes to queue items and apply each one.

        Outcomes only echo the task id, so they are paired with the batch's
        items for that task in enqueue order.
        """
        pending: dict[str, list[QueueItem]] = {}
        for item in batch:
            pending.setdefault(item.task_id, []).append(item)

        for outcome in outcomes:
            candidates = pending.get(outcome.task_id)
            if not candidates:
                logger.warning(f"Ignoring outcome for unknown task {outcome.task_id}")
                continue
            item = candidates.pop(0)

            try:
                self._apply_outcome(summary, item, outcome)
            except ValueError as e:
                self._fail_item(summary, item, f"Unusable outcome: {e}")
            except sqlite3.Error as e:
                logger.error(
                    f"Failed to apply outcome for task {item.task_id}: {e}",
                    exc_info=True,
                )
                self._record_error(summary, item, str(e))

        for leftovers in pending.values():
            for item in leftovers:
                self._fail_item(summary, item, "No outcome reported for item")

    def _apply_outcome(
        self, summary: SyncSummary, item: QueueItem, outcome: BatchOutcome
    ) -> None:
        if outcome.status is OutcomeStatus.ERROR:
            self._fail_item(summary, item, outcome.error or "Unknown error")
            return

        reconciled = None
        if outcome.status is OutcomeStatus.CONFLICT:
            reconciled = self.resolver.resolve(item.payload, outcome)

        # Field update, queue removal and state change commit together
        with self.store.transaction():
            if reconciled is not None:
                applied = self.store.apply_outcome(item.task_id, reconciled)
                logger.info(
                    f"Conflict on task {item.task_id} resolved, {reconciled.winner} wins"
                    + ("" if applied else " (newer local edit kept)")
                )
            self.queue.remove(item.id)
            self.store.mark_synced(item.task_id, self._clock(), outcome.server_id)
        summary.synced_count += 1

    def _fail_item(self, summary: SyncSummary, item: QueueItem, message: str) -> None:
        """Route one item through the retry policy and count it as failed."""
        try:
            self.retry_policy.on_item_failure(item, message)
        except sqlite3.Error as e:
            logger.error(
                f"Could not record failure for task {item.task_id}: {e}",
                exc_info=True,
            )
            message = f"{message}; failure not recorded: {e}"
        self._record_error(summary, item, message)

    def _record_error(self, summary: SyncSummary, item: QueueItem, message: str) -> None:
        summary.failed_count += 1
        summary.errors.append(
            ItemError(
                task_id=item.task_id,
                operation=item.operation.value,
                message=message,
                timestamp=self._clock(),
            )
        )

    async def get_status(self) -> SyncStatusReport:
        """Get current sync status, including a reachability probe."""
        counts = self.store.count_by_sync_state()
        stats = self.queue.get_stats(self.config.retry_ceiling)
        return SyncStatusReport(
            pending_count=counts[SyncState.PENDING.value] + counts[SyncState.ERROR.value],
            last_sync_timestamp=self.store.last_synced_at(),
            is_reachable=await self.transport.check_reachability(),
            queue_size=stats["queue_size"],
            failed_count=counts[SyncState.FAILED.value],
            dead_letter_count=stats["dead_letters"],
        )

    def retry_failed(self, task_ids: list[str] | None = None) -> int:
        """Reset dead-lettered items so the next pass sends them again.

        Returns:
            Number of tasks returned to ``pending``.
        """
        return self.retry_policy.requeue_dead_letters(task_ids)

    def _next_wait(self, interval_seconds: int) -> int:
        """Seconds until the next pass, doubling per consecutive failed pass."""
        if self._consecutive_failures == 0:
            return interval_seconds
        return min(interval_seconds * (2 ** self._consecutive_failures), MAX_BACKOFF_SECONDS)

    async def sync_loop(
        self,
        interval_seconds: int,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run passes until ``stop_event`` is set.

        A pass that fails or finds the authority offline stretches the wait
        before the next one. Faults inside a pass are logged and the loop
        keeps going, so a background loop outlives a bad pass.

        Args:
            interval_seconds: Seconds between passes while healthy.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while not (stop_event and stop_event.is_set()):
            try:
                summary = await self.run_pass()
            except Exception:
                logger.exception("Sync pass aborted")
                self._consecutive_failures += 1
            else:
                if summary.offline:
                    logger.info("Authority offline, will retry")
                elif summary.synced_count or summary.failed_count:
                    logger.info(
                        f"Sync: synced={summary.synced_count}, "
                        f"failed={summary.failed_count}, "
                        f"dead letters={summary.skipped_count}"
                    )

            wait_time = self._next_wait(interval_seconds)
            if wait_time != interval_seconds:
                logger.debug(
                    f"Backing off sync for {wait_time}s after "
                    f"{self._consecutive_failures} failed pass(es)"
                )

            if stop_event is None:
                await asyncio.sleep(wait_time)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
            except asyncio.TimeoutError:
                pass

        logger.info("Sync loop stopped")
