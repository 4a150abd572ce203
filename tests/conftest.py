"""Shared fixtures: in-memory database, deterministic clock and ids."""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from tasksync.models import BatchOutcome, QueueItem
from tasksync.store import Database, TaskStore
from tasksync.sync import MutationQueue, Transport


class FakeClock:
    """Clock that advances one second per call unless frozen."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class ScriptedTransport(Transport):
    """Transport whose replies are produced by a test-supplied function.

    The responder receives the batch and returns outcomes, or raises
    TransportError to simulate a whole-batch failure.
    """

    def __init__(self, responder=None, reachable: bool = True):
        self.responder = responder or (lambda batch: [])
        self.reachable = reachable
        self.sent: list[list[QueueItem]] = []

    async def send(self, batch, client_timestamp) -> list[BatchOutcome]:
        self.sent.append(list(batch))
        return self.responder(batch)

    async def check_reachability(self) -> bool:
        return self.reachable


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    """Create an in-memory database."""
    database = Database(":memory:")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def queue(db, clock):
    counter = itertools.count(1)
    return MutationQueue(db, id_factory=lambda: f"q{next(counter)}", clock=clock)


@pytest.fixture
def store(db, queue, clock):
    counter = itertools.count(1)
    return TaskStore(db, queue, clock=clock, id_factory=lambda: f"task-{next(counter)}")
