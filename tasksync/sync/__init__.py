"""Sync engine for offline task mutations.

Queues local mutations durably, sends them to the remote authority in
ordered batches, resolves conflicts last-write-wins and dead-letters items
that keep failing.
"""

from .batcher import partition
from .engine import PassState, SyncEngine
from .queue import MutationQueue
from .resolver import ConflictResolver
from .retry import RetryPolicy
from .transport import HttpTransport, Transport

__all__ = [
    "ConflictResolver",
    "HttpTransport",
    "MutationQueue",
    "PassState",
    "RetryPolicy",
    "SyncEngine",
    "Transport",
    "partition",
]
