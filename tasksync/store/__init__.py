"""Local record store for tasks.

Provides:
- A shared SQLite connection with transactional writes
- The task table with soft-delete and sync bookkeeping
"""

from .database import Database
from .task_store import TaskStore

__all__ = ["Database", "TaskStore"]
