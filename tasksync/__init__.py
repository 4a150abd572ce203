"""tasksync: offline-first task records with queued sync to a remote authority."""

__version__ = "0.1.0"
