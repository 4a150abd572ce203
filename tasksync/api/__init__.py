"""HTTP interface for tasksync.

Maps task CRUD and sync control onto JSON routes using FastAPI, plus a
reference batch endpoint for local development.
"""

from .app import create_app

__all__ = ["create_app"]
