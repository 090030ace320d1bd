"""
Task List: a single-user task list with durable storage.

The core is TaskService (validation and domain rules) on top of a Repository
(JSON file, SQLite or in-memory). tasklist.main.create_app wraps it in a
FastAPI application.
"""

from .errors import ErrorKind, Result, StorageError, TaskError, TaskOperationError
from .models import Task, TaskState, task_state
from .repositories import InMemoryRepository, JsonFileRepository, ListQuery, Repository, build_repository
from .service import TaskService

__all__ = [
    "ErrorKind",
    "InMemoryRepository",
    "JsonFileRepository",
    "ListQuery",
    "Repository",
    "Result",
    "StorageError",
    "Task",
    "TaskError",
    "TaskOperationError",
    "TaskService",
    "TaskState",
    "build_repository",
    "task_state",
]
