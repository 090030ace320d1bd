from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TypedDict


# PUBLIC_INTERFACE
class TaskDraft(TypedDict):
    """
    A task that has not been stored yet. The store assigns the id on insert.
    """

    title: str
    description: str
    completed: bool
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class Task(TaskDraft):
    """
    A stored task.

    Fields:
    - id: Unique integer identifier, assigned by the store and never reused
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Free text, "" when not given
    - completed: Boolean completion flag
    - created_at: UTC creation timestamp, immutable
    - updated_at: UTC timestamp of the last state change, never below created_at
    """

    id: int


class TaskState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


def task_state(task: TaskDraft) -> TaskState:
    return TaskState.COMPLETED if task["completed"] else TaskState.PENDING
