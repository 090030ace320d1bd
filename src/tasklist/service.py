from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from pydantic import ValidationError as PydanticValidationError

from .errors import ErrorKind, Result, StorageError
from .models import Task, TaskDraft
from .repositories import SORT_FIELDS, ListQuery, Repository
from .schemas import TaskCreate, TaskUpdate

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Result])

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _storage_guarded(method: F) -> F:
    """
    Report StorageError raised by the store as a STORAGE result. No retries.
    Stores log the failure themselves, with its traceback.
    """

    @functools.wraps(method)
    def wrapper(self: "TaskService", *args: Any, **kwargs: Any) -> Result:
        try:
            return method(self, *args, **kwargs)
        except StorageError as e:
            return Result.failure(ErrorKind.STORAGE, str(e))

    return wrapper  # type: ignore[return-value]


def _validation_failure(exc: PydanticValidationError) -> Result:
    detail: List[Dict[str, Any]] = [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]
    message = "; ".join(d["msg"] for d in detail) or "invalid task data"
    logger.info("Rejected task input: %s", message)
    return Result.failure(ErrorKind.VALIDATION, message, detail)


def _not_found(task_id: int) -> Result:
    return Result.failure(ErrorKind.NOT_FOUND, f"Task with id {task_id} not found")


# PUBLIC_INTERFACE
class TaskService:
    """
    Validation and business rules for tasks; the only caller of the repository.

    Every operation returns a Result. Expected failures (invalid input, unknown
    id) and storage failures are reported through Result.error and never raised.

    The service keeps no task state of its own: each call goes to the repository.
    """

    def __init__(self, repository: Repository, clock: Clock = utc_now) -> None:
        self._repo = repository
        self._clock = clock

    def _touch(self, task: Task) -> datetime:
        # updated_at never moves backwards, even if the clock does.
        return max(self._clock(), task["updated_at"])

    @_storage_guarded
    def create_task(self, title: str, description: Optional[str] = None) -> Result[Task]:
        """
        Validate and store a new pending task.

        created_at and updated_at are set to the same instant.
        """
        try:
            data = TaskCreate(title=title, description=description)
        except PydanticValidationError as e:
            return _validation_failure(e)

        now = self._clock()
        draft: TaskDraft = {
            "title": data.title,
            "description": data.description or "",
            "completed": False,
            "created_at": now,
            "updated_at": now,
        }
        task = self._repo.insert(draft)
        logger.info("Created task id=%s", task["id"])
        return Result.success(task)

    @_storage_guarded
    def get_task(self, task_id: int) -> Result[Task]:
        task = self._repo.get(task_id)
        if task is None:
            return _not_found(task_id)
        return Result.success(task)

    @_storage_guarded
    def update_task(
        self,
        task_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Result[Task]:
        """
        Partial update: only the fields that are not None change.

        A supplied title is validated before the repository is touched. Calling
        without any field returns the current task unchanged.
        """
        try:
            changes = TaskUpdate(title=title, description=description)
        except PydanticValidationError as e:
            return _validation_failure(e)

        if changes.title is None and changes.description is None:
            return self.get_task(task_id)

        def mutate(task: Task) -> Task:
            if changes.title is not None:
                task["title"] = changes.title
            if changes.description is not None:
                task["description"] = changes.description
            task["updated_at"] = self._touch(task)
            return task

        updated = self._repo.update(task_id, mutate)
        if updated is None:
            return _not_found(task_id)
        logger.debug("Updated task id=%s", task_id)
        return Result.success(updated)

    @_storage_guarded
    def toggle_complete(self, task_id: int) -> Result[Task]:
        """Flip the completion flag (Pending <-> Completed)."""

        def mutate(task: Task) -> Task:
            task["completed"] = not task["completed"]
            task["updated_at"] = self._touch(task)
            return task

        updated = self._repo.update(task_id, mutate)
        if updated is None:
            return _not_found(task_id)
        logger.debug("Toggled task id=%s completed=%s", task_id, updated["completed"])
        return Result.success(updated)

    @_storage_guarded
    def set_completed(self, task_id: int, completed: bool) -> Result[Task]:
        """
        Move the task to the requested completion state.

        Idempotent: if the task is already in that state nothing is written and
        updated_at keeps its value.
        """

        def mutate(task: Task) -> Task:
            if task["completed"] == completed:
                return task
            task["completed"] = completed
            task["updated_at"] = self._touch(task)
            return task

        updated = self._repo.update(task_id, mutate)
        if updated is None:
            return _not_found(task_id)
        return Result.success(updated)

    def complete_task(self, task_id: int) -> Result[Task]:
        return self.set_completed(task_id, True)

    def reopen_task(self, task_id: int) -> Result[Task]:
        return self.set_completed(task_id, False)

    @_storage_guarded
    def delete_task(self, task_id: int) -> Result[None]:
        if not self._repo.delete(task_id):
            return _not_found(task_id)
        logger.info("Deleted task id=%s", task_id)
        return Result.success(None)

    @_storage_guarded
    def list_page(
        self,
        completed: Optional[bool] = None,
        sort: str = "id",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Result[Tuple[List[Task], int]]:
        """
        List tasks, by default in insertion order, with the total match count.

        completed filters by status; sort is one of SORT_FIELDS; limit/offset
        page through the sorted result. The page and the total come from one
        snapshot of the store, so they agree even under concurrent writes.
        """
        if sort not in SORT_FIELDS:
            return Result.failure(
                ErrorKind.VALIDATION, f"sort must be one of {', '.join(SORT_FIELDS)}"
            )
        if (limit is not None and limit < 0) or offset < 0:
            return Result.failure(ErrorKind.VALIDATION, "limit and offset must not be negative")

        query = ListQuery(completed=completed, sort=sort, limit=limit, offset=offset)
        return Result.success(self._repo.list_page(query))

    def list_tasks(
        self,
        completed: Optional[bool] = None,
        sort: str = "id",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Result[List[Task]]:
        page = self.list_page(completed=completed, sort=sort, limit=limit, offset=offset)
        if not page.ok:
            return Result(error=page.error)
        items, _total = page.value
        return Result.success(items)

    @_storage_guarded
    def count_tasks(self, completed: Optional[bool] = None) -> Result[int]:
        return Result.success(self._repo.count(completed))
