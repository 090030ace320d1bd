from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from filelock import FileLock, Timeout

from .errors import StorageError
from .models import Task, TaskDraft
from .schemas import TITLE_MAX_LENGTH
from .settings import Settings

logger = logging.getLogger(__name__)

SORT_FIELDS = ("id", "created_at", "-created_at", "updated_at", "-updated_at")

Mutator = Callable[[Task], Task]


@dataclass(frozen=True)
class ListQuery:
    """
    Query parameters for listing tasks.
    """
    completed: Optional[bool] = None
    sort: str = "id"  # allowed: see SORT_FIELDS
    limit: Optional[int] = None
    offset: int = 0

    def sort_key(self) -> Tuple[str, bool]:
        """Return (field, descending); unknown sort values fall back to id order."""
        sort = (self.sort or "id").strip().lower()
        if sort not in SORT_FIELDS:
            sort = "id"
        return sort.lstrip("-"), sort.startswith("-")


# PUBLIC_INTERFACE
class Repository(ABC):
    """Abstract contract for task storage backends."""

    @abstractmethod
    def insert(self, draft: TaskDraft) -> Task:
        """Assign a new id, persist the task and return it."""

    @abstractmethod
    def get(self, task_id: int) -> Optional[Task]:
        """Return a task by id, or None if not found."""

    @abstractmethod
    def list_page(self, query: Optional[ListQuery] = None) -> Tuple[List[Task], int]:
        """
        Return a slice of the tasks matching the query and their total count,
        both read from the same snapshot.
        - Filter by completed
        - Sorted by id (insertion order) unless the query asks otherwise
        - limit/offset applied after sorting; the total ignores them
        """

    def list(self, query: Optional[ListQuery] = None) -> List[Task]:
        """Return a snapshot of the tasks matching the query."""
        return self.list_page(query)[0]

    @abstractmethod
    def count(self, completed: Optional[bool] = None) -> int:
        """Return the number of tasks, optionally only those with the given completion flag."""

    @abstractmethod
    def update(self, task_id: int, mutator: Mutator) -> Optional[Task]:
        """
        Apply mutator to a copy of the task and persist the result atomically.
        Return the stored task, or None if not found. id and created_at never change.
        If the mutator raises, nothing is written.
        """

    @abstractmethod
    def delete(self, task_id: int) -> bool:
        """Delete a task by id. Return True if deleted, False if not found."""

    def close(self) -> None:
        """Release any resources held by the store."""
        return None


def _apply_mutator(existing: Task, mutator: Mutator) -> Task:
    updated = mutator(existing.copy())
    # Identity fields are owned by the store.
    updated["id"] = existing["id"]
    updated["created_at"] = existing["created_at"]
    return updated


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository.

    State changes are built on a copy, handed to _persist() and only swapped in
    once that returns, so a failing write leaves the previous state in place.
    Nothing survives the process; subclasses override _persist() to write through.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._items: Dict[int, Task] = {}
        self._next_id = 1

    def _persist(self, items: Dict[int, Task], next_id: int) -> None:
        """Write a complete new state to the medium. Raise StorageError on failure."""

    def insert(self, draft: TaskDraft) -> Task:
        with self._lock:
            entity: Task = {
                "id": self._next_id,
                "title": draft["title"],
                "description": draft["description"],
                "completed": draft["completed"],
                "created_at": draft["created_at"],
                "updated_at": draft["updated_at"],
            }
            items = dict(self._items)
            items[entity["id"]] = entity
            self._persist(items, entity["id"] + 1)
            self._items = items
            self._next_id = entity["id"] + 1
            return entity.copy()

    def get(self, task_id: int) -> Optional[Task]:
        with self._lock:
            item = self._items.get(task_id)
            return None if item is None else item.copy()

    def update(self, task_id: int, mutator: Mutator) -> Optional[Task]:
        with self._lock:
            existing = self._items.get(task_id)
            if existing is None:
                return None

            updated = _apply_mutator(existing, mutator)
            if updated == existing:
                return existing.copy()

            items = dict(self._items)
            items[task_id] = updated
            self._persist(items, self._next_id)
            self._items = items
            return updated.copy()

    def delete(self, task_id: int) -> bool:
        with self._lock:
            if task_id not in self._items:
                return False
            items = dict(self._items)
            del items[task_id]
            self._persist(items, self._next_id)
            self._items = items
            return True

    def count(self, completed: Optional[bool] = None) -> int:
        with self._lock:
            if completed is None:
                return len(self._items)
            return sum(1 for t in self._items.values() if t["completed"] == completed)

    def list_page(self, query: Optional[ListQuery] = None) -> Tuple[List[Task], int]:
        q = query or ListQuery()
        with self._lock:
            items = list(self._items.values())

        if q.completed is not None:
            items = [t for t in items if t["completed"] == q.completed]

        total = len(items)
        field, reverse = q.sort_key()
        items.sort(key=lambda t: (t[field], t["id"]), reverse=reverse)  # type: ignore[literal-required]

        start = max(q.offset, 0)
        end = None if q.limit is None else start + max(q.limit, 0)
        # Return copies to avoid external mutation
        return [t.copy() for t in items[start:end]], total


def _dt_to_text(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _text_to_dt(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _encode_task(task: Task) -> Dict[str, Any]:
    return {
        "id": task["id"],
        "title": task["title"],
        "description": task["description"],
        "completed": task["completed"],
        "created_at": _dt_to_text(task["created_at"]),
        "updated_at": _dt_to_text(task["updated_at"]),
    }


def _decode_task(record: Dict[str, Any]) -> Task:
    task: Task = {
        "id": int(record["id"]),
        "title": str(record["title"]),
        "description": str(record.get("description") or ""),
        "completed": bool(record["completed"]),
        "created_at": _text_to_dt(record["created_at"]),
        "updated_at": _text_to_dt(record["updated_at"]),
    }
    if not (1 <= len(task["title"].strip()) <= TITLE_MAX_LENGTH):
        raise ValueError(f"task {task['id']} has an invalid title")
    if task["updated_at"] < task["created_at"]:
        raise ValueError(f"task {task['id']} was updated before it was created")
    return task


def _fsync_directory(path: Path) -> None:
    # Makes a rename inside the directory durable. Windows cannot open directories.
    if os.name == "nt":
        return
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class JsonFileRepository(InMemoryRepository):
    """
    Repository backed by a single JSON document.

    Document layout:
        {"version": 1, "next_id": <int>, "tasks": [<task>, ...]}

    The whole document is rewritten on every mutation: written to a temporary
    file next to the target, fsynced, moved into place with os.replace(), and
    the directory is fsynced so the rename itself survives a crash. Readers of
    the file therefore only ever see a complete old or new version.

    The store keeps the document in memory, so it holds an exclusive lock on
    "<path>.lock" from construction until close(). A second store on the same
    path, in this or another process, fails with StorageError.
    """

    FORMAT_VERSION = 1

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self._path = Path(path)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create data directory for {self._path}: {e}") from e

        # Not thread-local: writes and close() may run on other threads.
        self._file_lock = FileLock(
            str(self._path.with_name(self._path.name + ".lock")), timeout=0, thread_local=False
        )
        try:
            self._file_lock.acquire()
        except Timeout as e:
            raise StorageError(f"task file {self._path} is already in use by another store") from e
        except OSError as e:
            raise StorageError(f"cannot lock task file {self._path}: {e}") from e

        try:
            self._items, self._next_id = self._load()
        except StorageError:
            self._file_lock.release()
            raise
        logger.info("JsonFileRepository ready path=%s total=%s", self._path, len(self._items))

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._file_lock.release()

    def _load(self) -> Tuple[Dict[int, Task], int]:
        if not self._path.exists():
            return {}, 1

        try:
            with self._path.open("r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"cannot read task file {self._path}: {e}") from e

        try:
            tasks = [_decode_task(r) for r in doc["tasks"]]
            next_id = int(doc.get("next_id", 1))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StorageError(f"malformed task file {self._path}: {e}") from e

        items = {t["id"]: t for t in sorted(tasks, key=lambda t: t["id"])}
        if len(items) != len(tasks):
            raise StorageError(f"malformed task file {self._path}: duplicate task ids")
        return items, max(next_id, max(items, default=0) + 1)

    def _persist(self, items: Dict[int, Task], next_id: int) -> None:
        if not self._file_lock.is_locked:
            raise StorageError(f"task file {self._path} is closed")

        doc = {
            "version": self.FORMAT_VERSION,
            "next_id": next_id,
            "tasks": [_encode_task(t) for t in items.values()],
        }
        tmp_path: Optional[str] = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
            tmp_path = None
            _fsync_directory(self._path.parent)
        except OSError as e:
            logger.exception("Failed to write task file %s", self._path)
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            raise StorageError(f"cannot write task file {self._path}: {e}") from e


# PUBLIC_INTERFACE
def build_repository(settings: Settings) -> Repository:
    """
    Construct the repository selected by settings.
    - json: JsonFileRepository at settings.data_path
    - sqlite: SQLiteRepository at settings.data_path
    - memory: InMemoryRepository (not persisted)
    """
    backend = settings.persistence_backend
    if backend == "json":
        return JsonFileRepository(settings.data_path)
    if backend == "sqlite":
        from .db import SQLiteRepository

        return SQLiteRepository(settings.data_path)
    if backend == "memory":
        return InMemoryRepository()
    raise ValueError(f"unsupported persistence backend: {backend!r}")
