from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Generator, List, Optional, Tuple, Union

from .errors import StorageError
from .models import Task, TaskDraft
from .repositories import ListQuery, Mutator, Repository, _apply_mutator, _dt_to_text, _text_to_dt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Cols:
    table: str = "tasks"
    id: str = "id"
    title: str = "title"
    description: str = "description"
    completed: str = "completed"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_COLS = _Cols()


class SQLiteRepository(Repository):
    """
    SQLite repository implementing the Repository interface.

    Each call opens its own connection. Writes run inside BEGIN IMMEDIATE
    transactions and, within this process, under a store-wide lock.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self._db_path = str(db_path)
        self._lock = RLock()
        try:
            os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create data directory for {self._db_path}: {e}") from e
        self._init_db()
        logger.info("SQLiteRepository ready db=%s total=%s", self._db_path, self.count())

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        # isolation_level=None: transactions are opened explicitly in _transaction()
        conn = sqlite3.connect(self._db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, write: bool = False) -> Generator[sqlite3.Connection, None, None]:
        with self._lock:
            try:
                with self._conn() as conn:
                    conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
                    try:
                        yield conn
                    except BaseException:
                        conn.execute("ROLLBACK")
                        raise
                    conn.execute("COMMIT")
            except sqlite3.Error as e:
                logger.exception("SQLite operation failed db=%s", self._db_path)
                raise StorageError(f"database error: {e}") from e

    def _init_db(self) -> None:
        with self._transaction(write=True) as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_COLS.title} TEXT NOT NULL CHECK (length({_COLS.title}) > 0),
                    {_COLS.description} TEXT NOT NULL DEFAULT '',
                    {_COLS.completed} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_completed ON {_COLS.table}({_COLS.completed})"
            )

    def _row_to_entity(self, row: sqlite3.Row) -> Task:
        return {
            "id": int(row[_COLS.id]),
            "title": str(row[_COLS.title]),
            "description": row[_COLS.description] or "",
            "completed": bool(row[_COLS.completed]),
            "created_at": _text_to_dt(row[_COLS.created_at]),
            "updated_at": _text_to_dt(row[_COLS.updated_at]),
        }

    def _select(self, conn: sqlite3.Connection, task_id: int) -> Optional[Task]:
        row = conn.execute(f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ?", (task_id,)).fetchone()
        return self._row_to_entity(row) if row else None

    def insert(self, draft: TaskDraft) -> Task:
        with self._transaction(write=True) as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {_COLS.table} ({_COLS.title}, {_COLS.description}, {_COLS.completed},
                    {_COLS.created_at}, {_COLS.updated_at})
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    draft["title"],
                    draft["description"],
                    1 if draft["completed"] else 0,
                    _dt_to_text(draft["created_at"]),
                    _dt_to_text(draft["updated_at"]),
                ),
            )
            created = self._select(conn, int(cur.lastrowid))
            assert created is not None
            return created

    def get(self, task_id: int) -> Optional[Task]:
        with self._transaction() as conn:
            return self._select(conn, task_id)

    def update(self, task_id: int, mutator: Mutator) -> Optional[Task]:
        with self._transaction(write=True) as conn:
            current = self._select(conn, task_id)
            if current is None:
                return None

            updated = _apply_mutator(current, mutator)
            if updated == current:
                return current

            conn.execute(
                f"""
                UPDATE {_COLS.table}
                SET {_COLS.title} = ?, {_COLS.description} = ?, {_COLS.completed} = ?,
                    {_COLS.updated_at} = ?
                WHERE {_COLS.id} = ?
                """,
                (
                    updated["title"],
                    updated["description"],
                    1 if updated["completed"] else 0,
                    _dt_to_text(updated["updated_at"]),
                    task_id,
                ),
            )
            stored = self._select(conn, task_id)
            assert stored is not None
            return stored

    def delete(self, task_id: int) -> bool:
        with self._transaction(write=True) as conn:
            cur = conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (task_id,))
            return cur.rowcount > 0

    def count(self, completed: Optional[bool] = None) -> int:
        where_sql = ""
        params: list = []
        if completed is not None:
            where_sql = f"WHERE {_COLS.completed} = ?"
            params.append(1 if completed else 0)
        with self._transaction() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {_COLS.table} {where_sql}", params).fetchone()
            return int(row["cnt"]) if row else 0

    def list_page(self, query: Optional[ListQuery] = None) -> Tuple[List[Task], int]:
        q = query or ListQuery()
        where_sql = ""
        params: list = []

        if q.completed is not None:
            where_sql = f"WHERE {_COLS.completed} = ?"
            params.append(1 if q.completed else 0)

        field, reverse = q.sort_key()
        direction = "DESC" if reverse else "ASC"
        order_sql = f"ORDER BY {field} {direction}, {_COLS.id} {direction}"

        # SQLite treats a negative LIMIT as "no limit"
        limit = -1 if q.limit is None else max(q.limit, 0)
        offset = max(q.offset, 0)

        with self._transaction() as conn:
            # Same read transaction as the page query, so the two agree.
            count_row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM {_COLS.table} {where_sql}", params
            ).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                {where_sql}
                {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            ).fetchall()
            return [self._row_to_entity(r) for r in rows], total
