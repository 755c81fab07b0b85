# tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store.

    Holds two tables:
    - tasks: one row per task, instants stored as ISO-8601 text (UTC)
    - device_tokens: push tokens registered per owner

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    due_at TEXT NOT NULL,
                    reminder_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'planned',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("description", "TEXT NOT NULL DEFAULT ''")
            add_col("status", "TEXT NOT NULL DEFAULT 'planned'")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_id, created_at, id)")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS device_tokens (
                    owner_id TEXT NOT NULL,
                    token TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (owner_id, token)
                )
                """
            )

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            due_at=datetime.fromisoformat(row["due_at"]),
            reminder_at=datetime.fromisoformat(row["reminder_at"]),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(
        self,
        *,
        owner_id: str,
        title: str,
        description: str | None,
        due_at: datetime,
        reminder_at: datetime,
        status: TaskStatus = TaskStatus.PLANNED,
    ) -> Task:
        if not owner_id:
            raise ValueError("owner_id is required")
        if not title or not title.strip():
            raise ValueError("title is required")

        now = time.time()
        task_id = str(uuid.uuid4())

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, owner_id, title, description,
                    due_at, reminder_at, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    owner_id,
                    title.strip(),
                    (description or "").strip(),
                    due_at.isoformat(),
                    reminder_at.isoformat(),
                    status.value,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug("Task added id=%s owner=%s due_at=%s reminder_at=%s", task_id, owner_id, due_at, reminder_at)
        task = self.get_task(task_id)
        if task is None:
            raise RuntimeError(f"Task {task_id} vanished right after insert")
        return task

    def get_task(self, task_id: str, owner_id: str | None = None) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            if owner_id is None:
                cur.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
            else:
                cur.execute("SELECT * FROM tasks WHERE id = ? AND owner_id = ?", (task_id, owner_id))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get_tasks_by_owner(self, owner_id: str, limit: int = 100) -> list[Task]:
        """All tasks of one owner, oldest first (created_at, then id)."""
        if not owner_id:
            return []

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM tasks
                WHERE owner_id = ?
                ORDER BY created_at ASC, id ASC
                    LIMIT ?
                """,
                (owner_id, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def update_task_fields(
        self,
        task_id: str,
        owner_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        due_at: datetime | None = None,
        reminder_at: datetime | None = None,
        status: TaskStatus | None = None,
    ) -> Task | None:
        """Update the given fields of an owned task. Returns None if no such task."""
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            if not title.strip():
                raise ValueError("title must not be empty")
            fields.append("title = ?")
            params.append(title.strip())

        if description is not None:
            fields.append("description = ?")
            params.append(description.strip())

        if due_at is not None:
            fields.append("due_at = ?")
            params.append(due_at.isoformat())

        if reminder_at is not None:
            fields.append("reminder_at = ?")
            params.append(reminder_at.isoformat())

        if status is not None:
            fields.append("status = ?")
            params.append(status.value)

        if not fields:
            return self.get_task(task_id, owner_id)

        fields.append("updated_at = ?")
        params.append(time.time())
        params.extend([task_id, owner_id])

        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ? AND owner_id = ?"

        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            if cur.rowcount != 1:
                return None
        finally:
            conn.close()

        return self.get_task(task_id, owner_id)

    def delete_task(self, task_id: str, owner_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ? AND owner_id = ?", (task_id, owner_id))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---- device tokens ----

    def add_device_token(self, owner_id: str, token: str) -> bool:
        """Register a push token for an owner. Returns False if it was already known."""
        if not owner_id or not token or not token.strip():
            raise ValueError("owner_id and token are required")

        conn = self._get_conn()
        try:
            cur = conn.execute(
                "INSERT OR IGNORE INTO device_tokens(owner_id, token, created_at) VALUES (?, ?, ?)",
                (owner_id, token.strip(), time.time()),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def remove_device_token(self, owner_id: str, token: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "DELETE FROM device_tokens WHERE owner_id = ? AND token = ?",
                (owner_id, token),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def list_device_tokens(self, owner_id: str) -> list[str]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT token FROM device_tokens WHERE owner_id = ? ORDER BY created_at ASC, token ASC",
                (owner_id,),
            )
            return [str(r["token"]) for r in cur.fetchall()]
        finally:
            conn.close()
