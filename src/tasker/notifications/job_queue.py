# src/tasker/notifications/job_queue.py

from __future__ import annotations

"""
Durable delayed-job queue on SQLite.

One table holds every queue; a queue name is a flat namespace of job ids.
Job states:
- scheduled: waiting for fire_at
- fired:     claimed by a worker, dispatch in progress
- failed:    retries exhausted (kept for inspection, never fired again)

Completed jobs are deleted. Re-adding an existing id overwrites it and puts it
back to "scheduled", so a job that is re-added while being dispatched is not
lost when the worker settles the old run (complete/fail only touch "fired" rows).

The public API is async; SQLite work runs in a thread via asyncio.to_thread.
"""

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..core.errors import SchedulingFailure

logger = logging.getLogger(__name__)


class JobState(StrEnum):
    SCHEDULED = "scheduled"
    FIRED = "fired"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class Job:
    job_id: str
    payload: dict[str, Any]
    fire_at: float
    state: JobState
    attempts: int
    last_error: str | None = None


class SqliteJobQueue:
    def __init__(
        self,
        db_path: str | Path,
        name: str = "tasks-notification-queue",
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
    ) -> None:
        self.name = name
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_s = max(0.0, float(backoff_seconds))
        self._ensure_schema()
        logger.info("JobQueue ready db=%s queue=%s", self._db_path, self.name)

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
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    queue TEXT NOT NULL,
                    job_id TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    fire_at REAL NOT NULL,
                    state TEXT NOT NULL DEFAULT 'scheduled',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (queue, job_id)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs(queue, state, fire_at)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        try:
            payload = json.loads(row["payload"] or "{}")
        except ValueError:
            payload = {}
        return Job(
            job_id=str(row["job_id"]),
            payload=payload if isinstance(payload, dict) else {},
            fire_at=float(row["fire_at"]),
            state=JobState(row["state"]),
            attempts=int(row["attempts"] or 0),
            last_error=row["last_error"],
        )

    async def _run(self, op: str, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except sqlite3.Error as exc:
            raise SchedulingFailure(f"{op} failed on queue {self.name}: {exc}") from exc

    # ---- sync implementations ----

    def _add_sync(self, job_id: str, payload: dict[str, Any], delay_ms: int) -> None:
        now = time.time()
        fire_at = now + max(0, int(delay_ms)) / 1000.0
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO jobs(queue, job_id, payload, fire_at, state, attempts, last_error, created_at, updated_at)
                VALUES (?, ?, ?, ?, 'scheduled', 0, NULL, ?, ?)
                ON CONFLICT(queue, job_id) DO UPDATE SET
                    payload = excluded.payload,
                    fire_at = excluded.fire_at,
                    state = 'scheduled',
                    attempts = 0,
                    last_error = NULL,
                    updated_at = excluded.updated_at
                """,
                (self.name, job_id, json.dumps(payload, ensure_ascii=False), fire_at, now, now),
            )
            conn.commit()
        finally:
            conn.close()

    def _list_sync(self) -> list[Job]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM jobs WHERE queue = ? ORDER BY fire_at ASC, job_id ASC",
                (self.name,),
            )
            return [self._row_to_job(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def _get_sync(self, job_id: str) -> Job | None:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT * FROM jobs WHERE queue = ? AND job_id = ?", (self.name, job_id))
            row = cur.fetchone()
            return self._row_to_job(row) if row else None
        finally:
            conn.close()

    def _remove_sync(self, job_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM jobs WHERE queue = ? AND job_id = ?", (self.name, job_id))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def _claim_due_sync(self, now_ts: float, limit: int) -> list[Job]:
        """
        Claim due jobs: scheduled -> fired, attempts += 1.

        Each row is claimed with a conditional UPDATE, so two workers never
        claim the same job.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT job_id
                FROM jobs
                WHERE queue = ? AND state = 'scheduled' AND fire_at <= ?
                ORDER BY fire_at ASC
                    LIMIT ?
                """,
                (self.name, now_ts, int(limit)),
            )
            candidates = [str(r["job_id"]) for r in cur.fetchall()]

            claimed: list[Job] = []
            for job_id in candidates:
                upd = conn.execute(
                    """
                    UPDATE jobs
                    SET state = 'fired', attempts = attempts + 1, updated_at = ?
                    WHERE queue = ? AND job_id = ? AND state = 'scheduled' AND fire_at <= ?
                    """,
                    (time.time(), self.name, job_id, now_ts),
                )
                conn.commit()
                if upd.rowcount != 1:
                    continue
                row = conn.execute(
                    "SELECT * FROM jobs WHERE queue = ? AND job_id = ?", (self.name, job_id)
                ).fetchone()
                if row is not None:
                    claimed.append(self._row_to_job(row))
            return claimed
        finally:
            conn.close()

    def _complete_sync(self, job_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "DELETE FROM jobs WHERE queue = ? AND job_id = ? AND state = 'fired'",
                (self.name, job_id),
            )
            conn.commit()
        finally:
            conn.close()

    def _fail_sync(self, job_id: str, error: str, now_ts: float) -> bool:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT attempts FROM jobs WHERE queue = ? AND job_id = ? AND state = 'fired'",
                (self.name, job_id),
            ).fetchone()
            if row is None:
                # Removed or re-added while dispatching: nothing to settle.
                return False

            attempts = int(row["attempts"] or 0)
            if attempts < self._max_attempts:
                retry_at = now_ts + self._backoff_s * (2 ** max(0, attempts - 1))
                conn.execute(
                    """
                    UPDATE jobs
                    SET state = 'scheduled', fire_at = ?, last_error = ?, updated_at = ?
                    WHERE queue = ? AND job_id = ? AND state = 'fired'
                    """,
                    (retry_at, error, now_ts, self.name, job_id),
                )
                conn.commit()
                return True

            conn.execute(
                """
                UPDATE jobs
                SET state = 'failed', last_error = ?, updated_at = ?
                WHERE queue = ? AND job_id = ? AND state = 'fired'
                """,
                (error, now_ts, self.name, job_id),
            )
            conn.commit()
            return False
        finally:
            conn.close()

    def _requeue_stale_sync(self, stale_before: float) -> int:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                UPDATE jobs
                SET state = 'scheduled', updated_at = ?
                WHERE queue = ? AND state = 'fired' AND updated_at < ?
                """,
                (time.time(), self.name, stale_before),
            )
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    # ---- public API ----

    async def add(self, job_id: str, payload: dict[str, Any], delay_ms: int) -> None:
        """Schedule (or overwrite) a job. Negative delays fire immediately."""
        await self._run("add", self._add_sync, job_id, payload, delay_ms)

    async def list_jobs(self) -> list[Job]:
        return await self._run("list_jobs", self._list_sync)

    async def get_job(self, job_id: str) -> Job | None:
        return await self._run("get_job", self._get_sync, job_id)

    async def remove(self, job_id: str) -> bool:
        return await self._run("remove", self._remove_sync, job_id)

    async def claim_due(self, *, now_ts: float | None = None, limit: int = 32) -> list[Job]:
        ts = time.time() if now_ts is None else float(now_ts)
        return await self._run("claim_due", self._claim_due_sync, ts, limit)

    async def complete(self, job_id: str) -> None:
        await self._run("complete", self._complete_sync, job_id)

    async def fail(self, job_id: str, error: str, *, now_ts: float | None = None) -> bool:
        """Record a failed run. Returns True if the job will be retried."""
        ts = time.time() if now_ts is None else float(now_ts)
        return await self._run("fail", self._fail_sync, job_id, error, ts)

    async def requeue_stale(self, *, stale_after_seconds: float = 300.0, now_ts: float | None = None) -> int:
        """Put back jobs left "fired" by a worker that died mid-dispatch."""
        ts = time.time() if now_ts is None else float(now_ts)
        return await self._run("requeue_stale", self._requeue_stale_sync, ts - stale_after_seconds)
