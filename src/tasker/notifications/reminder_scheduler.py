# src/tasker/notifications/reminder_scheduler.py

from __future__ import annotations

"""
Reminder job lifecycle: schedule, reschedule, cancel.

Keeps at most one queued notification per (task, device). The queue has no
in-place update, so rescheduling is a sweep-and-replace: list the namespace,
remove every job of the task, add the new one(s). All operations on one task id
run under a per-task asyncio.Lock, so concurrent edits of the same task inside
this process cannot interleave a sweep with an add.

Everything here is best-effort: queue failures are logged and swallowed, the
task mutation that triggered them has already been committed.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Iterable
from datetime import datetime, timezone

from ..core.ports import JobQueue
from .job_keys import JobKey, task_id_from_key
from .job_queue import Job

logger = logging.getLogger(__name__)


def delay_ms_until(fire_at: datetime, now: datetime | None = None) -> int:
    """Milliseconds from now until fire_at (negative if already past)."""
    now = now or datetime.now(timezone.utc)
    return int((fire_at - now).total_seconds() * 1000)


class ReminderJobScheduler:
    def __init__(self, queue: JobQueue) -> None:
        self._queue = queue
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _task_lock(self, task_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(task_id, asyncio.Lock())
        self._lock_users[task_id] = self._lock_users.get(task_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[task_id] -= 1
            if self._lock_users[task_id] == 0:
                del self._lock_users[task_id]
                self._locks.pop(task_id, None)

    # ---- internals (caller holds the task lock) ----

    async def _add(
        self,
        *,
        task_id: str,
        owner_id: str,
        device_token: str,
        title: str,
        body: str,
        delay_ms: int,
    ) -> None:
        # The push token doubles as the device identity.
        device_id = device_token
        job_id = JobKey(task_id, device_id).to_job_id()
        payload = {
            "owner_id": owner_id,
            "task_id": task_id,
            "device_token": device_token,
            "device_id": device_id,
            "title": title,
            "body": body,
        }
        await self._queue.add(job_id, payload, delay_ms)
        logger.debug("Job %s queued task_id=%s owner=%s delay_ms=%s", job_id, task_id, owner_id, delay_ms)

    async def _sweep(self, task_id: str) -> int:
        jobs = await self._queue.list_jobs()
        matching = [j.job_id for j in jobs if task_id_from_key(j.job_id) == task_id]
        if not matching:
            return 0
        removed = await asyncio.gather(*(self._queue.remove(job_id) for job_id in matching))
        return sum(1 for ok in removed if ok)

    # ---- public API ----

    async def schedule(
        self,
        task_id: str,
        owner_id: str,
        device_token: str,
        title: str,
        body: str,
        fire_delay_ms: int,
    ) -> bool:
        """Queue (or overwrite) the reminder of one device. Returns False on failure."""
        async with self._task_lock(task_id):
            try:
                await self._add(
                    task_id=task_id,
                    owner_id=owner_id,
                    device_token=device_token,
                    title=title,
                    body=body,
                    delay_ms=fire_delay_ms,
                )
                return True
            except Exception:
                logger.exception("Failed to queue reminder task_id=%s owner=%s", task_id, owner_id)
                return False

    async def reschedule(
        self,
        task_id: str,
        owner_id: str,
        device_token: str,
        title: str,
        body: str,
        new_delay_ms: int,
    ) -> bool:
        """Remove every queued reminder of the task, then queue this device's one."""
        async with self._task_lock(task_id):
            try:
                removed = await self._sweep(task_id)
                await self._add(
                    task_id=task_id,
                    owner_id=owner_id,
                    device_token=device_token,
                    title=title,
                    body=body,
                    delay_ms=new_delay_ms,
                )
                logger.info("Jobs for task_id=%s replaced (removed=%s) delay_ms=%s", task_id, removed, new_delay_ms)
                return True
            except Exception:
                logger.exception("Failed to reschedule reminders task_id=%s", task_id)
                return False

    async def replace_for_devices(
        self,
        task_id: str,
        owner_id: str,
        device_tokens: Iterable[str],
        title: str,
        body: str,
        new_delay_ms: int,
    ) -> int:
        """
        Sweep once, then queue one reminder per device.

        Returns how many reminders were queued.
        """
        tokens = list(dict.fromkeys(t for t in device_tokens if t))
        async with self._task_lock(task_id):
            try:
                removed = await self._sweep(task_id)
            except Exception:
                logger.exception("Failed to sweep reminders task_id=%s", task_id)
                return 0

            queued = 0
            for token in tokens:
                try:
                    await self._add(
                        task_id=task_id,
                        owner_id=owner_id,
                        device_token=token,
                        title=title,
                        body=body,
                        delay_ms=new_delay_ms,
                    )
                    queued += 1
                except Exception:
                    logger.exception("Failed to queue reminder task_id=%s owner=%s", task_id, owner_id)

        logger.info(
            "Jobs for task_id=%s replaced (removed=%s queued=%s) delay_ms=%s",
            task_id,
            removed,
            queued,
            new_delay_ms,
        )
        return queued

    async def cancel_all_for_task(self, task_id: str) -> int:
        """Remove every queued reminder of the task, on all devices."""
        async with self._task_lock(task_id):
            try:
                removed = await self._sweep(task_id)
            except Exception:
                logger.exception("Failed to delete notification jobs for task_id=%s", task_id)
                return 0
        logger.info("All notification jobs for task_id=%s deleted (removed=%s)", task_id, removed)
        return removed

    async def cancel_for_device(self, owner_id: str, device_token: str) -> int:
        """Remove every queued reminder of the owner addressed to one device, across all tasks."""
        try:
            jobs = await self._queue.list_jobs()
            removed = 0
            for job in jobs:
                try:
                    key = JobKey.parse(job.job_id)
                except ValueError:
                    continue
                if key.device_id != device_token or job.payload.get("owner_id") != owner_id:
                    continue
                async with self._task_lock(key.task_id):
                    if await self._queue.remove(job.job_id):
                        removed += 1
        except Exception:
            logger.exception("Failed to delete notification jobs of a device owner=%s", owner_id)
            return 0
        logger.info("Notification jobs of a device deleted owner=%s (removed=%s)", owner_id, removed)
        return removed

    async def jobs_for_task(self, task_id: str) -> list[Job]:
        jobs = await self._queue.list_jobs()
        return [j for j in jobs if task_id_from_key(j.job_id) == task_id]
