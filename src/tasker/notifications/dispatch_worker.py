# src/tasker/notifications/dispatch_worker.py

from __future__ import annotations

"""
Notification dispatch worker.

A small polling loop that:
- claims due jobs from the notification queue,
- sends each one through the injected push sender,
- marks the job completed, or reports the failure to the queue
  (which owns the retry/backoff policy).

No scheduling decisions are made here. Stopping the worker lets the current
batch finish (drain) before the loop exits.
"""

import asyncio
import contextlib
import logging
import time

from ..core.ports import JobQueue, PushSender

logger = logging.getLogger(__name__)


class NotificationDispatchWorker:
    def __init__(
        self,
        queue: JobQueue,
        sender: PushSender,
        *,
        interval_seconds: float = 1.0,
        batch_limit: int = 32,
        concurrency: int = 8,
        stale_after_seconds: float = 300.0,
    ) -> None:
        self._queue = queue
        self._sender = sender
        self._interval_s = max(0.01, float(interval_seconds))
        self._batch_limit = max(1, int(batch_limit))
        self._slots = asyncio.Semaphore(max(1, int(concurrency)))
        self._stale_after_s = float(stale_after_seconds)
        self._stopping = asyncio.Event()
        self._runner: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def _dispatch(self, job) -> bool:
        payload = job.payload or {}
        token = str(payload.get("device_token") or "")
        title = str(payload.get("title") or "")
        body = str(payload.get("body") or "")

        async with self._slots:
            try:
                if not token:
                    raise ValueError("job payload has no device_token")
                receipt = await self._sender.send(token=token, title=title, body=body)
            except Exception as exc:
                logger.error("Job:%s failed - %s", job.job_id, exc)
                try:
                    will_retry = await self._queue.fail(job.job_id, str(exc))
                    if not will_retry:
                        logger.warning("Job:%s gave up after %s attempts", job.job_id, job.attempts)
                except Exception:
                    logger.exception("Could not record failure for job %s", job.job_id)
                return False

            try:
                await self._queue.complete(job.job_id)
            except Exception:
                logger.exception("Could not mark job %s completed", job.job_id)

        logger.info(
            "Job:%s completed task_id=%s owner=%s receipt=%s",
            job.job_id,
            payload.get("task_id"),
            payload.get("owner_id"),
            receipt,
        )
        return True

    async def run_once(self, *, now_ts: float | None = None) -> int:
        """Claim and dispatch one batch of due jobs. Returns how many were claimed."""
        try:
            jobs = await self._queue.claim_due(now_ts=now_ts, limit=self._batch_limit)
        except Exception:
            logger.exception("claim_due failed queue=%s", getattr(self._queue, "name", "?"))
            return 0

        if jobs:
            await asyncio.gather(*(self._dispatch(job) for job in jobs))
        return len(jobs)

    async def run(self) -> None:
        """Poll until stop() is called. Each batch is awaited in full before re-checking."""
        while not self._stopping.is_set():
            started = time.monotonic()
            claimed = await self.run_once()
            if claimed >= self._batch_limit:
                # Backlog: go again right away.
                continue

            wait_s = max(0.0, self._interval_s - (time.monotonic() - started))
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=wait_s)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()

        requeue = getattr(self._queue, "requeue_stale", None)
        if requeue is not None:
            try:
                n = await requeue(stale_after_seconds=self._stale_after_s)
                if n:
                    logger.warning("Re-queued %s stale jobs left by a previous worker", n)
            except Exception:
                logger.exception("requeue_stale failed")

        self._runner = asyncio.create_task(self.run(), name="notification-dispatch-worker")
        logger.info("Dispatch worker started queue=%s", getattr(self._queue, "name", "?"))

    async def stop(self, *, drain_timeout: float = 30.0) -> None:
        """Stop polling and wait for in-flight dispatches (up to drain_timeout)."""
        runner = self._runner
        if runner is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(asyncio.shield(runner), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Dispatch worker did not drain in %.1fs, cancelling", drain_timeout)
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        finally:
            self._runner = None
        logger.info("Dispatch worker stopped")
