# tests/test_dispatch_worker.py

from __future__ import annotations

import asyncio
import time

import pytest

from tasker.notifications.dispatch_worker import NotificationDispatchWorker
from tasker.notifications.job_queue import JobState, SqliteJobQueue
from tasker.notifications.reminder_scheduler import ReminderJobScheduler

from .fakes import FailingJobQueue, FakePushSender


@pytest.mark.asyncio
async def test_due_job_is_pushed_and_removed(scheduler: ReminderJobScheduler, job_queue: SqliteJobQueue) -> None:
    sender = FakePushSender()
    worker = NotificationDispatchWorker(job_queue, sender)

    await scheduler.schedule("t1", "u1", "tok-a", "Buy milk", "2 litres", 0)
    await scheduler.schedule("t2", "u1", "tok-a", "Later", "", 3_600_000)

    assert await worker.run_once() == 1
    assert [(p.token, p.title, p.body) for p in sender.sent] == [("tok-a", "Buy milk", "2 litres")]

    remaining = await job_queue.list_jobs()
    assert [j.payload["task_id"] for j in remaining] == ["t2"]


@pytest.mark.asyncio
async def test_future_job_fires_when_its_time_comes(scheduler: ReminderJobScheduler, job_queue: SqliteJobQueue) -> None:
    sender = FakePushSender()
    worker = NotificationDispatchWorker(job_queue, sender)

    await scheduler.schedule("t1", "u1", "tok-a", "Title", "", 4 * 24 * 3_600_000)

    assert await worker.run_once() == 0
    assert await worker.run_once(now_ts=time.time() + 4 * 24 * 3600 + 1) == 1
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_failed_push_is_left_to_queue_retry(
    scheduler: ReminderJobScheduler,
    job_queue: SqliteJobQueue,
    caplog: pytest.LogCaptureFixture,
) -> None:
    sender = FakePushSender(fail_tokens={"tok-bad"})
    worker = NotificationDispatchWorker(job_queue, sender)

    await scheduler.schedule("t1", "u1", "tok-bad", "Title", "", 0)
    await scheduler.schedule("t1", "u1", "tok-ok", "Title", "", 0)

    assert await worker.run_once() == 2
    assert [p.token for p in sender.sent] == ["tok-ok"]

    (job,) = await job_queue.list_jobs()
    assert job.payload["device_token"] == "tok-bad"
    assert job.state == JobState.SCHEDULED
    assert job.attempts == 1
    assert "provider rejected tok-bad" in (job.last_error or "")
    assert "failed" in caplog.text


@pytest.mark.asyncio
async def test_broken_queue_does_not_crash_worker() -> None:
    worker = NotificationDispatchWorker(FailingJobQueue(), FakePushSender())
    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_start_stop_drains(scheduler: ReminderJobScheduler, job_queue: SqliteJobQueue) -> None:
    sender = FakePushSender()
    worker = NotificationDispatchWorker(job_queue, sender, interval_seconds=0.01)

    await scheduler.schedule("t1", "u1", "tok-a", "Title", "", 0)
    await worker.start()
    assert worker.running

    for _ in range(100):
        if sender.sent:
            break
        await asyncio.sleep(0.01)

    await worker.stop()
    assert not worker.running
    assert len(sender.sent) == 1
    assert await job_queue.list_jobs() == []
