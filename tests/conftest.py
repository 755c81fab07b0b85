# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from tasker.notifications.job_queue import SqliteJobQueue
from tasker.notifications.reminder_scheduler import ReminderJobScheduler
from tasker.realtime.change_bus import ChangeNotificationBus
from tasker.realtime.connections import LocalConnectionRegistry
from tasker.realtime.pubsub import LocalPubSub
from tasker.tasks.task_service import TaskService
from tasker.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment.
    """
    return SimpleNamespace(
        app_name="tasker-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        queue_db_path=tmp_path / "queue.sqlite3",
        pubsub_db_path=tmp_path / "pubsub.sqlite3",
        notification_queue="tasks-notification-queue",
        task_updates_channel="tasks-updates",
        worker_interval_seconds=0.01,
        worker_batch_limit=10,
        worker_concurrency=4,
        job_max_attempts=3,
        job_backoff_seconds=60.0,
        pubsub_backend="local",
        pubsub_poll_seconds=0.01,
        pubsub_retention_seconds=60.0,
        ws_enabled=False,
        ws_host="127.0.0.1",
        ws_port=0,
        fcm_project_id=None,
        fcm_access_token=None,
        fcm_timeout_seconds=5.0,
    )


@pytest.fixture()
def frozen_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture()
def task_store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def job_queue(settings: SimpleNamespace) -> SqliteJobQueue:
    return SqliteJobQueue(
        settings.queue_db_path,
        settings.notification_queue,
        max_attempts=settings.job_max_attempts,
        backoff_seconds=settings.job_backoff_seconds,
    )


@pytest.fixture()
def scheduler(job_queue: SqliteJobQueue) -> ReminderJobScheduler:
    return ReminderJobScheduler(job_queue)


@pytest.fixture()
def connections() -> LocalConnectionRegistry:
    return LocalConnectionRegistry()


@pytest.fixture()
def pubsub() -> LocalPubSub:
    return LocalPubSub()


@pytest.fixture()
def bus(pubsub: LocalPubSub, task_store: TaskStore, connections: LocalConnectionRegistry) -> ChangeNotificationBus:
    return ChangeNotificationBus(pubsub, task_store, connections)


@pytest.fixture()
def service(
    task_store: TaskStore,
    scheduler: ReminderJobScheduler,
    bus: ChangeNotificationBus,
    frozen_now: datetime,
) -> TaskService:
    """
    TaskService wired to real SQLite stores and an in-process channel.

    The clock is frozen so that normalized dates are exact.
    """
    return TaskService(task_store, scheduler, bus, clock=lambda: frozen_now)
