# src/tasker/cli/bootstrap.py

"""
Composition root.

- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations (SQLite stores, queue, pub/sub, push sender,
  socket gateway) into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import PubSub, PushSender
from ..core.state import AppState
from ..notifications.dispatch_worker import NotificationDispatchWorker
from ..notifications.job_queue import SqliteJobQueue
from ..notifications.push_sender import FcmPushSender, LoggingPushSender
from ..notifications.reminder_scheduler import ReminderJobScheduler
from ..realtime.change_bus import ChangeNotificationBus
from ..realtime.connections import LocalConnectionRegistry
from ..realtime.pubsub import LocalPubSub, SqlitePubSub
from ..realtime.ws_gateway import TaskUpdatesGateway
from ..tasks.task_service import TaskService
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.queue_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.pubsub_db_path.parent.mkdir(parents=True, exist_ok=True)


def build_push_sender(settings) -> PushSender:
    project_id = getattr(settings, "fcm_project_id", None)
    access_token = getattr(settings, "fcm_access_token", None)
    if project_id and access_token:
        return FcmPushSender(
            project_id=project_id,
            access_token=access_token,
            timeout_seconds=settings.fcm_timeout_seconds,
        )
    logger.warning("FCM is not configured; reminders will be logged instead of pushed.")
    return LoggingPushSender()


def build_pubsub(settings) -> PubSub:
    if settings.pubsub_backend == "local":
        return LocalPubSub()
    return SqlitePubSub(
        settings.pubsub_db_path,
        poll_seconds=settings.pubsub_poll_seconds,
        retention_seconds=settings.pubsub_retention_seconds,
    )


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    task_store = TaskStore(settings.tasks_db_path)
    job_queue = SqliteJobQueue(
        settings.queue_db_path,
        settings.notification_queue,
        max_attempts=settings.job_max_attempts,
        backoff_seconds=settings.job_backoff_seconds,
    )
    scheduler = ReminderJobScheduler(job_queue)
    push_sender = build_push_sender(settings)
    worker = NotificationDispatchWorker(
        job_queue,
        push_sender,
        interval_seconds=settings.worker_interval_seconds,
        batch_limit=settings.worker_batch_limit,
        concurrency=settings.worker_concurrency,
    )

    pubsub = build_pubsub(settings)
    connections = LocalConnectionRegistry()
    bus = ChangeNotificationBus(pubsub, task_store, connections, channel=settings.task_updates_channel)

    gateway = None
    if settings.ws_enabled:
        gateway = TaskUpdatesGateway(
            connections,
            task_store,
            host=settings.ws_host,
            port=settings.ws_port,
            event_name=settings.task_updates_channel,
        )

    return AppState(
        settings=settings,
        task_store=task_store,
        job_queue=job_queue,
        scheduler=scheduler,
        push_sender=push_sender,
        worker=worker,
        pubsub=pubsub,
        connections=connections,
        bus=bus,
        tasks=TaskService(task_store, scheduler, bus),
        gateway=gateway,
    )
