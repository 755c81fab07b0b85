# src/tasker/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..notifications.dispatch_worker import NotificationDispatchWorker
from ..notifications.job_queue import SqliteJobQueue
from ..notifications.reminder_scheduler import ReminderJobScheduler
from ..realtime.change_bus import ChangeNotificationBus
from ..realtime.connections import LocalConnectionRegistry
from ..realtime.ws_gateway import TaskUpdatesGateway
from ..tasks.task_service import TaskService
from ..tasks.task_store import TaskStore
from .ports import PubSub, PushSender


@dataclass
class AppState:
    """
    Explicitly constructed services of one process.

    Built once by the composition root (cli.bootstrap); nothing in the core
    reaches for module-level singletons.
    """

    settings: Any

    task_store: TaskStore
    job_queue: SqliteJobQueue
    scheduler: ReminderJobScheduler
    push_sender: PushSender
    worker: NotificationDispatchWorker

    pubsub: PubSub
    connections: LocalConnectionRegistry
    bus: ChangeNotificationBus

    tasks: TaskService
    gateway: TaskUpdatesGateway | None = None
