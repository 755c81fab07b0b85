# src/tasker/tasks/task_service.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from ..core.errors import TaskNotFound
from ..notifications.reminder_scheduler import ReminderJobScheduler, delay_ms_until
from ..realtime.change_bus import ChangeNotificationBus
from .date_rules import normalize_dates, utc_now
from .task_models import Task, TaskStatus
from .task_store import TaskStore

logger = logging.getLogger(__name__)


class TaskService:
    """
    Task mutations with their side channels.

    Each mutation runs: normalize dates -> persist -> (re)schedule or cancel the
    per-device reminders -> announce the change to the owner's other devices.

    Only InvalidFormat (bad timestamps, raised before anything is written) and
    TaskNotFound reach the caller. Reminder and broadcast failures are logged by
    the scheduler / bus and never undo the committed write.
    """

    def __init__(
        self,
        store: TaskStore,
        scheduler: ReminderJobScheduler,
        bus: ChangeNotificationBus,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._bus = bus
        self._clock = clock

    async def list_tasks(self, owner_id: str) -> list[Task]:
        return await asyncio.to_thread(self._store.get_tasks_by_owner, owner_id)

    async def register_device_token(self, owner_id: str, token: str) -> bool:
        added = await asyncio.to_thread(self._store.add_device_token, owner_id, token)
        if added:
            logger.info("Device token registered owner=%s", owner_id)
        return added

    async def unregister_device_token(self, owner_id: str, token: str) -> bool:
        """Forget a push token and drop the reminders still queued for it."""
        removed = await asyncio.to_thread(self._store.remove_device_token, owner_id, token)
        if removed:
            await self._scheduler.cancel_for_device(owner_id, token)
            logger.info("Device token removed owner=%s", owner_id)
        return removed

    async def create_task(
        self,
        owner_id: str,
        *,
        title: str,
        description: str | None = None,
        due_date: str | None = None,
        reminder_time: str | None = None,
        status: str | TaskStatus = TaskStatus.PLANNED,
    ) -> Task:
        now = self._clock()
        dates = normalize_dates(due_date, reminder_time, now=now)
        task_status = TaskStatus.parse(status)

        task = await asyncio.to_thread(
            lambda: self._store.add_task(
                owner_id=owner_id,
                title=title,
                description=description,
                due_at=dates.due_at,
                reminder_at=dates.reminder_at,
                status=task_status,
            )
        )
        logger.info("Task created id=%s owner=%s due_at=%s reminder_at=%s", task.id, owner_id, task.due_at, task.reminder_at)

        if task.status != TaskStatus.COMPLETED:
            tokens = await asyncio.to_thread(self._store.list_device_tokens, owner_id)
            delay_ms = delay_ms_until(task.reminder_at, now)
            for token in tokens:
                await self._scheduler.schedule(task.id, owner_id, token, task.title, task.description, delay_ms)

        await self._bus.publish(owner_id)
        return task

    async def update_task(
        self,
        owner_id: str,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        due_date: str | None = None,
        reminder_time: str | None = None,
        status: str | TaskStatus | None = None,
    ) -> Task:
        now = self._clock()
        existing = await asyncio.to_thread(self._store.get_task, task_id, owner_id)
        if existing is None:
            raise TaskNotFound(task_id)

        due_given = bool(due_date and due_date.strip())
        reminder_given = bool(reminder_time and reminder_time.strip())

        due_at = reminder_at = None
        if due_given or reminder_given:
            # Missing sides fall back to the stored values; the stored due date is
            # only used to validate the reminder and is never rewritten here.
            dates = normalize_dates(
                due_date if due_given else existing.due_at.isoformat(),
                reminder_time if reminder_given else existing.reminder_at.isoformat(),
                now=now,
            )
            if due_given:
                due_at = dates.due_at
            reminder_at = dates.reminder_at

        task_status = TaskStatus.parse(status) if status is not None else None

        updated = await asyncio.to_thread(
            lambda: self._store.update_task_fields(
                task_id,
                owner_id,
                title=title,
                description=description,
                due_at=due_at,
                reminder_at=reminder_at,
                status=task_status,
            )
        )
        if updated is None:
            raise TaskNotFound(task_id)
        logger.info("Task updated id=%s owner=%s", task_id, owner_id)

        await self._sync_reminders(updated, now)
        await self._bus.publish(owner_id)
        return updated

    async def delete_task(self, owner_id: str, task_id: str) -> None:
        deleted = await asyncio.to_thread(self._store.delete_task, task_id, owner_id)
        if not deleted:
            raise TaskNotFound(task_id)
        logger.info("Task deleted id=%s owner=%s", task_id, owner_id)

        await self._scheduler.cancel_all_for_task(task_id)
        await self._bus.publish(owner_id)

    async def _sync_reminders(self, task: Task, now: datetime) -> None:
        """Replace the task's reminders on every device, or drop them if none applies."""
        if task.status == TaskStatus.COMPLETED or task.reminder_at <= now:
            await self._scheduler.cancel_all_for_task(task.id)
            return

        tokens = await asyncio.to_thread(self._store.list_device_tokens, task.owner_id)
        if not tokens:
            await self._scheduler.cancel_all_for_task(task.id)
            return

        await self._scheduler.replace_for_devices(
            task.id,
            task.owner_id,
            tokens,
            task.title,
            task.description,
            delay_ms_until(task.reminder_at, now),
        )
