# src/tasker/realtime/change_bus.py

from __future__ import annotations

"""
Change notification bus.

publish(owner_id) announces "the task list of this owner changed". Every
subscribed process re-reads that owner's tasks from the store and pushes the
fresh list to its own live connections of the owner. The event carries no task
data, so each receiver broadcasts an independently read snapshot; repeated
deliveries only repeat an identical broadcast.
"""

import asyncio
import logging

from ..core.ports import ConnectionRegistry, Message, PubSub, TaskRepo
from ..tasks.task_models import task_to_dict

logger = logging.getLogger(__name__)

TASK_UPDATES_CHANNEL = "tasks-updates"


class ChangeNotificationBus:
    def __init__(
        self,
        pubsub: PubSub,
        task_repo: TaskRepo,
        connections: ConnectionRegistry,
        *,
        channel: str = TASK_UPDATES_CHANNEL,
        event_name: str | None = None,
    ) -> None:
        self._pubsub = pubsub
        self._tasks = task_repo
        self._connections = connections
        self._channel = channel
        self._event_name = event_name or channel
        self._subscribed = False

    @property
    def channel(self) -> str:
        return self._channel

    async def publish(self, owner_id: str) -> bool:
        """Announce a change for owner_id. Failures are logged, never raised."""
        try:
            await self._pubsub.publish(self._channel, {"ownerId": owner_id})
            return True
        except Exception:
            logger.exception("Failed to publish task update owner=%s", owner_id)
            return False

    async def on_event(self, message: Message) -> int:
        """Re-read the owner's tasks and broadcast them to the owner's local connections."""
        owner_id = message.get("ownerId")
        if not owner_id or not isinstance(owner_id, str):
            logger.warning("Ignoring task update without ownerId: %r", message)
            return 0

        # Every process sees every event; only owners connected here need a fetch.
        if not self._connections.has_connections(owner_id):
            return 0

        try:
            tasks = await asyncio.to_thread(self._tasks.get_tasks_by_owner, owner_id)
            payload = [task_to_dict(t) for t in tasks]
            delivered = await self._connections.broadcast_to_user(owner_id, self._event_name, payload)
        except Exception:
            logger.exception("Failed to fan out task update owner=%s", owner_id)
            return 0

        logger.debug("Task update fanned out owner=%s tasks=%s connections=%s", owner_id, len(payload), delivered)
        return delivered

    async def start(self) -> None:
        if self._subscribed:
            return
        await self._pubsub.subscribe(self._channel, self.on_event)
        self._subscribed = True

    async def stop(self) -> None:
        if not self._subscribed:
            return
        try:
            await self._pubsub.unsubscribe(self._channel, self.on_event)
        finally:
            self._subscribed = False
