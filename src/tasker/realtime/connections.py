# src/tasker/realtime/connections.py

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..core.ports import Connection

logger = logging.getLogger(__name__)


class LocalConnectionRegistry:
    """
    Live connections of this process, grouped in one room per user id.

    A connection whose send fails is dropped from its room; the socket layer is
    expected to notice the disconnect on its own as well.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[Connection]] = {}

    def join(self, user_id: str, conn: Connection) -> None:
        self._rooms.setdefault(user_id, set()).add(conn)
        logger.debug("Connection joined room=%s size=%s", user_id, len(self._rooms[user_id]))

    def leave(self, user_id: str, conn: Connection) -> None:
        room = self._rooms.get(user_id)
        if room is None:
            return
        room.discard(conn)
        if not room:
            del self._rooms[user_id]
        logger.debug("Connection left room=%s", user_id)

    def has_connections(self, user_id: str) -> bool:
        return bool(self._rooms.get(user_id))

    def connection_count(self, user_id: str | None = None) -> int:
        if user_id is not None:
            return len(self._rooms.get(user_id, ()))
        return sum(len(room) for room in self._rooms.values())

    async def broadcast_to_user(self, user_id: str, event: str, payload: Any) -> int:
        """Send one event to every connection of the user. Returns how many got it."""
        conns = list(self._rooms.get(user_id, ()))
        if not conns:
            return 0

        results = await asyncio.gather(
            *(c.send_event(event, payload) for c in conns),
            return_exceptions=True,
        )

        delivered = 0
        for conn, res in zip(conns, results):
            if isinstance(res, BaseException):
                logger.warning("Dropping connection room=%s after send error: %s", user_id, res)
                self.leave(user_id, conn)
            else:
                delivered += 1
        return delivered

    async def close_all(self) -> None:
        conns = [(uid, c) for uid, room in self._rooms.items() for c in room]
        self._rooms.clear()
        for uid, conn in conns:
            close = getattr(conn, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:
                logger.debug("Closing connection of %s failed", uid, exc_info=True)
