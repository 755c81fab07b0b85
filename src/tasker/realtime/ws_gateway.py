# src/tasker/realtime/ws_gateway.py

"""
WebSocket gateway for live task-list updates.

Clients connect to ws://host:port/?user_id=<id>, are joined to that user's
room in the connection registry, and immediately receive the current task list.
Later changes arrive through the change bus as

    {"event": "tasks-updates", "data": [ ...tasks... ]}

Authentication happens in front of this endpoint and is not handled here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import parse_qs, urlsplit

import websockets
from websockets.asyncio.server import ServerConnection

from ..core.ports import TaskRepo
from ..tasks.task_models import task_to_dict
from .connections import LocalConnectionRegistry

logger = logging.getLogger(__name__)


class SocketConnection:
    """Adapts a websockets connection to the registry's Connection port."""

    def __init__(self, ws: ServerConnection) -> None:
        self._ws = ws

    async def send_event(self, event: str, payload: Any) -> None:
        await self._ws.send(json.dumps({"event": event, "data": payload}, ensure_ascii=False))

    async def close(self) -> None:
        await self._ws.close()


def user_id_from_path(path: str) -> str | None:
    query = parse_qs(urlsplit(path).query)
    values = query.get("user_id") or query.get("userId") or []
    user_id = (values[0] if values else "").strip()
    return user_id or None


class TaskUpdatesGateway:
    def __init__(
        self,
        connections: LocalConnectionRegistry,
        task_repo: TaskRepo,
        *,
        host: str = "127.0.0.1",
        port: int = 8765,
        event_name: str = "tasks-updates",
    ) -> None:
        self._connections = connections
        self._tasks = task_repo
        self._host = host
        self._port = port
        self._event_name = event_name
        self._server = None

    @property
    def port(self) -> int:
        """Bound port (differs from the configured one when that was 0)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    async def start(self) -> None:
        self._server = await websockets.serve(
            self._handler,
            self._host,
            self._port,
            max_size=2**16,
        )
        logger.info("WebSocket gateway listening on ws://%s:%s", self._host, self._port)

    async def shutdown(self) -> None:
        await self._connections.close_all()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("WebSocket gateway stopped")

    async def _handler(self, websocket: ServerConnection) -> None:
        path = websocket.request.path if websocket.request is not None else ""
        user_id = user_id_from_path(path)
        if user_id is None:
            await websocket.close(code=1008, reason="user_id is required")
            return

        conn = SocketConnection(websocket)
        self._connections.join(user_id, conn)
        logger.debug("client connected user=%s remote=%s", user_id, websocket.remote_address)

        try:
            tasks = await asyncio.to_thread(self._tasks.get_tasks_by_owner, user_id)
            await conn.send_event(self._event_name, [task_to_dict(t) for t in tasks])

            # Inbound frames carry nothing we act on; keep reading until the client leaves.
            async for _ in websocket:
                pass
        except websockets.ConnectionClosed:
            pass
        finally:
            self._connections.leave(user_id, conn)
            logger.debug("client disconnected user=%s", user_id)
