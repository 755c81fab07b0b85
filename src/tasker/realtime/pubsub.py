# src/tasker/realtime/pubsub.py

from __future__ import annotations

"""
Publish/subscribe channels.

- LocalPubSub: in-process fan-out, for a single server process and tests.
- SqlitePubSub: cross-process fan-out through a shared SQLite file. Publishers
  append rows; every subscribing process polls for rows newer than the last one
  it saw. A new subscriber starts at the current tail (no replay). Rows older
  than the retention window are pruned.

Delivery is best-effort and at-least-once; handlers must be idempotent.
"""

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..core.errors import BroadcastFailure
from ..core.ports import Message, MessageHandler

logger = logging.getLogger(__name__)


async def _call_handler(topic: str, handler: MessageHandler, message: Message) -> None:
    try:
        await handler(message)
    except Exception:
        logger.exception("Subscriber failed topic=%s", topic)


class LocalPubSub:
    def __init__(self) -> None:
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._pending: set[asyncio.Task[None]] = set()

    async def publish(self, topic: str, message: Message) -> None:
        # Handlers run as separate tasks: publishing never waits for subscribers.
        for handler in list(self._handlers.get(topic, ())):
            task = asyncio.create_task(_call_handler(topic, handler, dict(message)))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def subscribe(self, topic: str, handler: MessageHandler) -> None:
        self._handlers.setdefault(topic, []).append(handler)
        logger.info("Subscribed to %s channel", topic)

    async def unsubscribe(self, topic: str, handler: MessageHandler) -> None:
        handlers = self._handlers.get(topic, [])
        with contextlib.suppress(ValueError):
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(topic, None)

    async def drain(self) -> None:
        """Wait until every delivery started so far has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.drain()
        self._handlers.clear()


class SqlitePubSub:
    def __init__(
        self,
        db_path: str | Path,
        *,
        poll_seconds: float = 0.5,
        retention_seconds: float = 60.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._poll_s = max(0.01, float(poll_seconds))
        self._retention_s = max(1.0, float(retention_seconds))
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._last_seen: dict[str, int] = {}
        self._poller: asyncio.Task[None] | None = None
        self._ensure_schema()

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    topic TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_topic ON messages(topic, id)")
            conn.commit()
        finally:
            conn.close()

    def _insert_sync(self, topic: str, payload: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO messages(topic, payload, created_at) VALUES (?, ?, ?)",
                (topic, payload, time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    def _tail_id_sync(self, topic: str) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COALESCE(MAX(id), 0) FROM messages WHERE topic = ?", (topic,)).fetchone()
            return int(n)
        finally:
            conn.close()

    def _fetch_since_sync(self, topic: str, after_id: int) -> list[tuple[int, str]]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT id, payload FROM messages WHERE topic = ? AND id > ? ORDER BY id ASC",
                (topic, after_id),
            )
            return [(int(r["id"]), str(r["payload"])) for r in cur.fetchall()]
        finally:
            conn.close()

    def _prune_sync(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM messages WHERE created_at < ?", (time.time() - self._retention_s,))
            conn.commit()
        finally:
            conn.close()

    # ---- public API ----

    async def publish(self, topic: str, message: Message) -> None:
        try:
            payload = json.dumps(message, ensure_ascii=False)
            await asyncio.to_thread(self._insert_sync, topic, payload)
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise BroadcastFailure(f"publish to {topic} failed: {exc}") from exc

    async def subscribe(self, topic: str, handler: MessageHandler) -> None:
        if topic not in self._last_seen:
            self._last_seen[topic] = await asyncio.to_thread(self._tail_id_sync, topic)
        self._handlers.setdefault(topic, []).append(handler)
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self._poll_loop(), name="pubsub-poller")
        logger.info("Subscribed to %s channel", topic)

    async def unsubscribe(self, topic: str, handler: MessageHandler) -> None:
        handlers = self._handlers.get(topic, [])
        with contextlib.suppress(ValueError):
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(topic, None)
            self._last_seen.pop(topic, None)

    async def poll_once(self) -> int:
        """Deliver every new message to the local subscribers. Returns messages delivered."""
        delivered = 0
        for topic in list(self._handlers):
            rows = await asyncio.to_thread(self._fetch_since_sync, topic, self._last_seen.get(topic, 0))
            for row_id, raw in rows:
                self._last_seen[topic] = row_id
                try:
                    message: Any = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping malformed message id=%s topic=%s", row_id, topic)
                    continue
                if not isinstance(message, dict):
                    continue
                for handler in list(self._handlers.get(topic, ())):
                    await _call_handler(topic, handler, message)
                delivered += 1
        return delivered

    async def _poll_loop(self) -> None:
        last_prune = 0.0
        while True:
            try:
                await self.poll_once()
                if time.monotonic() - last_prune >= self._retention_s:
                    await asyncio.to_thread(self._prune_sync)
                    last_prune = time.monotonic()
            except Exception:
                logger.exception("pubsub poll failed db=%s", self._db_path)
            await asyncio.sleep(self._poll_s)

    async def close(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None:
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller
        self._handlers.clear()
        self._last_seen.clear()
