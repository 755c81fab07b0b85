# tests/test_pubsub.py

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from tasker.realtime.pubsub import LocalPubSub, SqlitePubSub


class Recorder:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)


@pytest.mark.asyncio
async def test_local_pubsub_delivers_to_every_subscriber() -> None:
    pubsub = LocalPubSub()
    a, b = Recorder(), Recorder()
    await pubsub.subscribe("tasks-updates", a)
    await pubsub.subscribe("tasks-updates", b)
    await pubsub.subscribe("other", Recorder())

    await pubsub.publish("tasks-updates", {"ownerId": "u1"})
    await pubsub.drain()

    assert a.messages == [{"ownerId": "u1"}]
    assert b.messages == [{"ownerId": "u1"}]

    await pubsub.unsubscribe("tasks-updates", a)
    await pubsub.publish("tasks-updates", {"ownerId": "u2"})
    await pubsub.close()
    assert a.messages == [{"ownerId": "u1"}]
    assert b.messages == [{"ownerId": "u1"}, {"ownerId": "u2"}]


@pytest.mark.asyncio
async def test_local_pubsub_isolates_failing_handler() -> None:
    pubsub = LocalPubSub()
    good = Recorder()

    async def bad(message: dict[str, Any]) -> None:
        raise RuntimeError("handler exploded")

    await pubsub.subscribe("t", bad)
    await pubsub.subscribe("t", good)
    await pubsub.publish("t", {"n": 1})
    await pubsub.drain()

    assert good.messages == [{"n": 1}]


async def _wait_for(recorder: Recorder, count: int) -> None:
    for _ in range(200):
        if len(recorder.messages) >= count:
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_sqlite_pubsub_crosses_instances_without_replay(tmp_path: Path) -> None:
    db = tmp_path / "pubsub.sqlite3"
    publisher = SqlitePubSub(db, poll_seconds=0.01)
    subscriber = SqlitePubSub(db, poll_seconds=0.01)
    seen = Recorder()

    # Published before anyone subscribed: never delivered.
    await publisher.publish("tasks-updates", {"ownerId": "early"})

    await subscriber.subscribe("tasks-updates", seen)
    await publisher.publish("tasks-updates", {"ownerId": "u1"})
    await publisher.publish("other", {"ownerId": "elsewhere"})
    await publisher.publish("tasks-updates", {"ownerId": "u2"})

    await _wait_for(seen, 2)
    await asyncio.sleep(0.05)
    assert seen.messages == [{"ownerId": "u1"}, {"ownerId": "u2"}]

    await subscriber.close()
    await publisher.close()


@pytest.mark.asyncio
async def test_sqlite_pubsub_poll_once_skips_seen_rows(tmp_path: Path) -> None:
    db = tmp_path / "pubsub.sqlite3"
    pubsub = SqlitePubSub(db, poll_seconds=60)
    seen = Recorder()
    await pubsub.subscribe("t", seen)
    # Let the background poller finish its first (empty) round.
    await asyncio.sleep(0.05)

    await SqlitePubSub(db).publish("t", {"n": 1})
    assert await pubsub.poll_once() == 1
    assert await pubsub.poll_once() == 0
    assert seen.messages == [{"n": 1}]
    await pubsub.close()


@pytest.mark.asyncio
async def test_sqlite_pubsub_unsubscribe_stops_delivery(tmp_path: Path) -> None:
    pubsub = SqlitePubSub(tmp_path / "pubsub.sqlite3", poll_seconds=60)
    seen = Recorder()
    await pubsub.subscribe("t", seen)
    await pubsub.unsubscribe("t", seen)

    await pubsub.publish("t", {"n": 1})
    assert await pubsub.poll_once() == 0
    assert seen.messages == []
    await pubsub.close()


@pytest.mark.asyncio
async def test_sqlite_poller_survives_unexpected_errors(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    pubsub = SqlitePubSub(tmp_path / "pubsub.sqlite3", poll_seconds=0.01)
    seen = Recorder()
    real_poll_once = pubsub.poll_once
    calls = 0

    async def flaky_poll_once() -> int:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("decoder blew up")
        return await real_poll_once()

    monkeypatch.setattr(pubsub, "poll_once", flaky_poll_once)
    await pubsub.subscribe("t", seen)
    await pubsub.publish("t", {"n": 1})

    await _wait_for(seen, 1)
    assert seen.messages == [{"n": 1}]
    assert "pubsub poll failed" in caplog.text
    await pubsub.close()
