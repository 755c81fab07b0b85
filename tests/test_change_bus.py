# tests/test_change_bus.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tasker.realtime.change_bus import ChangeNotificationBus
from tasker.realtime.connections import LocalConnectionRegistry
from tasker.realtime.pubsub import LocalPubSub
from tasker.tasks.task_models import TaskStatus
from tasker.tasks.task_store import TaskStore

from .fakes import FailingPubSub, FakeConnection

DUE = datetime(2030, 1, 10, 12, tzinfo=timezone.utc)


def _seed(store: TaskStore, owner_id: str, title: str) -> None:
    store.add_task(
        owner_id=owner_id,
        title=title,
        description="",
        due_at=DUE,
        reminder_at=DUE - timedelta(days=1),
        status=TaskStatus.PLANNED,
    )


@pytest.mark.asyncio
async def test_event_reaches_every_connection_of_owner(
    bus: ChangeNotificationBus,
    task_store: TaskStore,
    connections: LocalConnectionRegistry,
) -> None:
    _seed(task_store, "u1", "first")
    _seed(task_store, "u1", "second")
    _seed(task_store, "u2", "not yours")

    phone, laptop, stranger = FakeConnection(), FakeConnection(), FakeConnection()
    connections.join("u1", phone)
    connections.join("u1", laptop)
    connections.join("u2", stranger)

    assert await bus.on_event({"ownerId": "u1"}) == 2

    assert phone.events == laptop.events
    ((event, payload),) = phone.events
    assert event == "tasks-updates"
    assert [t["title"] for t in payload] == ["first", "second"]
    assert all(t["userId"] == "u1" for t in payload)
    assert stranger.events == []


@pytest.mark.asyncio
async def test_owner_without_connections_is_a_noop(bus: ChangeNotificationBus, task_store: TaskStore) -> None:
    _seed(task_store, "u1", "first")
    assert await bus.on_event({"ownerId": "u1"}) == 0


@pytest.mark.asyncio
async def test_malformed_event_is_ignored(bus: ChangeNotificationBus, connections: LocalConnectionRegistry) -> None:
    conn = FakeConnection()
    connections.join("u1", conn)
    assert await bus.on_event({}) == 0
    assert await bus.on_event({"ownerId": 42}) == 0
    assert conn.events == []


@pytest.mark.asyncio
async def test_broken_connection_is_dropped(
    bus: ChangeNotificationBus,
    task_store: TaskStore,
    connections: LocalConnectionRegistry,
) -> None:
    _seed(task_store, "u1", "first")
    ok, dead = FakeConnection(), FakeConnection(broken=True)
    connections.join("u1", ok)
    connections.join("u1", dead)

    assert await bus.on_event({"ownerId": "u1"}) == 1
    assert len(ok.events) == 1
    assert connections.connection_count("u1") == 1


@pytest.mark.asyncio
async def test_repeated_event_repeats_identical_broadcast(
    bus: ChangeNotificationBus,
    task_store: TaskStore,
    connections: LocalConnectionRegistry,
) -> None:
    _seed(task_store, "u1", "first")
    conn = FakeConnection()
    connections.join("u1", conn)

    await bus.on_event({"ownerId": "u1"})
    await bus.on_event({"ownerId": "u1"})
    assert len(conn.events) == 2
    assert conn.events[0] == conn.events[1]


@pytest.mark.asyncio
async def test_publish_goes_through_subscription(
    bus: ChangeNotificationBus,
    pubsub: LocalPubSub,
    task_store: TaskStore,
    connections: LocalConnectionRegistry,
) -> None:
    _seed(task_store, "u1", "first")
    conn = FakeConnection()
    connections.join("u1", conn)

    await bus.start()
    assert await bus.publish("u1") is True
    await pubsub.drain()
    assert len(conn.events) == 1

    await bus.stop()
    await bus.publish("u1")
    await pubsub.drain()
    assert len(conn.events) == 1


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed(
    task_store: TaskStore,
    connections: LocalConnectionRegistry,
    caplog: pytest.LogCaptureFixture,
) -> None:
    bus = ChangeNotificationBus(FailingPubSub(), task_store, connections)
    assert await bus.publish("u1") is False
    assert "Failed to publish task update" in caplog.text
