# tests/test_bootstrap.py

from __future__ import annotations

from types import SimpleNamespace

import pytest

from tasker.cli.bootstrap import build_pubsub, build_push_sender, create_initial_state
from tasker.cli.main import _shutdown
from tasker.config import Settings
from tasker.notifications.push_sender import FcmPushSender, LoggingPushSender
from tasker.realtime.pubsub import LocalPubSub, SqlitePubSub


def test_create_initial_state_wires_components(settings: SimpleNamespace) -> None:
    state = create_initial_state(settings=settings)

    assert state.settings is settings
    assert state.job_queue.name == "tasks-notification-queue"
    assert state.bus.channel == "tasks-updates"
    assert isinstance(state.pubsub, LocalPubSub)
    assert isinstance(state.push_sender, LoggingPushSender)
    assert state.gateway is None
    assert settings.tasks_db_path.exists()


def test_push_sender_choice(settings: SimpleNamespace) -> None:
    assert isinstance(build_push_sender(settings), LoggingPushSender)

    settings.fcm_project_id = "p1"
    settings.fcm_access_token = "token"
    assert isinstance(build_push_sender(settings), FcmPushSender)


def test_pubsub_choice(settings: SimpleNamespace) -> None:
    assert isinstance(build_pubsub(settings), LocalPubSub)
    settings.pubsub_backend = "sqlite"
    assert isinstance(build_pubsub(settings), SqlitePubSub)


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("TASKER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TASKER_WORKER_BATCH_LIMIT", "not-a-number")
    monkeypatch.setenv("TASKER_WS_ENABLED", "no")
    monkeypatch.setenv("TASKER_PUBSUB_BACKEND", "redis")
    monkeypatch.setenv("TASKER_FCM_PROJECT_ID", "  ")

    s = Settings.from_env()
    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
    assert s.worker_batch_limit == 32
    assert s.ws_enabled is False
    assert s.pubsub_backend == "sqlite"
    assert s.fcm_project_id is None
    assert s.notification_queue == "tasks-notification-queue"


@pytest.mark.asyncio
async def test_full_cycle_and_shutdown(settings: SimpleNamespace) -> None:
    state = create_initial_state(settings=settings)
    await state.worker.start()
    await state.bus.start()

    await state.tasks.register_device_token("u1", "tok")
    task = await state.tasks.create_task("u1", title="Wired")
    assert len(await state.scheduler.jobs_for_task(task.id)) == 1

    await _shutdown(state)
    assert not state.worker.running
