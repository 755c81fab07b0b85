# src/tasker/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole process.
- No secrets required at import time.
- Components receive values by injection; only the composition root reads this module.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "TASKER"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_optional(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    queue_db_path: Path
    pubsub_db_path: Path

    # ---- Queue / channel names ----
    notification_queue: str
    task_updates_channel: str

    # ---- Dispatch worker ----
    worker_interval_seconds: float
    worker_batch_limit: int
    worker_concurrency: int
    job_max_attempts: int
    job_backoff_seconds: float

    # ---- Pub/sub ----
    pubsub_backend: str
    pubsub_poll_seconds: float
    pubsub_retention_seconds: float

    # ---- WebSocket gateway ----
    ws_enabled: bool
    ws_host: str
    ws_port: int

    # ---- Push (FCM HTTP v1) ----
    fcm_project_id: str | None
    fcm_access_token: str | None
    fcm_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "tasker").strip() or "tasker"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tasker"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        queue_db_path = _env_path(_k("QUEUE_DB_PATH"), data_dir / "queue.sqlite3")
        pubsub_db_path = _env_path(_k("PUBSUB_DB_PATH"), data_dir / "pubsub.sqlite3")

        notification_queue = _env(_k("NOTIFICATION_QUEUE"), "tasks-notification-queue")
        task_updates_channel = _env(_k("TASK_UPDATES_CHANNEL"), "tasks-updates")

        pubsub_backend = _env(_k("PUBSUB_BACKEND"), "sqlite").strip().lower()
        if pubsub_backend not in {"sqlite", "local"}:
            pubsub_backend = "sqlite"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            queue_db_path=queue_db_path,
            pubsub_db_path=pubsub_db_path,
            notification_queue=notification_queue,
            task_updates_channel=task_updates_channel,
            worker_interval_seconds=_env_float(_k("WORKER_INTERVAL_SECONDS"), 1.0),
            worker_batch_limit=_env_int(_k("WORKER_BATCH_LIMIT"), 32),
            worker_concurrency=_env_int(_k("WORKER_CONCURRENCY"), 8),
            job_max_attempts=_env_int(_k("JOB_MAX_ATTEMPTS"), 3),
            job_backoff_seconds=_env_float(_k("JOB_BACKOFF_SECONDS"), 5.0),
            pubsub_backend=pubsub_backend,
            pubsub_poll_seconds=_env_float(_k("PUBSUB_POLL_SECONDS"), 0.5),
            pubsub_retention_seconds=_env_float(_k("PUBSUB_RETENTION_SECONDS"), 60.0),
            ws_enabled=_env_bool(_k("WS_ENABLED"), True),
            ws_host=_env(_k("WS_HOST"), "127.0.0.1"),
            ws_port=_env_int(_k("WS_PORT"), 8765),
            fcm_project_id=_env_optional(_k("FCM_PROJECT_ID")),
            fcm_access_token=_env_optional(_k("FCM_ACCESS_TOKEN")),
            fcm_timeout_seconds=_env_float(_k("FCM_TIMEOUT_SECONDS"), 10.0),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
