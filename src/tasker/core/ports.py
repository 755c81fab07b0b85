# src/tasker/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scheduling / change-propagation core depends on Protocols instead of
concrete implementations. This keeps the queue, the pub/sub channel, the push
provider and the socket layer swappable and makes testing easier.
"""

from typing import Any, Awaitable, Callable, Protocol

Message = dict[str, Any]
MessageHandler = Callable[[Message], Awaitable[None]]


class TaskRepo(Protocol):
    """Read side of the task store, as used by the change bus."""

    def get_tasks_by_owner(self, owner_id: str, limit: int = 100) -> list[Any]: ...


class JobQueue(Protocol):
    """
    Durable delayed-job queue, one namespace per instance.

    add() overwrites a job with the same id. Workers pull due jobs with
    claim_due() and settle them with complete() or fail(); fail() owns the
    retry/backoff policy.
    """

    name: str

    def add(self, job_id: str, payload: dict[str, Any], delay_ms: int) -> Awaitable[None]: ...
    def list_jobs(self) -> Awaitable[list[Any]]: ...
    def remove(self, job_id: str) -> Awaitable[bool]: ...

    def claim_due(self, *, now_ts: float | None = None, limit: int = 32) -> Awaitable[list[Any]]: ...
    def complete(self, job_id: str) -> Awaitable[None]: ...
    def fail(self, job_id: str, error: str, *, now_ts: float | None = None) -> Awaitable[bool]: ...


class PubSub(Protocol):
    """Best-effort, at-least-once broadcast channel. No ordering across publishers."""

    def publish(self, topic: str, message: Message) -> Awaitable[None]: ...
    def subscribe(self, topic: str, handler: MessageHandler) -> Awaitable[None]: ...
    def unsubscribe(self, topic: str, handler: MessageHandler) -> Awaitable[None]: ...
    def close(self) -> Awaitable[None]: ...


class PushSender(Protocol):
    """Fire-and-forget push provider. Returns the provider receipt (message id)."""

    def send(self, *, token: str, title: str, body: str) -> Awaitable[str]: ...


class Connection(Protocol):
    """One live client connection (socket)."""

    def send_event(self, event: str, payload: Any) -> Awaitable[None]: ...


class ConnectionRegistry(Protocol):
    """Room-style registry of live connections keyed by user id."""

    def has_connections(self, user_id: str) -> bool: ...
    def broadcast_to_user(self, user_id: str, event: str, payload: Any) -> Awaitable[int]: ...
