# src/tasker/core/errors.py

from __future__ import annotations

"""
Error taxonomy.

Only InvalidFormat (and TaskNotFound) reach the caller of a task mutation.
The others are raised by adapters and caught, logged and dropped by the
best-effort layers (scheduler, change bus, dispatch worker).
"""


class TaskerError(Exception):
    """Base class for all tasker errors."""


class InvalidFormat(TaskerError, ValueError):
    """A supplied timestamp string is not a parseable absolute timestamp."""

    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"Invalid date format for {field}: {value!r}")
        self.field = field
        self.value = value


class TaskNotFound(TaskerError, LookupError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class SchedulingFailure(TaskerError):
    """The delayed-job queue is unavailable or rejected an operation."""


class BroadcastFailure(TaskerError):
    """Publishing a change event (or delivering it to a connection) failed."""


class DispatchFailure(TaskerError):
    """The push provider did not accept a notification."""
