# tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "in progress" keeps the space used by existing mobile clients;
      "in-progress" and "in_progress" are accepted on input.
    """

    PLANNED = "planned"
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, raw: str | TaskStatus | None) -> TaskStatus:
        if isinstance(raw, TaskStatus):
            return raw
        if raw is None:
            raise ValueError("status is required")
        norm = raw.strip().lower().replace("-", " ").replace("_", " ")
        return cls(norm)

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PLANNED
        try:
            return cls.parse(raw)
        except ValueError:
            return cls.PLANNED


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    owner_id: str
    title: str
    description: str
    due_at: datetime
    reminder_at: datetime
    status: TaskStatus
    created_at: float
    updated_at: float


def task_to_dict(task: Task) -> dict[str, Any]:
    """JSON-friendly view of a task, as broadcast to live connections."""
    return {
        "id": task.id,
        "userId": task.owner_id,
        "title": task.title,
        "description": task.description,
        "dueDate": task.due_at.isoformat(),
        "reminderTime": task.reminder_at.isoformat(),
        "status": task.status.value,
        "createdAt": task.created_at,
        "updatedAt": task.updated_at,
    }
