# src/tasker/notifications/job_keys.py

from __future__ import annotations

from typing import NamedTuple

# Task ids must never contain this token; it is not validated here.
JOB_KEY_SEPARATOR = ":notification:"


class JobKey(NamedTuple):
    """Structured identity of a notification job: one per (task, device)."""

    task_id: str
    device_id: str

    def to_job_id(self) -> str:
        return f"{self.task_id}{JOB_KEY_SEPARATOR}{self.device_id}"

    @classmethod
    def parse(cls, job_id: str) -> JobKey:
        task_id, sep, device_id = job_id.partition(JOB_KEY_SEPARATOR)
        if not sep:
            raise ValueError(f"Not a notification job id: {job_id!r}")
        return cls(task_id=task_id, device_id=device_id)


def make_key(task_id: str, device_id: str) -> str:
    return JobKey(task_id, device_id).to_job_id()


def task_id_from_key(job_id: str) -> str:
    """Everything before the first separator (the whole id if there is none)."""
    return job_id.partition(JOB_KEY_SEPARATOR)[0]
