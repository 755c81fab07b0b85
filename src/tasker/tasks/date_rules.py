# src/tasker/tasks/date_rules.py

from __future__ import annotations

"""
Due date / reminder time normalization.

Turns the raw (dueDate?, reminderTime?) strings of a task mutation into a
consistent pair of UTC instants:

- due date defaults to now + 2 days and is never earlier than now + 2 minutes
- reminder defaults to 24h before the due date, or to half of the remaining
  time (whole minutes) when 24h before is already in the past
- a supplied reminder not in the future, or at/after the due date, is replaced by the default

Only unparseable strings are rejected; everything else is clamped.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from ..core.errors import InvalidFormat

MIN_DUE_LEAD = timedelta(minutes=2)
DEFAULT_DUE_IN = timedelta(days=2)
PREFERRED_REMINDER_LEAD = timedelta(hours=24)


class NormalizedDates(NamedTuple):
    due_at: datetime
    reminder_at: datetime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: str, *, field: str = "timestamp") -> datetime:
    """
    Parse an absolute ISO-8601 timestamp ("2025-02-05T12:00:00Z", "...+02:00")
    into an aware UTC datetime.

    Date-only strings, a space instead of "T", and values without an offset are rejected.
    """
    try:
        text = raw.strip()
        if len(text) < 11 or text[10] not in "Tt":
            raise ValueError(text)
        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            raise ValueError(text)
        # Offsets can push the UTC value past year 1 or 9999.
        return dt.astimezone(timezone.utc)
    except (TypeError, ValueError, AttributeError, OverflowError):
        raise InvalidFormat(field, str(raw)) from None


def default_reminder(due_at: datetime, now: datetime) -> datetime:
    preferred = due_at - PREFERRED_REMINDER_LEAD
    if preferred > now:
        return preferred
    minutes_until_due = (due_at - now).total_seconds() / 60.0
    return now + timedelta(minutes=math.floor(minutes_until_due / 2))


def normalize_dates(
    due_raw: str | None = None,
    reminder_raw: str | None = None,
    *,
    now: datetime | None = None,
) -> NormalizedDates:
    """Normalize a (due, reminder) pair. Raises InvalidFormat for unparseable input."""
    # Both strings are validated before any clamping happens.
    parsed_due = parse_timestamp(due_raw, field="dueDate") if due_raw and due_raw.strip() else None
    parsed_reminder = (
        parse_timestamp(reminder_raw, field="reminderTime") if reminder_raw and reminder_raw.strip() else None
    )

    now = (now or utc_now()).astimezone(timezone.utc)
    min_due = now + MIN_DUE_LEAD

    if parsed_due is None:
        due_at = now + DEFAULT_DUE_IN
    else:
        due_at = max(parsed_due, min_due)

    # A reminder at exactly "now" can no longer fire ahead of time: treated as past.
    if parsed_reminder is None or parsed_reminder <= now or parsed_reminder >= due_at:
        reminder_at = default_reminder(due_at, now)
    else:
        reminder_at = parsed_reminder

    return NormalizedDates(due_at=due_at, reminder_at=reminder_at)
