"""Reminder scheduling and live task-list updates for the tasker server."""

__version__ = "0.1.0"
