"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus)
- task_store.py: SQLite-backed storage of tasks and device tokens
- date_rules.py: due date / reminder normalization
- task_service.py: task mutations wired to reminders and change events
"""
