"""
Reminder notifications.

Components:
- job_keys.py: (task, device) job identity
- job_queue.py: durable SQLite delayed-job queue
- reminder_scheduler.py: schedule / reschedule / cancel per-device reminders
- push_sender.py: FCM sender and a logging fallback
- dispatch_worker.py: polling worker that fires due reminders
"""
