# backend/parq/tasks/__init__.py
"""
Background work for the Parq booking engine.

- Celery notification delivery (``notification_tasks``)
- In-process booking reconciliation (``reconciliation``)
"""
