"""
Celery Tasks Module.

All tasks are registered with the Celery app.

Sub-modules:
- subscription_tasks: expiry sweep, stale payment reconciliation, webhook dedup pruning
"""
from __future__ import annotations

from .subscription_tasks import (
    expire_due,
    prune_events,
    reconcile_stale_pending_task,
)

__all__ = [
    "expire_due",
    "prune_events",
    "reconcile_stale_pending_task",
]
