"""Periodic jobs run by celery beat"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    # refunds settle at the bank days later; poll the ones still pending
    "payments-sync-pending-refunds": {
        "task": "payments.sync_pending_refunds",
        "schedule": float(settings.REFUND_SYNC_INTERVAL_SECONDS),
        "kwargs": {"limit": settings.REFUND_SYNC_BATCH_SIZE},
    },
}
