"""Celery application for refund reconciliation"""
from __future__ import annotations

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger, configure_logging
from .beat import CELERY_BEAT_SCHEDULE


TASK_PACKAGES = ("infrastructure.tasks.tasks",)
PAYMENTS_QUEUE = "payments"


def _build_app() -> Celery:
    app = Celery("storefront_payments")
    app.conf.update(
        broker_url=settings.celery.broker_url,
        result_backend=settings.celery.result_backend,
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        # a worker lost mid-sync hands the job back
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        # a sync run must finish before the next beat tick
        task_soft_time_limit=max(settings.REFUND_SYNC_INTERVAL_SECONDS - 60, 60),
        task_time_limit=settings.REFUND_SYNC_INTERVAL_SECONDS,
        result_expires=3600,
        task_default_queue=PAYMENTS_QUEUE,
        task_queues=(Queue(PAYMENTS_QUEUE),),
        task_routes={"payments.*": {"queue": PAYMENTS_QUEUE}},
        beat_schedule=CELERY_BEAT_SCHEDULE,
        imports=TASK_PACKAGES,
    )
    if settings.ENVIRONMENT.lower() in {"development", "dev", "test", "testing"}:
        app.conf.task_always_eager = True
        app.conf.task_eager_propagates = True
    app.autodiscover_tasks(packages=TASK_PACKAGES)
    return app


celery_app = _build_app()

# Workers do not import main.py
configure_logging()
logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        eager=bool(sender.conf.task_always_eager),
        refund_sync_interval=settings.REFUND_SYNC_INTERVAL_SECONDS,
    )
