"""Background jobs.

    celery -A infrastructure.tasks worker -Q payments
    celery -A infrastructure.tasks beat
"""
from .config.celery import celery_app

__all__ = ["celery_app"]
