"""
Celery tasks for refund reconciliation.

Each run builds its own engine: asyncio.run gives every task a fresh event
loop and pooled async connections cannot cross loops.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from celery import shared_task
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.services.payment_service import PaymentReconciliationService
from application.ports.payment_gateway import PaymentGateway
from core.config import settings
from core.logging_config import get_logger
from domain.payment.exceptions import GatewayError
from infrastructure.database import create_engine
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from ..utils.base_task import BaseTask


logger = get_logger(__name__)


async def _with_service(fn, gateway: Optional[PaymentGateway] = None):
    engine = create_engine(settings.database.url)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    service = PaymentReconciliationService(
        gateway or get_payment_gateway(),
        lambda readonly=False: SQLAlchemyUnitOfWork(session_factory, readonly=readonly),
    )
    try:
        return await fn(service)
    finally:
        await service.aclose()
        await engine.dispose()


@shared_task(name="payments.sync_pending_refunds", bind=True, base=BaseTask)
def sync_pending_refunds(self, limit: int = 100) -> dict[str, int]:
    """Reconcile refunds the gateway has not settled yet."""
    stats = asyncio.run(_with_service(lambda service: service.sync_pending_refunds(limit=limit)))
    logger.info("refund_sync_task_finished", task_id=self.request.id, **stats)
    return stats


@shared_task(
    name="payments.refresh_refund",
    bind=True,
    base=BaseTask,
    autoretry_for=(GatewayError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def refresh_refund(self, refund_id: str) -> dict[str, Any]:
    """Re-fetch one refund from the gateway."""
    result = asyncio.run(_with_service(lambda service: service.get_refund_status(refund_id)))
    logger.info("refund_refreshed", refund_id=refund_id, status=result.current_status, drifted=result.drifted)
    return {"refund_id": refund_id, "status": result.current_status, "drifted": result.drifted}
