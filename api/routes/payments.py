"""
Payments API routes.

Keep this thin: validation lives in the DTOs, orchestration in
PaymentReconciliationService, gateway details in infrastructure.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from application.dtos.payments import (
    CreateProviderOrder,
    PaymentFailureRequest,
    RefundCreate,
    VerifyPaymentRequest,
    VerifyPaymentResult,
)
from application.services.payment_service import PaymentReconciliationService
from api.dependencies import get_current_user_id, get_optional_user_id, get_payment_service
from core.response import success_response
from core.logging_config import get_logger
from domain.payment.exceptions import OrderAccessDeniedException


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _acting_user(order_id: str, body_user_id: str, session_user_id: Optional[str]) -> str:
    # The body may not claim a different user than the session
    if session_user_id is not None and session_user_id != body_user_id:
        raise OrderAccessDeniedException(order_id)
    return body_user_id


@router.post("/create-order", summary="Create gateway order")
async def create_order(
    payload: CreateProviderOrder,
    user_id: str = Depends(get_current_user_id),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    provider_order = await service.create_provider_order(payload, user_id=user_id)
    return success_response(data=provider_order.model_dump(mode="json"), message="Order created")


@router.post("/verify", summary="Verify checkout callback")
async def verify_payment(
    payload: VerifyPaymentRequest,
    session_user_id: Optional[str] = Depends(get_optional_user_id),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    user_id = _acting_user(payload.order_id, payload.user_id, session_user_id)
    order = await service.verify_payment(
        provider_order_id=payload.razorpay_order_id,
        provider_payment_id=payload.razorpay_payment_id,
        provider_signature=payload.razorpay_signature,
        order_id=payload.order_id,
        user_id=user_id,
    )
    result = VerifyPaymentResult(success=True, order=order)
    return success_response(data=result.model_dump(mode="json"), message="Payment verified")


@router.post("/failure", summary="Record failed payment attempt")
async def payment_failure(
    payload: PaymentFailureRequest,
    session_user_id: Optional[str] = Depends(get_optional_user_id),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    user_id = _acting_user(payload.order_id, payload.user_id, session_user_id)
    order = await service.record_payment_failure(
        payload.order_id,
        user_id,
        payload.reason,
        provider_payment_id=payload.razorpay_payment_id,
    )
    return success_response(data=order.model_dump(mode="json"), message="Payment failure recorded")


@router.post("/refund", summary="Refund a captured payment")
async def refund_payment(
    payload: RefundCreate,
    actor: str = Depends(get_current_user_id),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    refund = await service.initiate_refund(
        payload.payment_id,
        amount=payload.amount,
        reason=payload.reason,
        actor=actor,
    )
    return success_response(data=refund.model_dump(mode="json"), message="Refund initiated")


@router.get("/refunds/{refund_id}", summary="Refund status")
async def refund_status(
    refund_id: str,
    _: str = Depends(get_current_user_id),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    result = await service.get_refund_status(refund_id)
    return success_response(data=result.model_dump(mode="json"))


@router.get("/orders/{order_id}/transactions", summary="Transactions of an order")
async def order_transactions(
    order_id: str,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    items = await service.list_order_transactions(order_id, user_id, skip=skip, limit=limit)
    return success_response(data=[t.model_dump(mode="json") for t in items])


@router.post("/webhooks/razorpay", summary="Gateway webhook")
async def razorpay_webhook(
    request: Request,
    service: PaymentReconciliationService = Depends(get_payment_service),
):
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    result = await service.handle_webhook(headers, raw_body)
    # 2xx acknowledges the delivery; anything else makes the gateway redeliver
    return success_response(data=result, message="Webhook received")
