"""
In-process gateway for development and tests.

Behaves like the live adapter (same signature scheme, same webhook envelope)
without any network IO. Payments exist once `capture_payment` records them,
which also returns the checkout signature. Refunds settle immediately unless
created with `settle_refunds=False`.
"""
from __future__ import annotations

import secrets
import time
from decimal import Decimal
from typing import Any, Optional

from application.dtos.payments import (
    CreateProviderOrder,
    ProviderOrder,
    ProviderPayment,
    ProviderRefundRequest,
    ProviderRefund,
    WebhookEvent,
)
from core.settings import payment_settings
from domain.payment.exceptions import GatewayError, InvalidSignatureError
from domain.payment.money import from_minor_units, to_minor_units
from infrastructure.external.payments import signature
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.razorpay_client import SIGNATURE_HEADER, build_webhook_event

DEFAULT_KEY_SECRET = "simulated_key_secret"
DEFAULT_WEBHOOK_SECRET = "simulated_webhook_secret"


class SimulatedGateway(BasePaymentClient):
    provider = "razorpay"

    def __init__(
        self,
        *,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        settle_refunds: bool = True,
    ):
        super().__init__()
        cfg = payment_settings.razorpay
        self.key_secret = key_secret or cfg.key_secret or DEFAULT_KEY_SECRET
        self.webhook_secret = webhook_secret or cfg.webhook_secret or DEFAULT_WEBHOOK_SECRET
        self.settle_refunds = settle_refunds
        self.orders: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.refunds: dict[str, dict[str, Any]] = {}

    async def create_order(self, req: CreateProviderOrder) -> ProviderOrder:  # type: ignore[override]
        order_id = f"order_{int(time.time() * 1000)}{secrets.token_hex(3)}"
        raw = {
            "id": order_id,
            "entity": "order",
            "amount": to_minor_units(req.amount, req.currency),
            "currency": req.currency,
            "receipt": req.receipt,
            "status": "created",
            "notes": req.notes or {},
            "created_at": int(time.time()),
        }
        self.orders[order_id] = raw
        self._log("simulated_order_created", provider_order_id=order_id)
        return ProviderOrder(
            id=order_id,
            amount=Decimal(req.amount),
            currency=req.currency,
            receipt=req.receipt,
            status="created",
            raw=raw,
        )

    def capture_payment(
        self,
        provider_order_id: str,
        provider_payment_id: str,
        amount: Decimal | str,
        currency: str = "INR",
        status: str = "captured",
    ) -> str:
        """Record a payment as the checkout would; returns its signature."""
        self.payments[provider_payment_id] = {
            "id": provider_payment_id,
            "entity": "payment",
            "order_id": provider_order_id,
            "amount": to_minor_units(Decimal(str(amount)), currency),
            "currency": currency,
            "status": status,
            "created_at": int(time.time()),
        }
        return self.sign_payment(provider_order_id, provider_payment_id)

    async def fetch_payment(self, provider_payment_id: str) -> ProviderPayment:  # type: ignore[override]
        raw = self.payments.get(provider_payment_id)
        if raw is None:
            raise GatewayError(
                "Payment gateway rejected the request",
                provider=self.provider,
                provider_code="BAD_REQUEST_ERROR",
                details={"retryable": False, "provider_payment_id": provider_payment_id},
            )
        return ProviderPayment(
            id=raw["id"],
            order_id=raw["order_id"],
            amount=from_minor_units(raw["amount"], raw["currency"]),
            currency=raw["currency"],
            status=self._map_status(raw["status"]),
            raw=dict(raw),
        )

    async def refund_payment(self, req: ProviderRefundRequest) -> ProviderRefund:  # type: ignore[override]
        refund_id = f"rfnd_{secrets.token_hex(7)}"
        raw = {
            "id": refund_id,
            "entity": "refund",
            "payment_id": req.provider_payment_id,
            "amount": to_minor_units(req.amount, req.currency),
            "currency": req.currency,
            "receipt": req.receipt,
            "notes": req.notes or {},
            "status": "processed" if self.settle_refunds else "pending",
            "created_at": int(time.time()),
        }
        self.refunds[refund_id] = raw
        self._log("simulated_refund_created", provider_refund_id=refund_id, status=raw["status"])
        return ProviderRefund(
            id=refund_id,
            payment_id=req.provider_payment_id,
            amount=Decimal(req.amount),
            currency=req.currency,
            status=raw["status"],
            raw=raw,
        )

    async def fetch_refund(self, provider_refund_id: str) -> ProviderRefund:  # type: ignore[override]
        raw = self.refunds.get(provider_refund_id)
        if raw is None:
            raise GatewayError(
                "Payment gateway rejected the request",
                provider=self.provider,
                provider_code="BAD_REQUEST_ERROR",
                details={"retryable": False, "provider_refund_id": provider_refund_id},
            )
        currency = raw["currency"]
        return ProviderRefund(
            id=raw["id"],
            payment_id=raw["payment_id"],
            amount=from_minor_units(raw["amount"], currency),
            currency=currency,
            status=self._map_status(raw["status"]),
            raw=dict(raw),
        )

    def set_refund_status(self, provider_refund_id: str, status: str) -> None:
        """Move a simulated refund, as the bank would."""
        self.refunds[provider_refund_id]["status"] = status

    def sign_payment(self, provider_order_id: str, provider_payment_id: str) -> str:
        return signature.payment_signature(provider_order_id, provider_payment_id, self.key_secret)

    def sign_webhook(self, body: bytes) -> str:
        return signature.compute_signature(body, self.webhook_secret)

    def verify_payment_signature(self, provider_order_id: str, provider_payment_id: str, sig: str) -> bool:  # type: ignore[override]
        return signature.verify_payment_signature(provider_order_id, provider_payment_id, sig, self.key_secret)

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:  # type: ignore[override]
        lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
        sig = lowered.get(SIGNATURE_HEADER)
        if not sig:
            raise InvalidSignatureError(reason="missing_signature_header")
        if not signature.verify_webhook_signature(body, sig, self.webhook_secret):
            raise InvalidSignatureError(reason="webhook_signature_mismatch")
        return build_webhook_event(self.provider, lowered, body)
