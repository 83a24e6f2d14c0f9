"""
Razorpay adapter talking to the REST API directly with httpx.

Endpoints used:
- POST /orders                       create an order for checkout
- GET  /payments/{id}                payment amount and status at verification
- POST /payments/{id}/refund         refund a captured payment
- GET  /refunds/{id}                 current refund status

Amounts go out in the smallest currency unit (paise for INR) and come back
converted to major units. Errors come as {"error": {"code", "description"}}.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CreateProviderOrder,
    ProviderOrder,
    ProviderPayment,
    ProviderRefundRequest,
    ProviderRefund,
    WebhookEvent,
)
from core.logging_config import get_logger
from core.settings import payment_settings, RazorpaySettings
from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import (
    GatewayError,
    GatewayRecoverableError,
    InvalidSignatureError,
)
from domain.payment.money import from_minor_units, to_minor_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments import signature


logger = get_logger(__name__)

SIGNATURE_HEADER = "x-razorpay-signature"
EVENT_ID_HEADER = "x-razorpay-event-id"


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"

    def __init__(
        self,
        *,
        config: Optional[RazorpaySettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self._cfg = config or payment_settings.razorpay
        if not (self._cfg.key_id and self._cfg.key_secret):
            raise RuntimeError("PAYMENT__RAZORPAY__KEY_ID / KEY_SECRET not configured")

    def _client_kwargs(self) -> dict[str, Any]:
        return {
            "base_url": self._cfg.base_url.rstrip("/") + "/",
            "auth": httpx.BasicAuth(self._cfg.key_id, self._cfg.key_secret),
            "headers": {"Content-Type": "application/json"},
        }

    async def _request(self, method: str, path: str, *, payload: Optional[dict] = None) -> dict[str, Any]:
        idempotent = method.upper() == "GET"

        async def _send() -> httpx.Response:
            return await self._http().request(method, path.lstrip("/"), json=payload)

        resp = await self._retry(_send, idempotent=idempotent)
        return self._handle_response(resp, method=method, path=path)

    def _handle_response(self, resp: httpx.Response, *, method: str, path: str) -> dict[str, Any]:
        if resp.is_success:
            return resp.json()

        try:
            body = resp.json()
        except ValueError:
            body = {}
        err = (body.get("error") if isinstance(body, dict) else None) or {}
        provider_code = err.get("code")
        # full body stays in the logs, callers only see a generic message
        logger.error(
            "razorpay_request_failed",
            method=method,
            path=path,
            status_code=resp.status_code,
            provider_code=provider_code,
            body=resp.text[:2000],
        )
        details = {"status_code": resp.status_code}
        if resp.status_code == 429 or resp.status_code >= 500:
            raise GatewayRecoverableError(
                "Payment gateway temporarily unavailable",
                provider=self.provider,
                provider_code=provider_code,
                details=details,
            )
        details["retryable"] = False
        raise GatewayError(
            "Payment gateway rejected the request",
            provider=self.provider,
            provider_code=provider_code,
            details=details,
        )

    async def create_order(self, req: CreateProviderOrder) -> ProviderOrder:  # type: ignore[override]
        payload: dict[str, Any] = {
            "amount": to_minor_units(req.amount, req.currency),
            "currency": req.currency,
        }
        if req.receipt:
            payload["receipt"] = req.receipt
        if req.notes:
            payload["notes"] = {k: str(v) for k, v in req.notes.items()}

        data = await self._request("POST", "/orders", payload=payload)
        self._log("razorpay_order_created", provider_order_id=data.get("id"), receipt=req.receipt)
        currency = str(data.get("currency") or req.currency)
        return ProviderOrder(
            id=str(data["id"]),
            amount=from_minor_units(int(data.get("amount", payload["amount"])), currency),
            currency=currency,
            receipt=data.get("receipt"),
            status=self._map_status(str(data.get("status", "created"))),
            raw=data,
        )

    async def fetch_payment(self, provider_payment_id: str) -> ProviderPayment:  # type: ignore[override]
        data = await self._request("GET", f"/payments/{provider_payment_id}")
        currency = str(data.get("currency") or payment_settings.default_currency)
        return ProviderPayment(
            id=str(data["id"]),
            order_id=data.get("order_id"),
            amount=from_minor_units(int(data.get("amount") or 0), currency),
            currency=currency,
            status=self._map_status(str(data.get("status", "created"))),
            raw=data,
        )

    async def refund_payment(self, req: ProviderRefundRequest) -> ProviderRefund:  # type: ignore[override]
        payload: dict[str, Any] = {
            "amount": to_minor_units(req.amount, req.currency),
            "speed": self._cfg.refund_speed,
        }
        if req.receipt:
            payload["receipt"] = req.receipt
        if req.notes:
            payload["notes"] = {k: str(v) for k, v in req.notes.items()}

        data = await self._request("POST", f"/payments/{req.provider_payment_id}/refund", payload=payload)
        self._log(
            "razorpay_refund_created",
            provider_payment_id=req.provider_payment_id,
            provider_refund_id=data.get("id"),
            status=data.get("status"),
        )
        return self._to_refund(data, fallback_currency=req.currency)

    async def fetch_refund(self, provider_refund_id: str) -> ProviderRefund:  # type: ignore[override]
        data = await self._request("GET", f"/refunds/{provider_refund_id}")
        return self._to_refund(data)

    def _to_refund(self, data: dict[str, Any], fallback_currency: str = "INR") -> ProviderRefund:
        currency = str(data.get("currency") or fallback_currency)
        return ProviderRefund(
            id=str(data["id"]),
            payment_id=data.get("payment_id"),
            amount=from_minor_units(int(data.get("amount") or 0), currency),
            currency=currency,
            status=self._map_status(str(data.get("status", "pending"))),
            raw=data,
        )

    def verify_payment_signature(self, provider_order_id: str, provider_payment_id: str, sig: str) -> bool:  # type: ignore[override]
        return signature.verify_payment_signature(provider_order_id, provider_payment_id, sig, self._cfg.key_secret)

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:  # type: ignore[override]
        lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
        secret = self._cfg.webhook_secret
        if not secret:
            raise InvalidSignatureError(reason="webhook_secret_missing")
        sig = lowered.get(SIGNATURE_HEADER)
        if not sig:
            raise InvalidSignatureError(reason="missing_signature_header")
        if not signature.verify_webhook_signature(body, sig, secret):
            logger.warning("razorpay_webhook_signature_mismatch", fraud_review=True)
            raise InvalidSignatureError(reason="webhook_signature_mismatch")
        return build_webhook_event(self.provider, lowered, body)


def build_webhook_event(provider: str, headers: dict[str, Any], body: bytes) -> WebhookEvent:
    try:
        event = json.loads(body)
    except ValueError as exc:
        raise DomainValidationException("Malformed webhook body", field="body") from exc
    event_type = str(event.get("event") or "")
    event_id = headers.get(EVENT_ID_HEADER) or f"{event_type}:{event.get('created_at', '')}"
    return WebhookEvent(
        id=str(event_id),
        type=event_type,
        provider=provider,
        data=event.get("payload") or {},
        raw_headers=headers,
        raw_body=body,
    )
