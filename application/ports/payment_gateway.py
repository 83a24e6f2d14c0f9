"""What PaymentReconciliationService needs from a payment gateway.

RazorpayClient talks to the live API, SimulatedGateway stands in for
development and tests.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from application.dtos.payments import (
    CreateProviderOrder,
    ProviderOrder,
    ProviderPayment,
    ProviderRefundRequest,
    ProviderRefund,
    WebhookEvent,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the payment provider.

    Amounts cross this boundary in major units; adapters convert to the
    provider's minor units.
    """

    provider: str

    async def create_order(self, req: CreateProviderOrder) -> ProviderOrder: ...

    async def fetch_payment(self, provider_payment_id: str) -> ProviderPayment: ...

    async def refund_payment(self, req: ProviderRefundRequest) -> ProviderRefund: ...

    async def fetch_refund(self, provider_refund_id: str) -> ProviderRefund: ...

    def verify_payment_signature(self, provider_order_id: str, provider_payment_id: str, signature: str) -> bool: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...

    async def aclose(self) -> None: ...
