"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.types import condecimal

from domain.order.entity import Order
from domain.payment.entity import Transaction, Refund

# Currencies accepted at checkout (extend as needed)
ISO_4217 = {
    "INR", "USD", "EUR", "GBP", "AED", "SGD", "AUD", "CAD",
}


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u


class CreateProviderOrder(BaseModel):
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default="INR")
    receipt: Optional[str] = Field(default=None, max_length=40)
    notes: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class ProviderOrder(BaseModel):
    id: str
    amount: Decimal
    currency: str
    receipt: Optional[str] = None
    status: str = "created"
    raw: Optional[dict[str, Any]] = Field(default=None, exclude=True)


class ProviderPayment(BaseModel):
    """A payment as the gateway records it; amount in major units."""
    id: str
    order_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)


class VerifyPaymentRequest(BaseModel):
    """Checkout callback payload, field names as the gateway's JS SDK emits them"""
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)
    order_id: str = Field(alias="orderId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class PaymentFailureRequest(BaseModel):
    order_id: str = Field(alias="orderId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)
    razorpay_payment_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class RefundCreate(BaseModel):
    payment_id: str = Field(min_length=1)
    amount: Optional[condecimal(gt=0, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)


class ProviderRefundRequest(BaseModel):
    provider_payment_id: str
    amount: Decimal
    currency: str
    receipt: Optional[str] = None
    notes: Optional[dict[str, Any]] = None


class ProviderRefund(BaseModel):
    id: str
    payment_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    raw: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    # raw fields for traceability (optional)
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class OrderItemDTO(BaseModel):
    product_id: str
    quantity: int
    unit_price: Decimal


class PricingDTO(BaseModel):
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


class OrderPaymentDTO(BaseModel):
    method: str
    status: str
    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_amount: Decimal = Decimal("0")


class OrderDTO(BaseModel):
    id: str
    user_id: str
    status: str
    currency: str
    items: list[OrderItemDTO]
    pricing: PricingDTO
    payment: OrderPaymentDTO
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderDTO":
        p = order.payment
        return cls(
            id=order.id,
            user_id=order.user_id,
            status=order.status.value,
            currency=order.currency,
            items=[
                OrderItemDTO(product_id=i.product_id, quantity=i.quantity, unit_price=i.unit_price)
                for i in order.items
            ],
            pricing=PricingDTO(
                subtotal=order.pricing.subtotal,
                shipping=order.pricing.shipping,
                tax=order.pricing.tax,
                total=order.pricing.total,
            ),
            payment=OrderPaymentDTO(
                method=p.method,
                status=p.status.value,
                provider_order_id=p.provider_order_id,
                provider_payment_id=p.provider_payment_id,
                failure_reason=p.failure_reason,
                paid_at=p.paid_at,
                refunded_amount=p.refunded_amount,
            ),
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class TransactionDTO(BaseModel):
    id: str
    order_id: str
    user_id: str
    provider_order_id: str
    provider_payment_id: str
    amount: Decimal
    currency: str
    status: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, txn: Transaction) -> "TransactionDTO":
        # provider_signature stays internal
        return cls(
            id=txn.id,
            order_id=txn.order_id,
            user_id=txn.user_id,
            provider_order_id=txn.provider_order_id,
            provider_payment_id=txn.provider_payment_id,
            amount=txn.amount,
            currency=txn.currency,
            status=txn.status.value,
            created_at=txn.created_at,
        )


class RefundDTO(BaseModel):
    id: str
    transaction_id: str
    order_id: str
    payment_id: str
    provider_refund_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    reason: Optional[str] = None
    processed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, refund: Refund) -> "RefundDTO":
        return cls(
            id=refund.id,
            transaction_id=refund.transaction_id,
            order_id=refund.order_id,
            payment_id=refund.provider_payment_id,
            provider_refund_id=refund.provider_refund_id,
            amount=refund.amount,
            currency=refund.currency,
            status=refund.status.value,
            reason=refund.reason,
            processed_by=refund.processed_by,
            created_at=refund.created_at,
            updated_at=refund.updated_at,
        )


class RefundStatusDTO(RefundDTO):
    current_status: str
    drifted: bool = False


class VerifyPaymentResult(BaseModel):
    success: bool
    order: OrderDTO
