"""
Order aggregate - fulfilment status plus the payment sub-record.

The reconciliation flow only ever status-transitions orders; checkout
creates them elsewhere.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """Fulfilment status"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    """Status of Order.payment"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

# failed -> confirmed covers a customer retrying on the same provider order
PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.CONFIRMED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.CONFIRMED, PaymentStatus.FAILED},
    PaymentStatus.CONFIRMED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class OrderItem:
    product_id: str
    quantity: int
    unit_price: Decimal

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Quantity must be positive: {self.quantity}", field="quantity"
            )
        self.unit_price = Decimal(str(self.unit_price))


@dataclass
class Pricing:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal

    def __post_init__(self):
        for name in ("subtotal", "shipping", "tax", "total"):
            value = Decimal(str(getattr(self, name)))
            if value < 0:
                raise DomainValidationException(f"{name} must not be negative", field=name)
            setattr(self, name, value)
        if self.total <= 0:
            raise DomainValidationException(
                f"Order total must be greater than 0: {self.total}", field="total"
            )


@dataclass
class OrderPayment:
    method: str = "razorpay"
    status: PaymentStatus = PaymentStatus.PENDING
    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_amount: Decimal = field(default_factory=lambda: Decimal("0"))


@dataclass
class Order:
    """
    Order aggregate root

    Rules:
    1. Fulfilment status follows ORDER_TRANSITIONS
    2. Payment status follows PAYMENT_TRANSITIONS
    3. Refunds never push refunded_amount above the order total
    4. Every persisted change bumps version (enforced by the repository)
    """

    id: str
    user_id: str
    items: list[OrderItem]
    pricing: Pricing
    currency: str = "INR"
    status: OrderStatus = OrderStatus.PENDING
    payment: OrderPayment = field(default_factory=OrderPayment)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"Invalid currency: {self.currency}", field="currency")
        self.currency = self.currency.upper()
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.payment.paid_at = _ensure_utc(self.payment.paid_at)

    @property
    def total(self) -> Decimal:
        return self.pricing.total

    def is_owned_by(self, user_id: Optional[str]) -> bool:
        return user_id is not None and str(user_id) == str(self.user_id)

    def is_awaiting_payment(self) -> bool:
        return self.payment.status in (PaymentStatus.PENDING, PaymentStatus.FAILED)

    def is_paid_with(self, provider_payment_id: str) -> bool:
        return (
            self.payment.status != PaymentStatus.PENDING
            and self.payment.status != PaymentStatus.FAILED
            and self.payment.provider_payment_id == provider_payment_id
        )

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in ORDER_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: OrderStatus) -> None:
        if not self.can_transition_to(new_status):
            raise DomainValidationException(
                f"Cannot change status from {self.status.value} to {new_status.value}",
                field="status",
            )
        self.status = new_status
        self._touch()

    def _set_payment_status(self, new_status: PaymentStatus) -> None:
        if new_status not in PAYMENT_TRANSITIONS.get(self.payment.status, set()):
            raise DomainValidationException(
                f"Cannot change payment status from {self.payment.status.value} to {new_status.value}",
                field="payment.status",
            )
        self.payment.status = new_status

    def attach_provider_order(self, provider_order_id: str) -> None:
        if not self.is_awaiting_payment():
            raise DomainValidationException(
                f"Order {self.id} is not awaiting payment", field="payment.status"
            )
        self.payment.provider_order_id = provider_order_id
        self._touch()

    def confirm_payment(self, provider_order_id: str, provider_payment_id: str) -> bool:
        """Move payment to confirmed.

        Returns True when the fulfilment status moved to confirmed as well;
        a cancelled order keeps its status so the capture can be reconciled by hand.
        """
        self._set_payment_status(PaymentStatus.CONFIRMED)
        now = datetime.now(timezone.utc)
        self.payment.provider_order_id = provider_order_id
        self.payment.provider_payment_id = provider_payment_id
        self.payment.failure_reason = None
        self.payment.paid_at = now
        self.updated_at = now
        if self.status == OrderStatus.CONFIRMED:
            return False
        if self.can_transition_to(OrderStatus.CONFIRMED):
            self.status = OrderStatus.CONFIRMED
            return True
        return False

    def mark_payment_failed(self, reason: Optional[str], provider_payment_id: Optional[str] = None) -> None:
        self._set_payment_status(PaymentStatus.FAILED)
        self.payment.failure_reason = reason
        if provider_payment_id:
            self.payment.provider_payment_id = provider_payment_id
        self._touch()

    def apply_refund(self, amount: Decimal) -> None:
        """Account for a refund against the order total."""
        if amount <= 0:
            raise DomainValidationException(f"Refund amount must be greater than 0: {amount}", field="amount")
        refunded = self.payment.refunded_amount + amount
        if refunded > self.total:
            raise DomainValidationException(
                f"Refunds {refunded} would exceed order total {self.total}", field="amount"
            )
        target = PaymentStatus.REFUNDED if refunded == self.total else PaymentStatus.PARTIALLY_REFUNDED
        self._set_payment_status(target)
        self.payment.refunded_amount = refunded
        self._touch()

    def release_refund(self, amount: Decimal) -> None:
        """Give back the amount of a refund the gateway reported as failed."""
        refunded = self.payment.refunded_amount - amount
        if refunded < 0:
            refunded = Decimal("0")
        self.payment.refunded_amount = refunded
        # Only a failed refund walks back, so these edges are not in the transition tables
        if refunded == 0:
            self.payment.status = PaymentStatus.CONFIRMED
        else:
            self.payment.status = PaymentStatus.PARTIALLY_REFUNDED
        if self.status == OrderStatus.REFUNDED:
            # refunded is only reachable from delivered
            self.status = OrderStatus.DELIVERED
        self._touch()

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
