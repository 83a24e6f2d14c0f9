"""
Payment domain entities - captured transactions and refunds
"""
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


class TransactionStatus(str, Enum):
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    """Mirrors the gateway refund lifecycle"""
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


def new_transaction_id() -> str:
    return f"TXN-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def new_refund_id() -> str:
    return f"REF-{str(int(time.time() * 1000))[-8:]}-{secrets.token_hex(2).upper()}"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Transaction:
    """
    Immutable record of a captured payment.

    One row per provider payment id; refunds never modify it, the
    refundable balance is derived from the refunds recorded against it.
    """

    id: str
    order_id: str
    user_id: str
    provider_order_id: str
    provider_payment_id: str
    provider_signature: Optional[str]
    amount: Decimal
    currency: str
    status: TransactionStatus = TransactionStatus.CAPTURED
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if Decimal(self.amount) <= 0:
            raise DomainValidationException(f"Transaction amount must be greater than 0: {self.amount}", field="amount")
        object.__setattr__(self, "created_at", _ensure_utc(self.created_at))

    def is_refundable(self) -> bool:
        return self.status == TransactionStatus.CAPTURED

    def refundable_amount(self, already_refunded: Decimal) -> Decimal:
        remaining = self.amount - already_refunded
        return remaining if remaining > 0 else Decimal("0")


@dataclass
class Refund:
    """Funds returned against a transaction"""

    id: str
    transaction_id: str
    order_id: str
    provider_payment_id: str
    provider_refund_id: Optional[str]
    amount: Decimal
    currency: str
    status: RefundStatus
    reason: Optional[str] = None
    processed_by: Optional[str] = None
    provider_payload: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(f"Refund amount must be greater than 0: {self.amount}", field="amount")
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.provider_payload is None:
            self.provider_payload = {}

    def is_final(self) -> bool:
        return self.status in (RefundStatus.PROCESSED, RefundStatus.FAILED)

    def counts_against_payment(self) -> bool:
        return self.status != RefundStatus.FAILED

    def attach_provider_refund(self, provider_refund_id: str, payload: Optional[dict] = None) -> None:
        """Bind the reservation to the refund the gateway created for it."""
        if self.provider_refund_id and self.provider_refund_id != provider_refund_id:
            raise DomainValidationException(
                f"Refund {self.id} is already bound to {self.provider_refund_id}", field="provider_refund_id"
            )
        self.provider_refund_id = provider_refund_id
        if payload:
            self.provider_payload = payload
        self.updated_at = datetime.now(timezone.utc)

    def sync_status(self, status: RefundStatus, payload: Optional[dict] = None) -> bool:
        """Adopt the gateway status. Returns True when the local record drifted.

        The gateway is the source of truth, so even a final status is overwritten.
        """
        if payload:
            self.provider_payload = payload
        if status == self.status:
            return False
        self.status = status
        self.updated_at = datetime.now(timezone.utc)
        return True
