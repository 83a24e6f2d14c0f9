"""
Payment ORM models - captured transactions and refunds
Note: this is an infrastructure detail, not the domain model
"""
from sqlalchemy import (
    Column, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class TransactionModel(Base):
    """
    Captured payment, one row per gateway payment id

    The unique constraint on provider_payment_id is what makes capture
    at-most-once; rows are never updated
    """
    __tablename__ = "transactions"

    id = Column(String(40), primary_key=True, comment="TXN-<ms>-<hex>")

    order_id = Column(
        String(64),
        ForeignKey("orders.id"),
        nullable=False,
        index=True,
        comment="Order ID"
    )
    user_id = Column(String(128), nullable=False, index=True, comment="Paying user ID")

    provider_order_id = Column(String(64), nullable=False, comment="Gateway order ID")
    provider_payment_id = Column(String(64), nullable=False, comment="Gateway payment ID")
    provider_signature = Column(String(128), nullable=True, comment="Checkout callback signature")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="Captured amount")
    currency = Column(String(3), nullable=False, default="INR", comment="ISO-4217 currency code")
    status = Column(String(32), nullable=False, default="captured", comment="captured/failed/refunded")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="Created at"
    )

    refunds = relationship("RefundModel", back_populates="transaction", lazy="noload")

    __table_args__ = (
        UniqueConstraint("provider_payment_id", name="uq_transactions_provider_payment_id"),
        Index("ix_transactions_provider_pair", "provider_order_id", "provider_payment_id"),
    )

    def __repr__(self):
        return (
            f"<TransactionModel(id='{self.id}', order_id='{self.order_id}', "
            f"provider_payment_id='{self.provider_payment_id}', amount={self.amount})>"
        )


class RefundModel(Base):
    """
    Refund issued against a transaction
    """
    __tablename__ = "refunds"

    id = Column(String(40), primary_key=True, comment="REF-<digits>-<hex>")

    transaction_id = Column(
        String(40),
        ForeignKey("transactions.id"),
        nullable=False,
        index=True,
        comment="Refunded transaction ID"
    )
    # Denormalised for lookups
    order_id = Column(String(64), index=True, nullable=False, comment="Order ID")
    provider_payment_id = Column(String(64), nullable=False, index=True, comment="Gateway payment ID")
    provider_refund_id = Column(String(64), nullable=True, unique=True, comment="Gateway refund ID")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="Refund amount")
    currency = Column(String(3), nullable=False, default="INR", comment="ISO-4217 currency code")
    status = Column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="Refund status: pending/processed/failed"
    )

    reason = Column(Text, nullable=True, comment="Refund reason")
    processed_by = Column(String(128), nullable=True, comment="Actor who issued the refund")

    # Raw gateway response
    provider_payload = Column("payload", JSON, nullable=True, comment="Gateway refund entity")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="Created at"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Updated at"
    )

    transaction = relationship("TransactionModel", back_populates="refunds")

    __table_args__ = (
        Index("ix_refunds_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<RefundModel(id='{self.id}', transaction_id='{self.transaction_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
