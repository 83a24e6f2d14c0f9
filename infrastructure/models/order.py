"""
Order ORM model - SQLAlchemy mapping
Note: this is an infrastructure detail, not the domain model
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    Order table

    Holds the payment sub-record inline (payment_* columns); all business
    rules live in domain.order.entity.Order
    """
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, comment="Order ID")
    user_id = Column(String(128), nullable=False, index=True, comment="Owner user ID")

    status = Column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="Fulfilment status: pending/confirmed/processing/shipped/delivered/cancelled/refunded"
    )
    currency = Column(String(3), nullable=False, default="INR", comment="ISO-4217 currency code")
    items = Column(JSON, nullable=False, comment="Line items [{product_id, quantity, unit_price}]")

    # Pricing (major units)
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False, comment="Items subtotal")
    shipping = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="Shipping fee")
    tax = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="Tax")
    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="Amount payable")

    # Payment sub-record
    payment_method = Column(String(32), nullable=False, default="razorpay", comment="Payment method")
    payment_status = Column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="Payment status: pending/confirmed/failed/partially_refunded/refunded"
    )
    provider_order_id = Column(String(64), nullable=True, index=True, comment="Gateway order ID")
    provider_payment_id = Column(String(64), nullable=True, comment="Gateway payment ID")
    failure_reason = Column(Text, nullable=True, comment="Last payment failure reason")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="Payment confirmation time")
    refunded_amount = Column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=0,
        comment="Refunded amount"
    )

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=0, comment="Incremented by every write")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Created at"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Updated at"
    )

    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id='{self.id}', status='{self.status}', "
            f"payment_status='{self.payment_status}', total={self.total}, version={self.version})>"
        )
