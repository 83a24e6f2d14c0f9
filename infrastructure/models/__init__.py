"""ORM models; importing this package registers every table on Base.metadata."""
from .base import Base, metadata
from .order import OrderModel
from .payment import RefundModel, TransactionModel

__all__ = ["Base", "metadata", "OrderModel", "TransactionModel", "RefundModel"]
