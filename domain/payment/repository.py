"""
Transaction and refund store interfaces
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from .entity import Transaction, Refund, RefundStatus


class TransactionRepository(ABC):
    """Append-only transaction store"""

    @abstractmethod
    async def add(self, transaction: Transaction) -> Transaction:
        """Insert a transaction.

        Raises AlreadyProcessedError when provider_payment_id is already
        recorded; the unique index decides, not a prior read.
        """
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_by_provider_payment_id(self, provider_payment_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_by_order(self, order_id: str, skip: int = 0, limit: int = 100) -> List[Transaction]:
        """Newest first"""
        pass


class RefundRepository(ABC):
    """Refund store"""

    @abstractmethod
    async def add(self, refund: Refund) -> Refund:
        pass

    @abstractmethod
    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        pass

    @abstractmethod
    async def get_by_provider_refund_id(self, provider_refund_id: str) -> Optional[Refund]:
        pass

    @abstractmethod
    async def list_by_status(self, status: RefundStatus, limit: int = 100) -> List[Refund]:
        """Oldest first so long-pending refunds are reconciled before new ones"""
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        pass

    @abstractmethod
    async def total_refunded(self, transaction_id: str) -> Decimal:
        """Sum of refunds that still count against the transaction (pending + processed)."""
        pass
