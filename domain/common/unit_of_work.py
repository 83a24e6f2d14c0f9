"""Unit of Work: the transaction boundary the payment service works inside"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.order.repository import OrderRepository
from domain.payment.repository import RefundRepository, TransactionRepository


class AbstractUnitOfWork(ABC):
    """Order, transaction and refund writes made inside one unit commit together.

    A clean exit commits a writable unit unless it was committed already;
    any exception rolls back.
    """

    orders: OrderRepository
    transactions: TransactionRepository
    refunds: RefundRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._readonly = readonly
        self._committed = False

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            await self.rollback()
        elif not (self._readonly or self._committed):
            await self.commit()

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...
