"""
Order store interface
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order


class OrderRepository(ABC):
    """Order store - read by id and versioned single-row writes."""

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """Insert a new order (checkout owns creation; used for seeding)."""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_provider_order_id(self, provider_order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """Conditional update keyed on order.version.

        Raises ConcurrentModificationException when the stored version moved on.
        Returns the order with its version incremented.
        """
        pass
