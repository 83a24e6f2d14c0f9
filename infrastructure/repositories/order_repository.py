"""
Order repository - SQLAlchemy implementation with versioned writes
"""
from typing import Optional
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from domain.common.exceptions import ConcurrentModificationException
from domain.order.entity import Order, OrderItem, OrderPayment, OrderStatus, PaymentStatus, Pricing
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """SQLAlchemy implementation of the order store"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """Map the row to the domain aggregate"""
        return Order(
            id=model.id,
            user_id=model.user_id,
            items=[
                OrderItem(
                    product_id=str(item["product_id"]),
                    quantity=int(item["quantity"]),
                    unit_price=Decimal(str(item["unit_price"])),
                )
                for item in (model.items or [])
            ],
            pricing=Pricing(
                subtotal=Decimal(str(model.subtotal)),
                shipping=Decimal(str(model.shipping)),
                tax=Decimal(str(model.tax)),
                total=Decimal(str(model.total)),
            ),
            currency=model.currency,
            status=OrderStatus(model.status),
            payment=OrderPayment(
                method=model.payment_method,
                status=PaymentStatus(model.payment_status),
                provider_order_id=model.provider_order_id,
                provider_payment_id=model.provider_payment_id,
                failure_reason=model.failure_reason,
                paid_at=model.paid_at,
                refunded_amount=Decimal(str(model.refunded_amount or 0)),
            ),
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _columns(entity: Order) -> dict:
        """Mutable columns written by add and update"""
        return {
            "status": entity.status.value,
            "payment_method": entity.payment.method,
            "payment_status": entity.payment.status.value,
            "provider_order_id": entity.payment.provider_order_id,
            "provider_payment_id": entity.payment.provider_payment_id,
            "failure_reason": entity.payment.failure_reason,
            "paid_at": entity.payment.paid_at,
            "refunded_amount": entity.payment.refunded_amount,
            "updated_at": entity.updated_at or datetime.now(timezone.utc),
        }

    def _to_model(self, entity: Order) -> OrderModel:
        return OrderModel(
            id=entity.id,
            user_id=entity.user_id,
            currency=entity.currency,
            items=[
                {"product_id": i.product_id, "quantity": i.quantity, "unit_price": str(i.unit_price)}
                for i in entity.items
            ],
            subtotal=entity.pricing.subtotal,
            shipping=entity.pricing.shipping,
            tax=entity.pricing.tax,
            total=entity.pricing.total,
            version=entity.version,
            created_at=entity.created_at or datetime.now(timezone.utc),
            **self._columns(entity),
        )

    async def add(self, order: Order) -> Order:
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        await self.session.refresh(db_order)
        logger.info("order_created", order_id=db_order.id, user_id=db_order.user_id, total=str(db_order.total))
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_provider_order_id(self, provider_order_id: str) -> Optional[Order]:
        if not provider_order_id:
            return None
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.provider_order_id == provider_order_id)
            .order_by(OrderModel.updated_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order) -> Order:
        """UPDATE ... WHERE id = :id AND version = :expected"""
        expected = order.version
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id, OrderModel.version == expected)
            .values(version=expected + 1, **self._columns(order))
        )
        if result.rowcount != 1:
            logger.warning("order_update_conflict", order_id=order.id, expected_version=expected)
            raise ConcurrentModificationException("Order", order.id, expected)
        order.version = expected + 1
        logger.info(
            "order_updated",
            order_id=order.id,
            status=order.status.value,
            payment_status=order.payment.status.value,
            version=order.version,
        )
        return order
