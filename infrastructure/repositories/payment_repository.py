"""
Transaction and refund repositories - SQLAlchemy implementation
"""
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from domain.payment.entity import Transaction, TransactionStatus, Refund, RefundStatus
from domain.payment.exceptions import AlreadyProcessedError
from domain.payment.repository import TransactionRepository, RefundRepository
from infrastructure.models.payment import TransactionModel, RefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyTransactionRepository(TransactionRepository):
    """Append-only; the unique index on provider_payment_id rejects replays"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            order_id=model.order_id,
            user_id=model.user_id,
            provider_order_id=model.provider_order_id,
            provider_payment_id=model.provider_payment_id,
            provider_signature=model.provider_signature,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=TransactionStatus(model.status),
            created_at=model.created_at,
        )

    def _to_model(self, entity: Transaction) -> TransactionModel:
        return TransactionModel(
            id=entity.id,
            order_id=entity.order_id,
            user_id=entity.user_id,
            provider_order_id=entity.provider_order_id,
            provider_payment_id=entity.provider_payment_id,
            provider_signature=entity.provider_signature,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            created_at=entity.created_at,
        )

    async def add(self, transaction: Transaction) -> Transaction:
        db_txn = self._to_model(transaction)
        self.session.add(db_txn)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # The unit of work rolls the session back
            if "provider_payment_id" in str(e.orig).lower():
                logger.info(
                    "transaction_already_recorded",
                    provider_payment_id=transaction.provider_payment_id,
                    order_id=transaction.order_id,
                )
                raise AlreadyProcessedError(transaction.provider_payment_id) from e
            raise
        logger.info(
            "transaction_recorded",
            transaction_id=db_txn.id,
            order_id=db_txn.order_id,
            provider_payment_id=db_txn.provider_payment_id,
            amount=str(db_txn.amount),
        )
        return transaction

    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id == transaction_id)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def get_by_provider_payment_id(self, provider_payment_id: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.provider_payment_id == provider_payment_id)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def list_by_order(self, order_id: str, skip: int = 0, limit: int = 100) -> List[Transaction]:
        query = (
            select(TransactionModel)
            .where(TransactionModel.order_id == order_id)
            .order_by(TransactionModel.created_at.desc(), TransactionModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [self._to_entity(t) for t in result.scalars().all()]


class SQLAlchemyRefundRepository(RefundRepository):
    """SQLAlchemy implementation of the refund store"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            transaction_id=model.transaction_id,
            order_id=model.order_id,
            provider_payment_id=model.provider_payment_id,
            provider_refund_id=model.provider_refund_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=RefundStatus(model.status),
            reason=model.reason,
            processed_by=model.processed_by,
            provider_payload=model.provider_payload or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Refund) -> RefundModel:
        return RefundModel(
            id=entity.id,
            transaction_id=entity.transaction_id,
            order_id=entity.order_id,
            provider_payment_id=entity.provider_payment_id,
            provider_refund_id=entity.provider_refund_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            reason=entity.reason,
            processed_by=entity.processed_by,
            provider_payload=entity.provider_payload,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def add(self, refund: Refund) -> Refund:
        db_refund = self._to_model(refund)
        self.session.add(db_refund)
        await self.session.flush()
        logger.info(
            "refund_recorded",
            refund_id=db_refund.id,
            transaction_id=db_refund.transaction_id,
            provider_refund_id=db_refund.provider_refund_id,
            amount=str(db_refund.amount),
            status=db_refund.status,
        )
        return refund

    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.id == refund_id)
        )
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def get_by_provider_refund_id(self, provider_refund_id: str) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.provider_refund_id == provider_refund_id)
        )
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def list_by_status(self, status: RefundStatus, limit: int = 100) -> List[Refund]:
        query = (
            select(RefundModel)
            .where(RefundModel.status == status.value)
            .order_by(RefundModel.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [self._to_entity(r) for r in result.scalars().all()]

    async def update(self, refund: Refund) -> Refund:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.id == refund.id)
        )
        db_refund = result.scalar_one_or_none()
        if not db_refund:
            raise ValueError(f"Refund {refund.id} not found")

        db_refund.status = refund.status.value
        db_refund.provider_refund_id = refund.provider_refund_id
        db_refund.provider_payload = refund.provider_payload
        db_refund.updated_at = refund.updated_at
        await self.session.flush()
        logger.info("refund_updated", refund_id=refund.id, status=refund.status.value)
        return refund

    async def total_refunded(self, transaction_id: str) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(RefundModel.amount), 0)).where(
                RefundModel.transaction_id == transaction_id,
                RefundModel.status != RefundStatus.FAILED.value,
            )
        )
        return Decimal(str(result.scalar_one()))
