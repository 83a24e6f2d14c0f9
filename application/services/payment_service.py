"""
Application service orchestrating the payment reconciliation use-cases.

This class depends only on the application PaymentGateway port, the unit of
work abstraction and DTOs. Gateway implementations are provided by
infrastructure and must be injected from the composition root (API/tasks),
keeping dependencies one-way.

At-most-once capture is enforced by the unique index on the transaction's
provider payment id: the service always attempts the insert and treats the
unique violation as a replay.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from application.dtos.payments import (
    CreateProviderOrder,
    ProviderOrder,
    ProviderRefundRequest,
    OrderDTO,
    TransactionDTO,
    RefundDTO,
    RefundStatusDTO,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import ConcurrentModificationException, DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus
from domain.payment.entity import (
    Refund,
    RefundStatus,
    Transaction,
    TransactionStatus,
    new_refund_id,
    new_transaction_id,
)
from domain.payment.exceptions import (
    AlreadyProcessedError,
    GatewayError,
    GatewayTimeoutError,
    InvalidSignatureError,
    OrderAccessDeniedException,
    OrderNotFoundException,
    PaymentAlreadyRecordedException,
    PaymentAmountMismatchException,
    PaymentNotCapturedException,
    PaymentNotRefundableException,
    RefundExceedsPaymentException,
    RefundNotFoundException,
    TransactionNotFoundException,
)
from domain.payment.money import from_minor_units


logger = get_logger(__name__)

UowFactory = Callable[..., AbstractUnitOfWork]


def _refund_status(value: str) -> RefundStatus:
    try:
        return RefundStatus(value)
    except ValueError:
        # created / unknown provider states are still in flight
        return RefundStatus.PENDING


class PaymentReconciliationService:
    def __init__(self, gateway: PaymentGateway, uow_factory: UowFactory) -> None:
        self.gateway = gateway
        self._uow_factory = uow_factory

    # ------------------------------------------------------------------
    # Provider orders
    # ------------------------------------------------------------------
    async def create_provider_order(self, req: CreateProviderOrder, *, user_id: Optional[str] = None) -> ProviderOrder:
        """Create a gateway order; attach it to the local order named in notes.order_id."""
        order_id = (req.notes or {}).get("order_id")
        if order_id:
            order_id = str(order_id)
            if user_id is None:
                # attaching rewrites the order's payment; only its owner may do that
                raise OrderAccessDeniedException(order_id)
            async with self._uow_factory(readonly=True) as uow:
                order = await uow.orders.get_by_id(order_id)
            self._check_order_access(order, order_id, user_id)
            if not order.is_awaiting_payment():
                raise DomainValidationException(
                    f"Order {order_id} is not awaiting payment", field="notes.order_id"
                )
            if order.total != req.amount:
                raise PaymentAmountMismatchException(order_id, order.total, req.amount)

        logger.info(
            "payment_create_order_request",
            order_id=order_id,
            provider=self.gateway.provider,
            amount=str(req.amount),
            currency=req.currency,
            receipt=req.receipt,
        )
        provider_order = await self.gateway.create_order(req)
        logger.info(
            "payment_create_order_response",
            order_id=order_id,
            provider_order_id=provider_order.id,
            status=provider_order.status,
        )

        if order_id:
            async with self._uow_factory() as uow:
                order = await uow.orders.get_by_id(order_id)
                order.attach_provider_order(provider_order.id)
                await uow.orders.update(order)
        return provider_order

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    async def verify_payment(
        self,
        provider_order_id: str,
        provider_payment_id: str,
        provider_signature: str,
        order_id: str,
        user_id: str,
    ) -> OrderDTO:
        """Verify the checkout callback and confirm the order exactly once.

        The signature proves the ids came from the gateway; the payment itself
        is fetched to check it was captured for the order's total.
        """
        log = logger.bind(
            order_id=order_id,
            provider_order_id=provider_order_id,
            provider_payment_id=provider_payment_id,
        )
        if not self.gateway.verify_payment_signature(provider_order_id, provider_payment_id, provider_signature):
            log.warning("payment_signature_mismatch", user_id=user_id, fraud_review=True)
            raise InvalidSignatureError()

        payment = await self.gateway.fetch_payment(provider_payment_id)
        if payment.order_id != provider_order_id:
            log.warning("payment_order_mismatch", paid_provider_order_id=payment.order_id, fraud_review=True)
            raise InvalidSignatureError(reason="payment_order_mismatch")
        if payment.status != "captured":
            log.warning("payment_not_captured", payment_status=payment.status)
            raise PaymentNotCapturedException(provider_payment_id, payment.status)

        order = await self._capture(
            order_id=order_id,
            user_id=user_id,
            provider_order_id=provider_order_id,
            provider_payment_id=provider_payment_id,
            provider_signature=provider_signature,
            amount=payment.amount,
            currency=payment.currency,
        )
        log.info("payment_verify_succeeded", order_status=order.status.value)
        return OrderDTO.from_entity(order)

    async def capture_from_webhook(self, payment: dict[str, Any]) -> Optional[OrderDTO]:
        """Capture path driven by a payment.captured webhook entity."""
        provider_payment_id = payment.get("id")
        provider_order_id = payment.get("order_id")
        log = logger.bind(provider_order_id=provider_order_id, provider_payment_id=provider_payment_id)
        if not provider_payment_id or not provider_order_id:
            log.warning("payment_webhook_missing_ids")
            return None

        order_id = await self._resolve_order_id(payment)
        if order_id is None:
            log.warning("payment_webhook_order_unmatched")
            return None

        amount = None
        currency = payment.get("currency") or None
        if payment.get("amount") is not None:
            amount = from_minor_units(int(payment["amount"]), currency or "INR")

        order = await self._capture(
            order_id=order_id,
            user_id=None,
            provider_order_id=provider_order_id,
            provider_payment_id=provider_payment_id,
            provider_signature=None,
            amount=amount,
            currency=currency,
        )
        log.info("payment_webhook_captured", order_id=order_id, order_status=order.status.value)
        return OrderDTO.from_entity(order)

    async def _capture(
        self,
        *,
        order_id: str,
        user_id: Optional[str],
        provider_order_id: str,
        provider_payment_id: str,
        provider_signature: Optional[str],
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> Order:
        log = logger.bind(
            order_id=order_id,
            provider_order_id=provider_order_id,
            provider_payment_id=provider_payment_id,
        )
        try:
            async with self._uow_factory() as uow:
                order = await uow.orders.get_by_id(order_id)
                self._check_order_access(order, order_id, user_id)

                attached = order.payment.provider_order_id
                if attached and attached != provider_order_id:
                    log.warning("payment_provider_order_mismatch", attached_provider_order_id=attached, fraud_review=True)
                    raise InvalidSignatureError(reason="provider_order_mismatch")
                paid_currency = (currency or order.currency).upper()
                if (amount is not None and amount != order.total) or paid_currency != order.currency:
                    log.error(
                        "payment_amount_mismatch",
                        expected=f"{order.total} {order.currency}",
                        actual=f"{amount} {paid_currency}",
                    )
                    raise PaymentAmountMismatchException(
                        order_id,
                        order.total,
                        amount if amount is not None else order.total,
                        expected_currency=order.currency,
                        actual_currency=paid_currency,
                    )

                await uow.transactions.add(
                    Transaction(
                        id=new_transaction_id(),
                        order_id=order.id,
                        user_id=order.user_id,
                        provider_order_id=provider_order_id,
                        provider_payment_id=provider_payment_id,
                        provider_signature=provider_signature,
                        amount=amount if amount is not None else order.total,
                        currency=paid_currency,
                        status=TransactionStatus.CAPTURED,
                        created_at=datetime.now(timezone.utc),
                    )
                )

                if order.is_awaiting_payment():
                    order.confirm_payment(provider_order_id, provider_payment_id)
                    if order.status != OrderStatus.CONFIRMED:
                        log.warning("payment_captured_on_inactive_order", order_status=order.status.value)
                    order = await uow.orders.update(order)
                else:
                    # A second successful payment for an already settled order needs a manual refund
                    log.warning(
                        "payment_duplicate_capture",
                        existing_payment_id=order.payment.provider_payment_id,
                        payment_status=order.payment.status.value,
                    )
                await uow.commit()
                return order
        except AlreadyProcessedError:
            return await self._load_replayed_capture(order_id, provider_payment_id, log)

    async def _load_replayed_capture(self, order_id: str, provider_payment_id: str, log) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.transactions.get_by_provider_payment_id(provider_payment_id)
            order = await uow.orders.get_by_id(order_id)
        if existing is not None and existing.order_id != order_id:
            log.error("payment_already_recorded", recorded_order_id=existing.order_id)
            raise PaymentAlreadyRecordedException(provider_payment_id, existing.order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        log.info("payment_capture_replayed", order_status=order.status.value)
        return order

    async def _resolve_order_id(self, payment: dict[str, Any]) -> Optional[str]:
        notes = payment.get("notes") or {}
        if isinstance(notes, dict) and notes.get("order_id"):
            return str(notes["order_id"])
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_provider_order_id(payment.get("order_id"))
        return order.id if order else None

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------
    async def record_payment_failure(
        self,
        order_id: str,
        user_id: Optional[str],
        reason: Optional[str],
        provider_payment_id: Optional[str] = None,
    ) -> OrderDTO:
        """Record a failed attempt. Settled payments are left untouched."""
        async with self._uow_factory() as uow:
            order = await uow.orders.get_by_id(order_id)
            self._check_order_access(order, order_id, user_id)
            if not order.is_awaiting_payment():
                logger.info(
                    "payment_failure_ignored",
                    order_id=order_id,
                    payment_status=order.payment.status.value,
                    provider_payment_id=provider_payment_id,
                )
                return OrderDTO.from_entity(order)
            order.mark_payment_failed(reason or "Payment failed", provider_payment_id)
            order = await uow.orders.update(order)

        logger.info(
            "payment_failure_recorded",
            order_id=order_id,
            provider_payment_id=provider_payment_id,
            reason=reason,
        )
        return OrderDTO.from_entity(order)

    async def _fail_from_webhook(self, payment: dict[str, Any]) -> Optional[OrderDTO]:
        order_id = await self._resolve_order_id(payment)
        if order_id is None:
            logger.warning(
                "payment_webhook_order_unmatched",
                provider_order_id=payment.get("order_id"),
                provider_payment_id=payment.get("id"),
            )
            return None
        return await self.record_payment_failure(
            order_id,
            None,
            payment.get("error_description") or payment.get("error_code"),
            provider_payment_id=payment.get("id"),
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------
    async def initiate_refund(
        self,
        payment_id: str,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> RefundDTO:
        """Refund a captured payment in full (amount omitted) or in part.

        The amount is reserved against the order and committed before the
        gateway is called, so a concurrent refund either sees the reservation
        or loses the versioned order write without reaching the gateway.
        """
        if amount is not None and amount <= 0:
            raise DomainValidationException(f"Refund amount must be greater than 0: {amount}", field="amount")

        log = logger.bind(provider_payment_id=payment_id, actor=actor)
        refund = await self._reserve_refund(payment_id, amount, reason, actor, log)
        log = log.bind(order_id=refund.order_id, refund_id=refund.id)

        try:
            provider_refund = await self.gateway.refund_payment(
                ProviderRefundRequest(
                    provider_payment_id=payment_id,
                    amount=refund.amount,
                    currency=refund.currency,
                    receipt=refund.id,
                    notes={"order_id": refund.order_id, "reason": reason or ""},
                )
            )
        except GatewayTimeoutError:
            # the gateway may have refunded; keep the reservation until someone checks
            log.error("refund_outcome_unknown", amount=str(refund.amount), needs_review=True)
            raise
        except GatewayError as exc:
            await self._release_reservation(refund.id, exc)
            log.warning("refund_rejected_by_gateway", error=exc.message, provider_code=exc.provider_code)
            raise

        async with self._uow_factory() as uow:
            refund = await uow.refunds.get_by_id(refund.id)
            refund.attach_provider_refund(provider_refund.id, provider_refund.raw)
            await uow.refunds.update(refund)
            await self._apply_refund_status(uow, refund, _refund_status(provider_refund.status), provider_refund.raw)

        log.info(
            "refund_initiated",
            provider_refund_id=refund.provider_refund_id,
            status=refund.status.value,
        )
        return RefundDTO.from_entity(refund)

    async def _reserve_refund(
        self,
        payment_id: str,
        amount: Optional[Decimal],
        reason: Optional[str],
        actor: Optional[str],
        log,
    ) -> Refund:
        async with self._uow_factory() as uow:
            txn = await uow.transactions.get_by_provider_payment_id(payment_id)
            if txn is None:
                raise TransactionNotFoundException(payment_id)
            if not txn.is_refundable():
                raise PaymentNotRefundableException(payment_id, txn.status.value)
            order = await uow.orders.get_by_id(txn.order_id)
            if order is None:
                raise OrderNotFoundException(txn.order_id)

            already = await uow.refunds.total_refunded(txn.id)
            available = min(
                txn.refundable_amount(already),
                order.total - order.payment.refunded_amount,
            )
            if available <= 0:
                raise PaymentNotRefundableException(payment_id, order.payment.status.value)
            refund_amount = amount if amount is not None else available
            if refund_amount > available:
                log.warning(
                    "refund_exceeds_payment",
                    order_id=order.id,
                    amount=str(refund_amount),
                    refundable=str(available),
                )
                raise RefundExceedsPaymentException(refund_amount, available)

            now = datetime.now(timezone.utc)
            refund = Refund(
                id=new_refund_id(),
                transaction_id=txn.id,
                order_id=order.id,
                provider_payment_id=payment_id,
                provider_refund_id=None,
                amount=refund_amount,
                currency=txn.currency,
                status=RefundStatus.PENDING,
                reason=reason,
                processed_by=actor,
                created_at=now,
                updated_at=now,
            )
            await uow.refunds.add(refund)
            order.apply_refund(refund_amount)
            if order.payment.refunded_amount == order.total and order.can_transition_to(OrderStatus.REFUNDED):
                order.transition_to(OrderStatus.REFUNDED)
            await uow.orders.update(order)

        log.info("refund_reserved", order_id=refund.order_id, refund_id=refund.id, amount=str(refund.amount))
        return refund

    async def _release_reservation(self, refund_id: str, error: GatewayError) -> None:
        async with self._uow_factory() as uow:
            refund = await uow.refunds.get_by_id(refund_id)
            if refund is None:
                raise RefundNotFoundException(refund_id)
            payload = {"error": error.message, "provider_code": error.provider_code}
            await self._apply_refund_status(uow, refund, RefundStatus.FAILED, payload)

    async def get_refund_status(self, refund_id: str) -> RefundStatusDTO:
        """Re-fetch the refund from the gateway and reconcile the local record."""
        refund, drifted = await self._sync_refund(refund_id)
        data = RefundDTO.from_entity(refund).model_dump()
        return RefundStatusDTO(**data, current_status=refund.status.value, drifted=drifted)

    async def _sync_refund(self, refund_id: str) -> tuple[Refund, bool]:
        async with self._uow_factory() as uow:
            refund = await uow.refunds.get_by_id(refund_id)
            if refund is None:
                raise RefundNotFoundException(refund_id)
            if not refund.provider_refund_id:
                # reserved but the gateway call timed out; match by receipt at the gateway
                logger.warning("refund_unbound", refund_id=refund.id, order_id=refund.order_id, needs_review=True)
                return refund, False
            remote = await self.gateway.fetch_refund(refund.provider_refund_id)
            drifted = await self._apply_refund_status(uow, refund, _refund_status(remote.status), remote.raw)
        return refund, drifted

    async def _apply_refund_status(
        self,
        uow: AbstractUnitOfWork,
        refund: Refund,
        status: RefundStatus,
        payload: Optional[dict[str, Any]],
    ) -> bool:
        previous = refund.status
        was_counted = refund.counts_against_payment()
        if not refund.sync_status(status, payload):
            return False
        await uow.refunds.update(refund)

        if was_counted != refund.counts_against_payment():
            order = await uow.orders.get_by_id(refund.order_id)
            if order is None:
                raise OrderNotFoundException(refund.order_id)
            if refund.counts_against_payment():
                order.apply_refund(refund.amount)
            else:
                order.release_refund(refund.amount)
            await uow.orders.update(order)

        logger.info(
            "refund_status_drifted",
            refund_id=refund.id,
            order_id=refund.order_id,
            provider_refund_id=refund.provider_refund_id,
            previous_status=previous.value,
            status=refund.status.value,
        )
        return True

    async def _sync_refund_from_webhook(self, entity: dict[str, Any]) -> Optional[RefundDTO]:
        provider_refund_id = entity.get("id")
        async with self._uow_factory() as uow:
            refund = await uow.refunds.get_by_provider_refund_id(provider_refund_id) if provider_refund_id else None
            if refund is None:
                logger.warning("refund_webhook_unmatched", provider_refund_id=provider_refund_id)
                return None
            await self._apply_refund_status(uow, refund, _refund_status(entity.get("status") or ""), entity)
        return RefundDTO.from_entity(refund)

    async def sync_pending_refunds(self, limit: int = 100) -> dict[str, int]:
        """Reconcile every refund still pending at the gateway."""
        async with self._uow_factory(readonly=True) as uow:
            pending = await uow.refunds.list_by_status(RefundStatus.PENDING, limit=limit)

        stats = {"checked": 0, "updated": 0, "errors": 0}
        for refund in pending:
            stats["checked"] += 1
            try:
                _, drifted = await self._sync_refund(refund.id)
            except (GatewayError, ConcurrentModificationException) as exc:
                # left pending; the next run picks it up again
                stats["errors"] += 1
                logger.warning("refund_sync_failed", refund_id=refund.id, error=exc.message, code=exc.code)
                continue
            if drifted:
                stats["updated"] += 1
        logger.info("refund_sync_completed", **stats)
        return stats

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def list_order_transactions(
        self, order_id: str, user_id: str, skip: int = 0, limit: int = 100
    ) -> list[TransactionDTO]:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_id(order_id)
            self._check_order_access(order, order_id, user_id)
            items = await uow.transactions.list_by_order(order_id, skip=skip, limit=limit)
        return [TransactionDTO.from_entity(t) for t in items]

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    async def handle_webhook(self, headers: dict, body: bytes) -> dict[str, Any]:
        """Verify and dispatch a gateway webhook. Unknown events are acknowledged."""
        event = self.gateway.parse_webhook(headers, body)
        logger.info("payment_webhook_parsed", provider=self.gateway.provider, event_type=event.type, event_id=event.id)

        payload = event.data or {}
        result: Any = None
        if event.type == "payment.captured":
            entity = _entity(payload, "payment")
            try:
                result = await self.capture_from_webhook(entity)
            except (InvalidSignatureError, PaymentAmountMismatchException, PaymentAlreadyRecordedException) as exc:
                # redelivery cannot fix these; acknowledge and leave the payment for a person
                logger.error(
                    "payment_webhook_needs_review",
                    event_id=event.id,
                    provider_order_id=entity.get("order_id"),
                    provider_payment_id=entity.get("id"),
                    error_type=exc.error_type,
                    details=exc.details,
                )
                return {"event_id": event.id, "event": event.type, "status": "rejected"}
        elif event.type == "payment.failed":
            result = await self._fail_from_webhook(_entity(payload, "payment"))
        elif event.type in ("refund.processed", "refund.failed"):
            result = await self._sync_refund_from_webhook(_entity(payload, "refund"))
        else:
            logger.info("payment_webhook_ignored", event_type=event.type, event_id=event.id)
            return {"event_id": event.id, "event": event.type, "status": "ignored"}

        return {
            "event_id": event.id,
            "event": event.type,
            "status": "processed" if result is not None else "unmatched",
        }

    async def aclose(self) -> None:
        await self.gateway.aclose()

    # ------------------------------------------------------------------
    @staticmethod
    def _check_order_access(order: Optional[Order], order_id: str, user_id: Optional[str]) -> None:
        if order is None:
            raise OrderNotFoundException(order_id)
        # user_id None means a trusted caller (webhook, worker)
        if user_id is not None and not order.is_owned_by(user_id):
            logger.warning("order_access_denied", order_id=order_id, user_id=user_id)
            raise OrderAccessDeniedException(order_id)


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    return ((payload.get(name) or {}).get("entity")) or {}
