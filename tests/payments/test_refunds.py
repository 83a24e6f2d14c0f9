import pytest
from decimal import Decimal

from domain.common.exceptions import DomainValidationException
from domain.order.entity import OrderStatus, PaymentStatus
from domain.payment.entity import RefundStatus
from domain.payment.exceptions import (
    GatewayError,
    GatewayTimeoutError,
    PaymentNotRefundableException,
    RefundExceedsPaymentException,
    RefundNotFoundException,
    TransactionNotFoundException,
)
from infrastructure.external.payments.simulated_client import SimulatedGateway
from application.services.payment_service import PaymentReconciliationService


class _CountingGateway(SimulatedGateway):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.refund_calls = 0

    async def refund_payment(self, req):  # type: ignore[override]
        self.refund_calls += 1
        return await super().refund_payment(req)


async def _pay(service, gateway, amount="2999.00"):
    signed = gateway.capture_payment("order_rzp_1", "pay_1", amount)
    return await service.verify_payment("order_rzp_1", "pay_1", signed, "order_abc", "user_1")


@pytest.mark.asyncio
async def test_refund_above_payment_is_rejected_before_gateway(uow_factory, seed_order, load_order):
    gateway = _CountingGateway(key_secret="k", webhook_secret="w")
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order(total="2999.00")
    await _pay(service, gateway)

    with pytest.raises(RefundExceedsPaymentException) as exc:
        await service.initiate_refund("pay_1", amount=Decimal("3500.00"), actor="admin_1")

    assert exc.value.details["refundable"] == "2999.00"
    assert gateway.refund_calls == 0
    order = await load_order("order_abc")
    assert order.payment.refunded_amount == Decimal("0")
    assert order.payment.status == PaymentStatus.CONFIRMED


@pytest.mark.asyncio
async def test_partial_refunds_accumulate(service, captured, load_order):
    order_id, payment_id = captured

    first = await service.initiate_refund(payment_id, amount=Decimal("1000.00"), reason="damaged cap", actor="admin_1")
    assert first.status == "processed"
    assert first.amount == Decimal("1000.00")
    assert first.payment_id == payment_id
    assert first.processed_by == "admin_1"
    assert first.provider_refund_id.startswith("rfnd_")

    order = await load_order(order_id)
    assert order.payment.status == PaymentStatus.PARTIALLY_REFUNDED
    assert order.payment.refunded_amount == Decimal("1000.00")
    assert order.status == OrderStatus.CONFIRMED

    await service.initiate_refund(payment_id, amount=Decimal("1999.00"))
    order = await load_order(order_id)
    assert order.payment.status == PaymentStatus.REFUNDED
    assert order.payment.refunded_amount == Decimal("2999.00")

    with pytest.raises(PaymentNotRefundableException):
        await service.initiate_refund(payment_id, amount=Decimal("1.00"))


@pytest.mark.asyncio
async def test_omitted_amount_refunds_the_remainder(service, captured, load_order):
    order_id, payment_id = captured
    await service.initiate_refund(payment_id, amount=Decimal("999.00"))

    refund = await service.initiate_refund(payment_id)

    assert refund.amount == Decimal("2000.00")
    assert (await load_order(order_id)).payment.status == PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_full_refund_of_delivered_order_marks_it_refunded(service, gateway, seed_order, load_order):
    await seed_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.PENDING)
    await _pay(service, gateway)

    await service.initiate_refund("pay_1")

    order = await load_order("order_abc")
    assert order.status == OrderStatus.REFUNDED
    assert order.payment.status == PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_unknown_payment_cannot_be_refunded(service):
    with pytest.raises(TransactionNotFoundException):
        await service.initiate_refund("pay_missing", amount=Decimal("10.00"))


@pytest.mark.asyncio
async def test_non_positive_amount_is_rejected(service, captured):
    _, payment_id = captured
    with pytest.raises(DomainValidationException):
        await service.initiate_refund(payment_id, amount=Decimal("0"))


@pytest.mark.asyncio
async def test_refund_status_picks_up_gateway_settlement(uow_factory, seed_order, load_order):
    gateway = SimulatedGateway(key_secret="k", webhook_secret="w", settle_refunds=False)
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)

    refund = await service.initiate_refund("pay_1", amount=Decimal("500.00"))
    assert refund.status == "pending"

    unchanged = await service.get_refund_status(refund.id)
    assert unchanged.current_status == "pending"
    assert unchanged.drifted is False

    gateway.set_refund_status(refund.provider_refund_id, "processed")
    status = await service.get_refund_status(refund.id)
    assert status.current_status == "processed"
    assert status.drifted is True
    assert (await load_order("order_abc")).payment.refunded_amount == Decimal("500.00")


@pytest.mark.asyncio
async def test_failed_refund_releases_the_amount(uow_factory, seed_order, load_order):
    gateway = SimulatedGateway(key_secret="k", webhook_secret="w", settle_refunds=False)
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)
    refund = await service.initiate_refund("pay_1")
    assert (await load_order("order_abc")).payment.status == PaymentStatus.REFUNDED

    gateway.set_refund_status(refund.provider_refund_id, "failed")
    status = await service.get_refund_status(refund.id)

    assert status.current_status == "failed"
    order = await load_order("order_abc")
    assert order.payment.status == PaymentStatus.CONFIRMED
    assert order.payment.refunded_amount == Decimal("0")

    # the released amount is refundable again
    retry = await service.initiate_refund("pay_1")
    assert retry.amount == Decimal("2999.00")


@pytest.mark.asyncio
async def test_unknown_refund_is_not_found(service):
    with pytest.raises(RefundNotFoundException):
        await service.get_refund_status("REF-00000000-0000")


@pytest.mark.asyncio
async def test_sync_pending_refunds_counts_updates_and_errors(uow_factory, seed_order, load_order):
    gateway = SimulatedGateway(key_secret="k", webhook_secret="w", settle_refunds=False)
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)
    settled = await service.initiate_refund("pay_1", amount=Decimal("100.00"))
    lost = await service.initiate_refund("pay_1", amount=Decimal("200.00"))
    await service.initiate_refund("pay_1", amount=Decimal("300.00"))

    gateway.set_refund_status(settled.provider_refund_id, "processed")
    del gateway.refunds[lost.provider_refund_id]

    stats = await service.sync_pending_refunds(limit=10)

    assert stats == {"checked": 3, "updated": 1, "errors": 1}
    async with uow_factory(readonly=True) as uow:
        pending = await uow.refunds.list_by_status(RefundStatus.PENDING)
    assert len(pending) == 2
    assert settled.id not in {r.id for r in pending}


@pytest.mark.asyncio
async def test_gateway_lookup_error_propagates_for_single_refund(uow_factory, seed_order):
    gateway = SimulatedGateway(key_secret="k", webhook_secret="w", settle_refunds=False)
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)
    refund = await service.initiate_refund("pay_1", amount=Decimal("100.00"))
    gateway.refunds.clear()

    with pytest.raises(GatewayError):
        await service.get_refund_status(refund.id)


class _ObservingGateway(SimulatedGateway):
    """Looks at the database from inside the gateway call."""

    def __init__(self, uow_factory, **kwargs):
        super().__init__(**kwargs)
        self.uow_factory = uow_factory
        self.seen = {}

    async def refund_payment(self, req):  # type: ignore[override]
        async with self.uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_id("order_abc")
            reserved = await uow.refunds.get_by_id(req.receipt)
        self.seen = {"refunded_amount": order.payment.refunded_amount, "refund": reserved}
        return await super().refund_payment(req)


class _ConcurrentWriteGateway(SimulatedGateway):
    """Another worker moves the order while the refund is at the gateway."""

    def __init__(self, uow_factory, **kwargs):
        super().__init__(**kwargs)
        self.uow_factory = uow_factory

    async def refund_payment(self, req):  # type: ignore[override]
        async with self.uow_factory() as uow:
            order = await uow.orders.get_by_id("order_abc")
            order.transition_to(OrderStatus.PROCESSING)
            await uow.orders.update(order)
        return await super().refund_payment(req)


class _RejectingGateway(SimulatedGateway):
    def __init__(self, error, **kwargs):
        super().__init__(**kwargs)
        self.error = error

    async def refund_payment(self, req):  # type: ignore[override]
        if self.error is not None:
            raise self.error
        return await super().refund_payment(req)


@pytest.mark.asyncio
async def test_refund_is_reserved_before_gateway_call(uow_factory, seed_order):
    gateway = _ObservingGateway(uow_factory, key_secret="k", webhook_secret="w")
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)

    refund = await service.initiate_refund("pay_1", amount=Decimal("500.00"))

    assert gateway.seen["refunded_amount"] == Decimal("500.00")
    assert gateway.seen["refund"].status == RefundStatus.PENDING
    assert gateway.seen["refund"].provider_refund_id is None
    assert refund.provider_refund_id is not None


@pytest.mark.asyncio
async def test_order_written_during_gateway_call_keeps_the_refund(uow_factory, seed_order, load_order):
    gateway = _ConcurrentWriteGateway(uow_factory, key_secret="k", webhook_secret="w")
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)

    refund = await service.initiate_refund("pay_1", amount=Decimal("500.00"))

    assert refund.status == "processed"
    async with uow_factory(readonly=True) as uow:
        stored = await uow.refunds.get_by_id(refund.id)
    assert stored.provider_refund_id == refund.provider_refund_id
    assert stored.provider_refund_id in gateway.refunds
    order = await load_order("order_abc")
    assert order.status == OrderStatus.PROCESSING
    assert order.payment.refunded_amount == Decimal("500.00")
    assert order.payment.status == PaymentStatus.PARTIALLY_REFUNDED


@pytest.mark.asyncio
async def test_gateway_rejection_releases_the_reservation(uow_factory, seed_order, load_order):
    gateway = _RejectingGateway(
        GatewayError("Payment gateway rejected the request", provider="razorpay", provider_code="BAD_REQUEST_ERROR"),
        key_secret="k",
        webhook_secret="w",
    )
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)

    with pytest.raises(GatewayError):
        await service.initiate_refund("pay_1", amount=Decimal("500.00"))

    async with uow_factory(readonly=True) as uow:
        failed = await uow.refunds.list_by_status(RefundStatus.FAILED)
    assert [r.amount for r in failed] == [Decimal("500.00")]
    assert failed[0].provider_payload["provider_code"] == "BAD_REQUEST_ERROR"
    order = await load_order("order_abc")
    assert order.payment.refunded_amount == Decimal("0")
    assert order.payment.status == PaymentStatus.CONFIRMED

    gateway.error = None
    retry = await service.initiate_refund("pay_1")
    assert retry.amount == Decimal("2999.00")


@pytest.mark.asyncio
async def test_gateway_timeout_keeps_the_reservation(uow_factory, seed_order, load_order):
    gateway = _RejectingGateway(
        GatewayTimeoutError("Payment gateway timed out", provider="razorpay"),
        key_secret="k",
        webhook_secret="w",
    )
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order()
    await _pay(service, gateway)

    with pytest.raises(GatewayTimeoutError):
        await service.initiate_refund("pay_1", amount=Decimal("500.00"))

    async with uow_factory(readonly=True) as uow:
        pending = await uow.refunds.list_by_status(RefundStatus.PENDING)
    assert len(pending) == 1
    assert pending[0].provider_refund_id is None
    assert (await load_order("order_abc")).payment.refunded_amount == Decimal("500.00")

    # unbound reservations are left for review, not counted as sync errors
    stats = await service.sync_pending_refunds()
    assert stats == {"checked": 1, "updated": 0, "errors": 0}
