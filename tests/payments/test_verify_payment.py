import asyncio

import pytest
from decimal import Decimal

from application.dtos.payments import CreateProviderOrder
from domain.order.entity import OrderStatus, PaymentStatus
from domain.payment.exceptions import (
    GatewayError,
    InvalidSignatureError,
    OrderAccessDeniedException,
    OrderNotFoundException,
    PaymentAlreadyRecordedException,
    PaymentAmountMismatchException,
    PaymentNotCapturedException,
)


async def _verify(service, gateway, *, order_id="order_abc", user_id="user_1",
                  provider_order_id="order_rzp_1", payment_id="pay_1", signature=None,
                  amount="2999.00", currency="INR", status="captured"):
    signed = gateway.capture_payment(provider_order_id, payment_id, amount, currency=currency, status=status)
    return await service.verify_payment(
        provider_order_id=provider_order_id,
        provider_payment_id=payment_id,
        provider_signature=signature or signed,
        order_id=order_id,
        user_id=user_id,
    )


async def _transactions(uow_factory, order_id="order_abc"):
    async with uow_factory(readonly=True) as uow:
        return await uow.transactions.list_by_order(order_id)


@pytest.mark.asyncio
async def test_valid_signature_confirms_order_and_records_transaction(service, gateway, seed_order, uow_factory):
    await seed_order(total="2999.00")

    order = await _verify(service, gateway)

    assert order.status == "confirmed"
    assert order.payment.status == "confirmed"
    assert order.payment.provider_payment_id == "pay_1"
    assert order.payment.paid_at is not None
    txns = await _transactions(uow_factory)
    assert len(txns) == 1
    assert txns[0].amount == Decimal("2999.00")
    assert txns[0].provider_order_id == "order_rzp_1"
    assert txns[0].currency == "INR"


@pytest.mark.asyncio
async def test_tampered_signature_leaves_order_untouched(service, gateway, seed_order, load_order, uow_factory):
    await seed_order()
    good = gateway.sign_payment("order_rzp_1", "pay_1")
    tampered = ("0" if good[0] != "0" else "1") + good[1:]

    with pytest.raises(InvalidSignatureError):
        await _verify(service, gateway, signature=tampered)

    order = await load_order("order_abc")
    assert order.status == OrderStatus.PENDING
    assert order.payment.status == PaymentStatus.PENDING
    assert order.version == 0
    assert await _transactions(uow_factory) == []


@pytest.mark.asyncio
async def test_signature_for_other_payment_is_rejected(service, gateway, seed_order):
    await seed_order()
    with pytest.raises(InvalidSignatureError):
        await _verify(service, gateway, signature=gateway.sign_payment("order_rzp_1", "pay_other"))


@pytest.mark.asyncio
async def test_replayed_verification_is_idempotent(service, gateway, seed_order, load_order, uow_factory):
    await seed_order()

    first = await _verify(service, gateway)
    second = await _verify(service, gateway)

    assert first.status == second.status == "confirmed"
    assert second.version == first.version
    assert len(await _transactions(uow_factory)) == 1
    order = await load_order("order_abc")
    assert order.version == 1


@pytest.mark.asyncio
async def test_payment_id_bound_to_another_order_conflicts(service, gateway, seed_order):
    await seed_order(order_id="order_abc")
    await seed_order(order_id="order_xyz")
    await _verify(service, gateway)

    with pytest.raises(PaymentAlreadyRecordedException):
        await _verify(service, gateway, order_id="order_xyz")


@pytest.mark.asyncio
async def test_unknown_order_is_not_found(service, gateway):
    with pytest.raises(OrderNotFoundException):
        await _verify(service, gateway, order_id="missing")


@pytest.mark.asyncio
async def test_other_users_order_is_denied(service, gateway, seed_order, load_order):
    await seed_order(user_id="user_1")
    with pytest.raises(OrderAccessDeniedException):
        await _verify(service, gateway, user_id="user_2")
    assert (await load_order("order_abc")).payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_attached_provider_order_must_match(service, gateway, seed_order, load_order):
    await seed_order(provider_order_id="order_rzp_attached")
    with pytest.raises(InvalidSignatureError) as exc:
        await _verify(service, gateway, provider_order_id="order_rzp_other")
    assert exc.value.details["reason"] == "provider_order_mismatch"
    assert (await load_order("order_abc")).payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_failed_attempt_can_be_paid_on_retry(service, gateway, seed_order):
    await seed_order()
    failed = await service.record_payment_failure("order_abc", "user_1", "card declined", provider_payment_id="pay_0")
    assert failed.payment.status == "failed"
    assert failed.payment.failure_reason == "card declined"

    order = await _verify(service, gateway, payment_id="pay_1")
    assert order.payment.status == "confirmed"
    assert order.payment.failure_reason is None
    assert order.payment.provider_payment_id == "pay_1"


@pytest.mark.asyncio
async def test_second_payment_for_settled_order_is_recorded_without_changing_it(
    service, gateway, seed_order, uow_factory
):
    await seed_order()
    first = await _verify(service, gateway, payment_id="pay_1")
    second = await _verify(service, gateway, payment_id="pay_2")

    assert second.payment.provider_payment_id == "pay_1"
    assert second.version == first.version
    assert len(await _transactions(uow_factory)) == 2


@pytest.mark.asyncio
async def test_capture_on_cancelled_order_keeps_status(service, gateway, seed_order):
    await seed_order(status=OrderStatus.CANCELLED)
    order = await _verify(service, gateway)
    assert order.status == "cancelled"
    assert order.payment.status == "confirmed"


@pytest.mark.asyncio
async def test_failure_after_confirmation_is_ignored(service, gateway, seed_order):
    await seed_order()
    await _verify(service, gateway)
    order = await service.record_payment_failure("order_abc", "user_1", "late failure")
    assert order.payment.status == "confirmed"
    assert order.payment.failure_reason is None


@pytest.mark.asyncio
async def test_transactions_are_listed_for_owner_only(service, captured):
    order_id, payment_id = captured
    items = await service.list_order_transactions(order_id, "user_1")
    assert [t.provider_payment_id for t in items] == [payment_id]
    assert "provider_signature" not in items[0].model_dump()

    with pytest.raises(OrderAccessDeniedException):
        await service.list_order_transactions(order_id, "user_2")


@pytest.mark.asyncio
async def test_checkout_scenario_from_order_creation_to_confirmation(uow_factory, seed_order, load_order):
    from application.services.payment_service import PaymentReconciliationService
    from infrastructure.external.payments.simulated_client import SimulatedGateway

    class _FixedIdGateway(SimulatedGateway):
        async def create_order(self, req):  # type: ignore[override]
            created = await super().create_order(req)
            return created.model_copy(update={"id": "order_abc"})

    gateway = _FixedIdGateway(key_secret="k", webhook_secret="w")
    service = PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
    await seed_order(order_id="ord_1001", total="2999.00")

    provider_order = await service.create_provider_order(
        CreateProviderOrder(amount=Decimal("2999.00"), currency="INR", notes={"order_id": "ord_1001"}),
        user_id="user_1",
    )
    assert provider_order.id == "order_abc"
    assert provider_order.amount == Decimal("2999.00")
    assert (await load_order("ord_1001")).payment.provider_order_id == "order_abc"

    order = await service.verify_payment(
        "order_abc", "pay_29990", gateway.capture_payment("order_abc", "pay_29990", "2999.00"), "ord_1001", "user_1"
    )
    assert order.status == "confirmed"
    txns = await _transactions(uow_factory, "ord_1001")
    assert [t.amount for t in txns] == [Decimal("2999.00")]


@pytest.mark.asyncio
async def test_payment_for_less_than_total_is_rejected(service, gateway, seed_order, load_order, uow_factory):
    await seed_order(total="2999.00")
    provider_order = await service.create_provider_order(
        CreateProviderOrder(amount=Decimal("1.00"), currency="INR")
    )

    with pytest.raises(PaymentAmountMismatchException) as exc:
        await _verify(service, gateway, provider_order_id=provider_order.id, payment_id="pay_cheap", amount="1.00")

    assert exc.value.details["expected"] == "2999.00"
    assert exc.value.details["actual"] == "1.00"
    order = await load_order("order_abc")
    assert order.status == OrderStatus.PENDING
    assert order.payment.status == PaymentStatus.PENDING
    assert await _transactions(uow_factory) == []


@pytest.mark.asyncio
async def test_payment_in_other_currency_is_rejected(service, gateway, seed_order, uow_factory):
    await seed_order(total="2999.00")
    with pytest.raises(PaymentAmountMismatchException) as exc:
        await _verify(service, gateway, currency="USD")
    assert exc.value.details["actual_currency"] == "USD"
    assert await _transactions(uow_factory) == []


@pytest.mark.asyncio
async def test_authorized_but_uncaptured_payment_is_rejected(service, gateway, seed_order, load_order):
    await seed_order()
    with pytest.raises(PaymentNotCapturedException):
        await _verify(service, gateway, status="authorized")
    assert (await load_order("order_abc")).payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_payment_made_on_another_provider_order_is_rejected(service, gateway, seed_order, load_order):
    await seed_order()
    gateway.capture_payment("order_rzp_2", "pay_1", "2999.00")

    with pytest.raises(InvalidSignatureError) as exc:
        await service.verify_payment(
            "order_rzp_1", "pay_1", gateway.sign_payment("order_rzp_1", "pay_1"), "order_abc", "user_1"
        )
    assert exc.value.details["reason"] == "payment_order_mismatch"
    assert (await load_order("order_abc")).payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_payment_unknown_to_gateway_is_not_confirmed(service, gateway, seed_order, load_order):
    await seed_order()
    with pytest.raises(GatewayError):
        await service.verify_payment(
            "order_rzp_1", "pay_ghost", gateway.sign_payment("order_rzp_1", "pay_ghost"), "order_abc", "user_1"
        )
    assert (await load_order("order_abc")).version == 0


@pytest.mark.asyncio
async def test_concurrent_verifications_record_one_transaction(service, gateway, seed_order, load_order, uow_factory):
    await seed_order()
    signed = gateway.capture_payment("order_rzp_1", "pay_1", "2999.00")

    first, second = await asyncio.gather(
        service.verify_payment("order_rzp_1", "pay_1", signed, "order_abc", "user_1"),
        service.verify_payment("order_rzp_1", "pay_1", signed, "order_abc", "user_1"),
    )

    assert first.status == second.status == "confirmed"
    assert first.payment.provider_payment_id == second.payment.provider_payment_id == "pay_1"
    assert len(await _transactions(uow_factory)) == 1
    assert (await load_order("order_abc")).version == 1


@pytest.mark.asyncio
async def test_anonymous_caller_cannot_attach_provider_order(service, seed_order, load_order):
    await seed_order(provider_order_id="order_victim")
    with pytest.raises(OrderAccessDeniedException):
        await service.create_provider_order(
            CreateProviderOrder(amount=Decimal("2999.00"), currency="INR", notes={"order_id": "order_abc"}),
            user_id=None,
        )
    assert (await load_order("order_abc")).payment.provider_order_id == "order_victim"
