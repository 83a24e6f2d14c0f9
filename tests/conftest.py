"""Pytest bootstrap configuration.

Environment variables are set before test collection so application
settings never pick up a developer's .env gateway credentials.
"""
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./test_storefront_payments.db")
os.environ["PAYMENT__MODE"] = "simulated"

from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.services.payment_service import PaymentReconciliationService
from domain.order.entity import Order, OrderItem, OrderStatus, PaymentStatus, OrderPayment, Pricing
from infrastructure.database import create_engine, create_tables
from infrastructure.external.payments.simulated_client import SimulatedGateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


@pytest.fixture
async def engine(tmp_path):
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    def _factory(readonly: bool = False):
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)
    return _factory


@pytest.fixture
def gateway():
    return SimulatedGateway(key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def service(gateway, uow_factory):
    return PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)


def make_order(
    order_id: str = "order_abc",
    user_id: str = "user_1",
    total: str = "2999.00",
    status: OrderStatus = OrderStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    provider_order_id: str | None = None,
) -> Order:
    amount = Decimal(total)
    return Order(
        id=order_id,
        user_id=user_id,
        items=[OrderItem(product_id="oud_wood_50ml", quantity=1, unit_price=amount)],
        pricing=Pricing(subtotal=amount, shipping=Decimal("0"), tax=Decimal("0"), total=amount),
        status=status,
        payment=OrderPayment(status=payment_status, provider_order_id=provider_order_id),
    )


@pytest.fixture
def seed_order(uow_factory):
    async def _seed(**kwargs) -> Order:
        async with uow_factory() as uow:
            return await uow.orders.add(make_order(**kwargs))
    return _seed


@pytest.fixture
def load_order(uow_factory):
    async def _load(order_id: str) -> Order:
        async with uow_factory(readonly=True) as uow:
            return await uow.orders.get_by_id(order_id)
    return _load


@pytest.fixture
async def captured(service, gateway, seed_order):
    """An order paid through checkout: (order_id, provider_payment_id)."""
    await seed_order(provider_order_id="order_rzp_1")
    await service.verify_payment(
        provider_order_id="order_rzp_1",
        provider_payment_id="pay_1",
        provider_signature=gateway.capture_payment("order_rzp_1", "pay_1", "2999.00"),
        order_id="order_abc",
        user_id="user_1",
    )
    return "order_abc", "pay_1"


@pytest.fixture
async def client(gateway, uow_factory):
    from main import app
    from api.dependencies import get_gateway, get_uow_factory

    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_uow_factory] = lambda: uow_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
