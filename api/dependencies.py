"""
API dependencies - caller identity and service wiring
"""
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import PaymentReconciliationService
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


async def get_optional_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> Optional[str]:
    """User id supplied by the session layer in front of this service."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


async def get_current_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user_id


async def get_gateway(request: Request) -> PaymentGateway:
    """One gateway per process; the lifespan hook closes it."""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        gateway = get_payment_gateway()
        request.app.state.payment_gateway = gateway
    return gateway


async def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


async def get_payment_service(
    gateway: PaymentGateway = Depends(get_gateway),
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(gateway=gateway, uow_factory=uow_factory)
