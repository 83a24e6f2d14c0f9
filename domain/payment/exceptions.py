"""
Payment reconciliation errors.

Gateway errors are retryable (5xx at the HTTP boundary); signature errors are
terminal. AlreadyProcessedError never reaches a client: it marks an idempotent
replay that the service turns into a no-op.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class GatewayError(BusinessException):
    """The payment gateway call failed or was rejected."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "GatewayError",
    ):
        full_details = {"provider": provider, "provider_code": provider_code, "retryable": True}
        if details:
            full_details.update(details)
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=full_details,
        )
        self.provider = provider
        self.provider_code = provider_code


class GatewayRecoverableError(GatewayError):
    """Rate limited or 5xx from the gateway; safe to retry with backoff."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            details=details,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="GatewayRecoverableError",
        )


class GatewayTimeoutError(GatewayError):
    """The gateway did not answer in time. The remote side effect may have happened."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            details=details,
            code=PaymentCode.TIMEOUT,
            error_type="GatewayTimeout",
        )


class InvalidSignatureError(BusinessException):
    """Callback signature did not match. Terminal; flag for fraud review."""

    def __init__(self, *, reason: str = "signature_mismatch", details: Optional[dict] = None):
        full_details = {"reason": reason}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message="Payment verification failed",
            error_type="InvalidSignature",
            details=full_details,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class OrderAccessDeniedException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message="Access denied",
            error_type="OrderAccessDenied",
            details={"order_id": order_id},
        )


class TransactionNotFoundException(BusinessException):
    def __init__(self, provider_payment_id: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Payment not found",
            error_type="TransactionNotFound",
            details={"payment_id": provider_payment_id},
        )


class RefundNotFoundException(BusinessException):
    def __init__(self, refund_id: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Refund not found",
            error_type="RefundNotFound",
            details={"refund_id": refund_id},
        )


class RefundExceedsPaymentException(BusinessException):
    def __init__(self, refund_amount: Decimal, available: Decimal):
        super().__init__(
            code=BusinessCode.BUSINESS_ERROR,
            message=f"Refund amount {refund_amount} exceeds refundable amount {available}",
            error_type="RefundExceedsPayment",
            details={"amount": str(refund_amount), "refundable": str(available)},
            field="amount",
        )


class PaymentNotRefundableException(BusinessException):
    def __init__(self, provider_payment_id: str, status: str):
        super().__init__(
            code=BusinessCode.BUSINESS_ERROR,
            message=f"Payment in status {status} cannot be refunded",
            error_type="PaymentNotRefundable",
            details={"payment_id": provider_payment_id, "status": status},
        )


class PaymentAmountMismatchException(BusinessException):
    def __init__(
        self,
        order_id: str,
        expected: Decimal,
        actual: Decimal,
        *,
        expected_currency: Optional[str] = None,
        actual_currency: Optional[str] = None,
    ):
        details = {"order_id": order_id, "expected": str(expected), "actual": str(actual)}
        if expected_currency or actual_currency:
            details.update(expected_currency=expected_currency, actual_currency=actual_currency)
        super().__init__(
            code=BusinessCode.BUSINESS_ERROR,
            message="Payment amount does not match order total",
            error_type="PaymentAmountMismatch",
            details=details,
            field="amount",
        )


class PaymentNotCapturedException(BusinessException):
    """The gateway has not captured the payment the checkout reported."""

    def __init__(self, provider_payment_id: str, status: str):
        super().__init__(
            code=BusinessCode.BUSINESS_ERROR,
            message="Payment was not captured",
            error_type="PaymentNotCaptured",
            details={"payment_id": provider_payment_id, "status": status},
        )


class PaymentAlreadyRecordedException(BusinessException):
    """The provider payment id is already bound to a different order."""

    def __init__(self, provider_payment_id: str, order_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message="Payment already recorded for another order",
            error_type="PaymentAlreadyRecorded",
            details={"payment_id": provider_payment_id, "order_id": order_id},
        )


class AlreadyProcessedError(Exception):
    """Raised by stores when a unique key shows the write already happened."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"already processed: {key}")
