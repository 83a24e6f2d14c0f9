"""Business exceptions raised by the domain, the service and the gateway adapters.

Each carries a business code; core.exceptions turns the code into an HTTP
status, so nothing below the API layer knows about HTTP.
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={int(self.code)}, message={self.message!r})"


class DomainValidationException(BusinessException):
    """Input that breaks an entity rule: negative amounts, bad currency, illegal transition."""

    def __init__(self, message: str, *, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            BusinessCode.PARAM_VALIDATION_ERROR,
            message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class ConcurrentModificationException(BusinessException):
    """The stored order version moved on between read and write."""

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        super().__init__(
            BusinessCode.CONFLICT,
            f"{entity} {entity_id} was modified concurrently",
            error_type="ConcurrentModification",
            details={"entity": entity, "id": entity_id, "expected_version": expected_version},
        )
