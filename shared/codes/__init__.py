"""
Business codes shared by the domain, core and API layers.

`BusinessCode` lives at `shared.codes`; gateway specific codes are in
`shared.codes.payment_codes`. Codes are grouped by their leading digit and
mapped to HTTP statuses in core.exceptions.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # 1xxxx request parameters
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # 2xxxx order and payment rules
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006
    CONFLICT = 20007  # lost versioned write or payment bound to another order

    # 3xxxx caller identity
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # 4xxxx this service
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    # 5xxxx throttling
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
