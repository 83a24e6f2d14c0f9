"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider→internal status mapping (extend per provider)
PROVIDER_STATUS_TO_INTERNAL = {
    "razorpay": {
        # Order entity
        "created": "created",
        "attempted": "created",
        "paid": "paid",
        # Payment entity
        "authorized": "pending",
        "captured": "captured",
        "failed": "failed",
        "refunded": "refunded",
        # Refund entity
        "pending": "pending",
        "processed": "processed",
    },
}
