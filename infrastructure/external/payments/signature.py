"""
HMAC-SHA256 signatures used by the checkout callback and webhooks.
"""
from __future__ import annotations

import hashlib
import hmac


def compute_signature(message: bytes | str, secret: str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature(provider_order_id: str, provider_payment_id: str, secret: str) -> str:
    """Signature the gateway sends back after checkout: HMAC(order_id|payment_id)."""
    return compute_signature(f"{provider_order_id}|{provider_payment_id}", secret)


def verify_payment_signature(provider_order_id: str, provider_payment_id: str, signature: str, secret: str) -> bool:
    if not (provider_order_id and provider_payment_id and signature and secret):
        return False
    expected = payment_signature(provider_order_id, provider_payment_id, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    if not (signature and secret):
        return False
    return hmac.compare_digest(compute_signature(body, secret).encode("utf-8"), signature.encode("utf-8"))
