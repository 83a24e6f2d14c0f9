"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway


def get_payment_gateway(mode: Optional[str] = None) -> PaymentGateway:
    name = (mode or payment_settings.resolved_mode()).lower()
    if name == "live":
        from .razorpay_client import RazorpayClient
        return RazorpayClient()
    if name in {"simulated", "sandbox", "mock"}:
        from .simulated_client import SimulatedGateway
        return SimulatedGateway()
    raise ValueError(f"Unsupported payment mode: {name}")
