import base64
import json
import pytest
from decimal import Decimal

import httpx

from application.dtos.payments import CreateProviderOrder, ProviderRefundRequest
from core.settings import RazorpaySettings
from domain.payment.exceptions import (
    GatewayError,
    GatewayRecoverableError,
    GatewayTimeoutError,
    InvalidSignatureError,
)
from infrastructure.external.payments import signature
from infrastructure.external.payments.base import TIMEOUT_MESSAGE
from infrastructure.external.payments.razorpay_client import RazorpayClient


CFG = RazorpaySettings(key_id="rzp_test_key", key_secret="rzp_test_secret", webhook_secret="whsec_test")


def _client(handler, cfg: RazorpaySettings = CFG) -> RazorpayClient:
    return RazorpayClient(config=cfg, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_create_order_sends_minor_units_with_basic_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "order_rzp_1", "entity": "order", "amount": 299900, "currency": "INR",
            "receipt": "order_abc", "status": "created",
        })

    client = _client(handler)
    order = await client.create_order(
        CreateProviderOrder(amount=Decimal("2999.00"), currency="INR", receipt="order_abc", notes={"order_id": "order_abc"})
    )
    await client.aclose()

    assert seen["url"] == "https://api.razorpay.com/v1/orders"
    expected_auth = base64.b64encode(b"rzp_test_key:rzp_test_secret").decode()
    assert seen["auth"] == f"Basic {expected_auth}"
    assert seen["body"] == {
        "amount": 299900, "currency": "INR", "receipt": "order_abc", "notes": {"order_id": "order_abc"},
    }
    assert order.id == "order_rzp_1"
    assert order.amount == Decimal("2999.00")
    assert order.status == "created"


@pytest.mark.asyncio
async def test_refund_payment_posts_to_payment_refund_endpoint():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "rfnd_1", "entity": "refund", "payment_id": "pay_1", "amount": 50000,
            "currency": "INR", "status": "pending",
        })

    client = _client(handler)
    refund = await client.refund_payment(
        ProviderRefundRequest(provider_payment_id="pay_1", amount=Decimal("500.00"), currency="INR", receipt="REF-1")
    )

    assert seen["path"] == "/v1/payments/pay_1/refund"
    assert seen["body"] == {"amount": 50000, "speed": "normal", "receipt": "REF-1"}
    assert refund.id == "rfnd_1"
    assert refund.amount == Decimal("500.00")
    assert refund.status == "pending"


@pytest.mark.asyncio
async def test_fetch_payment_reads_amount_and_status():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        return httpx.Response(200, json={
            "id": "pay_1", "entity": "payment", "order_id": "order_rzp_1", "amount": 299900,
            "currency": "INR", "status": "captured",
        })

    payment = await _client(handler).fetch_payment("pay_1")

    assert (seen["method"], seen["path"]) == ("GET", "/v1/payments/pay_1")
    assert payment.order_id == "order_rzp_1"
    assert payment.amount == Decimal("2999.00")
    assert payment.currency == "INR"
    assert payment.status == "captured"


@pytest.mark.asyncio
async def test_fetch_refund_retries_read_timeout():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("read timed out", request=request)
        return httpx.Response(200, json={
            "id": "rfnd_1", "payment_id": "pay_1", "amount": 50000, "currency": "INR", "status": "processed",
        })

    refund = await _client(handler).fetch_refund("rfnd_1")

    assert calls["n"] == 2
    assert refund.status == "processed"


@pytest.mark.asyncio
async def test_post_is_not_retried_after_read_timeout():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(GatewayTimeoutError) as exc:
        await _client(handler).refund_payment(
            ProviderRefundRequest(provider_payment_id="pay_1", amount=Decimal("1.00"), currency="INR")
        )

    assert calls["n"] == 1
    assert exc.value.message == TIMEOUT_MESSAGE


@pytest.mark.asyncio
async def test_post_is_retried_when_connection_fails():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"id": "order_rzp_2", "amount": 100, "currency": "INR", "status": "created"})

    order = await _client(handler).create_order(CreateProviderOrder(amount=Decimal("1.00")))

    assert calls["n"] == 2
    assert order.id == "order_rzp_2"


@pytest.mark.asyncio
async def test_client_error_is_not_retryable_and_hides_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={
            "error": {"code": "BAD_REQUEST_ERROR", "description": "The amount must be atleast INR 1.00"}
        })

    with pytest.raises(GatewayError) as exc:
        await _client(handler).create_order(CreateProviderOrder(amount=Decimal("1.00")))

    err = exc.value
    assert not isinstance(err, GatewayRecoverableError)
    assert err.provider_code == "BAD_REQUEST_ERROR"
    assert err.details["retryable"] is False
    assert err.details["status_code"] == 400
    assert "atleast" not in err.message


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 502])
async def test_rate_limit_and_server_errors_are_recoverable(status_code):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text="upstream unavailable")

    with pytest.raises(GatewayRecoverableError) as exc:
        await _client(handler).fetch_refund("rfnd_1")
    assert exc.value.details["retryable"] is True


def test_missing_credentials_fail_fast():
    with pytest.raises(RuntimeError):
        RazorpayClient(config=RazorpaySettings(key_id="rzp_test_key"))


def test_payment_signature_check_uses_key_secret():
    client = _client(lambda request: httpx.Response(200))
    sig = signature.payment_signature("order_rzp_1", "pay_1", "rzp_test_secret")
    assert client.verify_payment_signature("order_rzp_1", "pay_1", sig)
    assert not client.verify_payment_signature("order_rzp_1", "pay_2", sig)


def test_parse_webhook_verifies_raw_body():
    client = _client(lambda request: httpx.Response(200))
    body = json.dumps({"event": "payment.captured", "payload": {"payment": {"entity": {"id": "pay_1"}}}}).encode()
    sig = signature.compute_signature(body, "whsec_test")

    event = client.parse_webhook({"X-Razorpay-Signature": sig, "X-Razorpay-Event-Id": "evt_9"}, body)

    assert event.id == "evt_9"
    assert event.type == "payment.captured"
    assert event.data["payment"]["entity"]["id"] == "pay_1"
    with pytest.raises(InvalidSignatureError):
        client.parse_webhook({"X-Razorpay-Signature": sig}, body.replace(b"pay_1", b"pay_2"))


def test_parse_webhook_requires_configured_secret():
    cfg = RazorpaySettings(key_id="rzp_test_key", key_secret="rzp_test_secret")
    client = _client(lambda request: httpx.Response(200), cfg)
    with pytest.raises(InvalidSignatureError) as exc:
        client.parse_webhook({"X-Razorpay-Signature": "abc"}, b"{}")
    assert exc.value.details["reason"] == "webhook_secret_missing"
