"""
Shared plumbing for payment gateway adapters

Owns the pooled httpx client, the retry policy and the provider status
mapping. Adapters implement the PaymentGateway operations on top.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.payment.exceptions import GatewayRecoverableError, GatewayTimeoutError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

# The request never reached the gateway: safe to resend even a POST
CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)
# The response was lost: only safe for reads
READ_ERRORS = CONNECT_ERRORS + (httpx.ReadTimeout, httpx.RemoteProtocolError)

TIMEOUT_MESSAGE = "Payment gateway timed out; check the payment status before retrying"

DEFAULT_TIMEOUTS = {"connect": 3.0, "read": 10.0, "write": 10.0, "total": 10.0}
DEFAULT_RETRY = {"max": 2, "base": 0.2}


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts = {**DEFAULT_TIMEOUTS, **(timeouts or {})}
        self._max_retries = int((retry or DEFAULT_RETRY)["max"])
        self._backoff = float((retry or DEFAULT_RETRY)["base"])
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _client_kwargs(self) -> dict[str, Any]:
        """base_url, auth and headers for the provider."""
        return {}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            t = self._timeouts
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=t["connect"], read=t["read"], write=t["write"], pool=t["connect"]),
                transport=self._transport,
                **self._client_kwargs(),
            )
        return self._client

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def _retry(self, fn: Callable[[], Awaitable[Any]], *, idempotent: bool = False) -> Any:
        """Await fn, retrying transport failures within the total timeout.

        A timeout or exhausted retries surface as gateway errors the API maps
        to 504/503.
        """
        policy = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._backoff, min=0.1, max=2.0),
            retry=retry_if_exception_type(READ_ERRORS if idempotent else CONNECT_ERRORS),
            reraise=True,
        )

        async def _attempts() -> Any:
            async for attempt in policy:
                with attempt:
                    return await fn()

        try:
            return await asyncio.wait_for(_attempts(), timeout=self._timeouts["total"])
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("payment_gateway_timeout", provider=self.provider, error=repr(exc))
            raise GatewayTimeoutError(TIMEOUT_MESSAGE, provider=self.provider) from exc
        except httpx.TransportError as exc:
            logger.warning("payment_gateway_unreachable", provider=self.provider, error=repr(exc))
            raise GatewayRecoverableError("Payment gateway unreachable", provider=self.provider) from exc

    def _map_status(self, provider_status: str) -> str:
        return PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {}).get(provider_status, provider_status)

    def _log(self, event: str, **fields: Any) -> None:
        logger.info(event, provider=self.provider, **fields)
