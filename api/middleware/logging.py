"""
Access logging middleware

One line when a request starts and one when it ends, with status and
duration. JSON bodies are logged (truncated, secrets masked) when enabled;
webhook bodies never are.
"""
import json
import time
from typing import Any, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

MASK = "***"


class LoggingMiddleware(BaseHTTPMiddleware):
    SKIP_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})
    # signed payloads: logging them would leak card/VPA details
    NO_BODY_PREFIXES = ("/api/v1/payments/webhooks/",)
    SENSITIVE_FIELDS = frozenset({
        "razorpay_signature", "signature", "password", "token", "secret",
        "key_secret", "webhook_secret", "card", "vpa", "cvv",
    })

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.body_log_default = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.body_log_max_bytes = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self.SKIP_PATHS:
            return await call_next(request)

        fields: dict[str, Any] = {}
        if request.query_params:
            fields["query_params"] = dict(request.query_params)
        if request.method in ("POST", "PUT", "PATCH") and self._wants_body(request):
            body = await self._body_snippet(request)
            if body is not None:
                fields["body"] = body

        started = time.perf_counter()
        logger.info("request_started", **fields)
        try:
            response = await call_next(request)
        except Exception:
            logger.error("request_failed", duration=round(time.perf_counter() - started, 4), exc_info=True)
            raise

        duration = time.perf_counter() - started
        status_code = response.status_code
        if status_code >= 500:
            log = logger.error
        elif status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log("request_finished", status_code=status_code, duration=round(duration, 4))
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    def _wants_body(self, request: Request) -> bool:
        if request.url.path.startswith(self.NO_BODY_PREFIXES):
            return False
        override = (request.headers.get("X-Log-Body") or "").lower()
        if override in ("true", "1", "yes"):
            return True
        if override in ("false", "0", "no"):
            return False
        return bool(self.body_log_default and settings.DEBUG)

    async def _body_snippet(self, request: Request) -> Optional[Any]:
        if "application/json" not in request.headers.get("content-type", "").lower():
            return None
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.body_log_max_bytes].decode("utf-8", errors="ignore")
        try:
            return self._mask(json.loads(text))
        except ValueError:
            # truncated mid-document
            return text

    def _mask(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: MASK if str(k).lower() in self.SENSITIVE_FIELDS else self._mask(v) for k, v in data.items()}
        if isinstance(data, list):
            return [self._mask(v) for v in data]
        return data
