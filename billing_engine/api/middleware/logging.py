# 📄 File: billing_engine/api/middleware/logging.py
# 🧭 Purpose (Layman Explanation):
# Keeps a diary of every request made to the billing engine: who asked, what they asked for,
# how long it took and whether it failed, with one id tying all of a request's log lines together.
# 🧪 Purpose (Technical Summary):
# Request logging middleware assigning a correlation id, resolving the caller id from the
# X-User-Id header onto request.state, binding logging context variables and logging
# request/response pairs with timing and security-filtered headers.
# 🔗 Dependencies:
# FastAPI, starlette BaseHTTPMiddleware, billing_engine.shared.utils.logging, uuid
# 🔄 Connected Modules / Calls From:
# billing_engine.main (middleware registration), api/middleware/idempotency.py (reads request.state)

import logging
import time
import uuid
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.utils.logging import log_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
USER_ID_HEADER = "X-User-Id"

EXCLUDED_PATHS = {"/health", "/api/v1/health", "/docs", "/redoc", "/openapi.json"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging middleware.

    Features:
    - Correlation id per request (taken from X-Request-ID when supplied)
    - Caller id resolution from X-User-Id
    - Request/response timing with slow-request warnings
    - Sensitive header redaction
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.settings = get_settings()

        # Sensitive headers that should not be logged
        self.sensitive_headers = {
            "authorization",
            "cookie",
            "x-api-key",
            "stripe-signature",
        }

        # Performance thresholds for warnings
        self.slow_request_threshold = 2.0
        self.very_slow_request_threshold = 5.0

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = self._get_or_create_request_id(request)
        user_id = self._resolve_user_id(request)

        if request.url.path in EXCLUDED_PATHS:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        start_time = time.time()

        with log_context(request_id=request_id, user_id=str(user_id) if user_id else None):
            logger.info(
                f"{request.method} {request.url.path} started",
                extra=self._request_log_data(request),
            )

            try:
                response = await call_next(request)
            except Exception as e:
                processing_time = time.time() - start_time
                logger.error(
                    f"{request.method} {request.url.path} failed after "
                    f"{round(processing_time * 1000, 2)}ms: {type(e).__name__}: {e}"
                )
                raise

            processing_time = time.time() - start_time
            self._log_response(request, response, processing_time)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    def _get_or_create_request_id(self, request: Request) -> str:
        request_id = request.headers.get(REQUEST_ID_HEADER.lower()) or str(uuid.uuid4())
        request.state.request_id = request_id
        return request_id

    def _resolve_user_id(self, request: Request) -> Optional[UUID]:
        """Caller id from the X-User-Id header; malformed values are treated as anonymous."""
        raw = request.headers.get(USER_ID_HEADER.lower())
        user_id = None
        if raw:
            try:
                user_id = UUID(raw)
            except ValueError:
                logger.warning(f"Ignoring malformed {USER_ID_HEADER} header: {raw!r}")
        request.state.user_id = user_id
        return user_id

    def _request_log_data(self, request: Request) -> Dict[str, Any]:
        data = {
            "event_type": "http_request",
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client_ip": request.client.host if request.client else None,
        }
        if self.settings.is_development:
            data["headers"] = self._filter_sensitive_headers(dict(request.headers))
        return data

    def _log_response(self, request: Request, response: Response, processing_time: float) -> None:
        elapsed_ms = round(processing_time * 1000, 2)
        extra = {
            "event_type": "http_response",
            "status_code": response.status_code,
            "processing_time_ms": elapsed_ms,
        }
        message = f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms}ms"

        if processing_time > self.very_slow_request_threshold:
            logger.warning(f"Very slow request: {message}", extra=extra)
        elif processing_time > self.slow_request_threshold:
            logger.warning(f"Slow request: {message}", extra=extra)
        elif response.status_code >= 500:
            logger.error(message, extra=extra)
        else:
            logger.info(message, extra=extra)

    def _filter_sensitive_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        filtered = {}
        for key, value in headers.items():
            key_lower = key.lower()
            if key_lower in self.sensitive_headers or "secret" in key_lower:
                filtered[key] = "[REDACTED]"
            else:
                filtered[key] = value
        return filtered
