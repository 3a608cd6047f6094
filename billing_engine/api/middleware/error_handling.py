# 📄 File: billing_engine/api/middleware/error_handling.py
# 🧭 Purpose (Layman Explanation):
# Catches any errors that happen in the billing engine and turns them into consistent error
# messages, so callers always get the same shape of answer when something goes wrong.
# 🧪 Purpose (Technical Summary):
# Exception handlers for BillingEngineException, HTTPException and request validation errors,
# plus a last-resort middleware converting unhandled exceptions into a 500 JSON envelope.
# 🔗 Dependencies:
# FastAPI, starlette, billing_engine.shared.core.exceptions, logging
# 🔄 Connected Modules / Calls From:
# billing_engine.main (handler and middleware registration), api/middleware/idempotency.py

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.exceptions import BillingEngineException

logger = logging.getLogger(__name__)


def build_error_payload(
    request: Request,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Error envelope shared by every error response."""
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": getattr(request.state, "request_id", None),
            "path": str(request.url.path),
        }
    }


def billing_error_response(request: Request, exc: BillingEngineException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(build_error_payload(request, exc.error_code, exc.message, exc.details)),
    )


async def billing_exception_handler(request: Request, exc: BillingEngineException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return billing_error_response(request, exc)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_payload(request, f"HTTP_{exc.status_code}", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=build_error_payload(request, "VALIDATION_ERROR", "Request validation failed", {"errors": errors}),
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    Domain exceptions are rendered by the exception handlers above; this
    middleware only sees what escaped them and answers with a 500.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.settings = get_settings()

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                f"Unhandled exception on {request.method} {request.url.path}: {exc}",
                exc_info=True,
            )
            payload = build_error_payload(request, "INTERNAL_SERVER_ERROR", "Internal server error")
            if self.settings.DEBUG and not self.settings.is_production:
                payload["error"]["debug"] = {
                    "exception_type": type(exc).__name__,
                    "exception_message": str(exc),
                    "traceback": traceback.format_exc().split('\n'),
                }
            return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)
