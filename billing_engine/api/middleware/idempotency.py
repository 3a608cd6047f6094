# 📄 File: billing_engine/api/middleware/idempotency.py
# 🧭 Purpose (Layman Explanation):
# Lets clients safely retry "create" requests: when a request carries an Idempotency-Key we have
# already answered, the original answer is sent back instead of doing the work again.
# 🧪 Purpose (Technical Summary):
# BaseHTTPMiddleware wrapping mutating requests that carry an Idempotency-Key header in
# IdempotencyService.execute. The downstream response body is buffered so the exact bytes can be
# stored and replayed; replays are marked with an Idempotent-Replayed header.
# 🔗 Dependencies:
# starlette BaseHTTPMiddleware, IdempotencyService, api/middleware/error_handling.py
# 🔄 Connected Modules / Calls From:
# billing_engine.main (middleware registration)

import logging
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from billing_engine.api.middleware.error_handling import billing_error_response
from billing_engine.modules.idempotency.domain.services.idempotency_service import (
    IdempotencyService,
    StoredResponse,
)
from billing_engine.shared.core.exceptions import BillingEngineException

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAYED_HEADER = "Idempotent-Replayed"
PROTECTED_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Idempotency-Key handling for mutating endpoints.

    Requests without the header pass straight through.
    """

    def __init__(self, app: ASGIApp, service: Optional[IdempotencyService] = None):
        super().__init__(app)
        self.service = service or IdempotencyService()

    async def dispatch(self, request: Request, call_next) -> Response:
        key = request.headers.get(IDEMPOTENCY_HEADER.lower())
        if request.method not in PROTECTED_METHODS or key is None:
            return await call_next(request)

        async def operation() -> StoredResponse:
            response = await call_next(request)
            body = b"".join([chunk async for chunk in response.body_iterator])
            return StoredResponse(
                status_code=response.status_code,
                body=body,
                media_type=response.headers.get("content-type"),
                headers=dict(response.headers),
            )

        try:
            stored = await self.service.execute(
                key=key,
                user_id=getattr(request.state, "user_id", None),
                method=request.method,
                path=request.url.path,
                operation=operation,
            )
        except BillingEngineException as exc:
            logger.info(f"Idempotency check rejected {request.method} {request.url.path}: {exc.message}")
            return billing_error_response(request, exc)

        response = Response(
            content=stored.body,
            status_code=stored.status_code,
            headers=stored.headers,
            media_type=stored.media_type,
        )
        if stored.replayed:
            response.headers[REPLAYED_HEADER] = "true"
        return response
