# 📄 File: billing_engine/api/middleware/__init__.py
# 🧭 Purpose (Layman Explanation):
# The helpers that look at every request on its way in and out: writing it to the log, turning
# errors into tidy responses, and making sure a repeated payment request is not charged twice.
# 🧪 Purpose (Technical Summary):
# Package initialization for API middleware components.
# 🔗 Dependencies:
# Starlette BaseHTTPMiddleware, billing_engine.shared.core
# 🔄 Connected Modules / Calls From:
# billing_engine.main (middleware registration)

"""
Billing Engine API Middleware Package

Middleware Stack Order (registered innermost first):
    1. IdempotencyMiddleware (innermost - replays stored responses)
    2. ErrorHandlingMiddleware (turns unhandled errors into 500 envelopes)
    3. RequestLoggingMiddleware (outermost - request id, caller id, timing)

Usage:
    app.add_middleware(IdempotencyMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
"""

from .error_handling import ErrorHandlingMiddleware
from .idempotency import IdempotencyMiddleware
from .logging import RequestLoggingMiddleware

__all__ = [
    "ErrorHandlingMiddleware",
    "IdempotencyMiddleware",
    "RequestLoggingMiddleware",
]
