# 📄 File: billing_engine/main.py
#
# 🧭 Purpose (Layman Explanation):
# The control center that starts the billing engine, connects the database, Redis and Stripe,
# and makes sure every request passes through logging, error handling and duplicate protection.
#
# 🧪 Purpose (Technical Summary):
# FastAPI application factory and entry point: lifespan (logging, database engine and sessions,
# stripe SDK, per-process CircuitBreakerRegistry/ResilientGateway on app.state), exception
# handlers, CORS, the middleware stack and API v1 router registration.
#
# 🔗 Dependencies:
# - FastAPI framework, uvicorn
# - billing_engine.shared.config.settings
# - billing_engine.shared.infrastructure.database (connection, session)
# - billing_engine.api (middleware, v1 router)
#
# 🔄 Connected Modules / Calls From:
# - uvicorn server startup
# - Docker container entry point
# - tests (create_application)

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from billing_engine.api.middleware.error_handling import (
    ErrorHandlingMiddleware,
    billing_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from billing_engine.api.middleware.idempotency import IdempotencyMiddleware
from billing_engine.api.middleware.logging import RequestLoggingMiddleware
from billing_engine.api.v1.router import api_v1_router
from billing_engine.modules.payments.infrastructure.external.stripe_gateway import configure_stripe
from billing_engine.shared.config.redis import close_redis
from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.circuit_breaker import (
    CircuitBreakerRegistry,
    ResilientGateway,
    build_default_config,
)
from billing_engine.shared.core.exceptions import BillingEngineException
from billing_engine.shared.infrastructure.database.connection import close_database, init_database
from billing_engine.shared.infrastructure.database.session import initialize_sessions
from billing_engine.shared.utils.logging import setup_logging

settings = get_settings()

logger = logging.getLogger(__name__)


def build_resilient_gateway() -> ResilientGateway:
    """One breaker registry per process, shared by every request."""
    return ResilientGateway(CircuitBreakerRegistry(build_default_config(settings)))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Handles startup and shutdown of the database engine, session factory,
    stripe SDK configuration, circuit breakers and Redis pool.
    """
    setup_logging()
    logger.info("Billing Engine API starting up...")

    try:
        await init_database()
        logger.info("Database connection initialized")

        initialize_sessions()
        logger.info("Session manager initialized")

        configure_stripe(settings)
        app.state.resilient_gateway = build_resilient_gateway()
        logger.info("Payment processor client and circuit breakers initialized")

        logger.info("Billing Engine API startup complete")
        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    finally:
        logger.info("Billing Engine API shutting down...")
        try:
            await close_redis()
            await close_database()
            logger.info("Billing Engine API shutdown complete")
        except Exception as e:
            logger.error(f"Shutdown error: {e}")


def create_application() -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with all necessary
    middleware, routers, and settings based on the current environment.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
        debug=settings.DEBUG,
    )

    # =========================================================================
    # MIDDLEWARE CONFIGURATION (last added runs first)
    # =========================================================================

    # Innermost: replays and records idempotent responses
    app.add_middleware(IdempotencyMiddleware)

    app.add_middleware(ErrorHandlingMiddleware)

    # Outermost app middleware: request id and caller id for everything below
    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Idempotent-Replayed"],
    )

    # =========================================================================
    # EXCEPTION HANDLERS
    # =========================================================================

    app.add_exception_handler(BillingEngineException, billing_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # =========================================================================
    # ROUTER REGISTRATION
    # =========================================================================

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root() -> dict:
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "description": settings.APP_DESCRIPTION,
            "docs_url": "/docs" if settings.DEBUG else None,
            "health_check": "/api/v1/health",
            "api_base": "/api/v1",
        }

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    return app


# Create the FastAPI application
app = create_application()


def main():
    """Run the application with uvicorn (development entry point)."""
    uvicorn.run(
        "billing_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD and settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
        workers=1 if settings.RELOAD else settings.WORKERS,
    )


if __name__ == "__main__":
    main()
