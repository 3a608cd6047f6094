# 📄 File: billing_engine/api/v1/health.py
# 🧭 Purpose (Layman Explanation):
# Endpoints that tell operators whether the billing engine is working: is the database reachable,
# is Redis up, and are we currently refusing to call Stripe because it has been failing.
# 🧪 Purpose (Technical Summary):
# Health check and operational endpoints: liveness/readiness probes, a detailed component check
# (database, Redis, circuit breakers) and circuit breaker statistics with a manual reset.
# 🔗 Dependencies:
# FastAPI, billing_engine.shared.infrastructure.database.connection, billing_engine.shared.config.redis
# 🔄 Connected Modules / Calls From:
# billing_engine.api.v1.router, billing_engine.main, monitoring systems, load balancers

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from billing_engine.shared.config.redis import check_redis_health
from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.circuit_breaker import CircuitBreakerState
from billing_engine.shared.core.exceptions import NotFoundError
from billing_engine.shared.infrastructure.database.connection import database_health_check

logger = logging.getLogger(__name__)

SERVICE_NAME = "billing-engine"

health_router = APIRouter()

# Application start time for uptime calculation
_app_start_time = datetime.now(timezone.utc)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_router.get("/health",
                   summary="Basic Health Check",
                   description="Basic health check endpoint for load balancers and monitoring",
                   tags=["Health Check"])
async def health_check() -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "timestamp": _now(),
            "service": SERVICE_NAME,
            "version": get_settings().APP_VERSION
        }
    )


@health_router.get("/health/detailed",
                   summary="Detailed Health Check",
                   description="Database, Redis and circuit breaker status",
                   tags=["Health Check"])
async def detailed_health_check(request: Request) -> JSONResponse:
    """
    Comprehensive health check for all system components.

    The database is critical (unhealthy -> 503); Redis and open circuit
    breakers only degrade the service.
    """
    start_time = datetime.now(timezone.utc)
    overall_status = "healthy"
    components = {}

    try:
        db_health = await database_health_check()
    except Exception as e:
        db_health = {"status": "unhealthy", "error": str(e)}
    components["database"] = db_health
    if db_health.get("status") != "healthy":
        overall_status = "unhealthy"

    redis_health = await check_redis_health()
    components["redis"] = redis_health
    if redis_health.get("status") != "healthy" and overall_status == "healthy":
        overall_status = "degraded"

    breakers = _circuit_breaker_stats(request)
    open_breakers = [
        name for name, stats in breakers.items()
        if stats.get("state") == CircuitBreakerState.OPEN.value
    ]
    components["circuit_breakers"] = {
        "status": "degraded" if open_breakers else "healthy",
        "open": open_breakers,
        "total": len(breakers),
    }
    if open_breakers and overall_status == "healthy":
        overall_status = "degraded"

    now = datetime.now(timezone.utc)
    return JSONResponse(
        status_code=503 if overall_status == "unhealthy" else 200,
        content={
            "status": overall_status,
            "timestamp": now.isoformat(),
            "service": SERVICE_NAME,
            "version": get_settings().APP_VERSION,
            "uptime_seconds": (now - _app_start_time).total_seconds(),
            "response_time_seconds": (now - start_time).total_seconds(),
            "components": components
        }
    )


@health_router.get("/health/live",
                   summary="Liveness Probe",
                   description="Kubernetes liveness probe endpoint",
                   tags=["Health Check"])
async def liveness_probe() -> Response:
    return Response(status_code=200, content="OK")


@health_router.get("/health/ready",
                   summary="Readiness Probe",
                   description="Kubernetes readiness probe endpoint",
                   tags=["Health Check"])
async def readiness_probe() -> JSONResponse:
    """
    Returns 200 once the database is reachable.
    """
    try:
        db_health = await database_health_check()
    except Exception as e:
        logger.error(f"Readiness probe failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": str(e), "timestamp": _now()}
        )

    if db_health.get("status") == "healthy":
        return JSONResponse(status_code=200, content={"status": "ready", "timestamp": _now()})
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "reason": "database_unhealthy", "timestamp": _now()}
    )


# =========================================================================
# CIRCUIT BREAKERS
# =========================================================================

def _circuit_breaker_stats(request: Request):
    gateway = getattr(request.app.state, "resilient_gateway", None)
    if gateway is None:
        return {}
    return gateway.get_all_stats()


@health_router.get("/health/circuit-breakers",
                   summary="Circuit Breaker Statistics",
                   description="State and rolling counters of every registered circuit breaker",
                   tags=["Health Check"])
async def circuit_breaker_stats(request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content={"timestamp": _now(), "circuit_breakers": _circuit_breaker_stats(request)}
    )


@health_router.post("/health/circuit-breakers/{name}/reset",
                    summary="Reset Circuit Breaker",
                    description="Force a circuit breaker back to closed and clear its window",
                    tags=["Health Check"])
async def reset_circuit_breaker(name: str, request: Request) -> JSONResponse:
    gateway = request.app.state.resilient_gateway
    if not await gateway.registry.reset_by_name(name):
        raise NotFoundError(f"Circuit breaker '{name}' not found", resource_type="circuit_breaker", resource_id=name)

    logger.warning(f"Circuit breaker '{name}' reset manually")
    return JSONResponse(
        status_code=200,
        content={"name": name, "reset": True, "status": gateway.get_stats(name)}
    )
