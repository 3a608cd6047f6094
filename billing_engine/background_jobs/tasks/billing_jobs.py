# 📄 File: billing_engine/background_jobs/tasks/billing_jobs.py
# 🧭 Purpose (Layman Explanation):
# The entries the background worker runs on the billing timetable. Each one wakes up, runs one
# scheduler job and reports what happened; if a job breaks, only that run is lost.
# 🧪 Purpose (Technical Summary):
# One Celery task per BillingScheduler job. Tasks are synchronous Celery entry points running the
# async job with asyncio.run. Each run opens and disposes the database engine and Redis pool in
# its own event loop; the stripe SDK and the CircuitBreakerRegistry live for the worker process.
# 🔗 Dependencies:
# celery, background_jobs.scheduler, shared.infrastructure.database, shared.core.circuit_breaker
# 🔄 Connected Modules / Calls From:
# celery_config.beat_schedule

import asyncio
import logging
from typing import Any, Dict, Optional

from billing_engine.background_jobs.celery_app import celery_app
from billing_engine.background_jobs.scheduler import BillingScheduler
from billing_engine.modules.payments.infrastructure.external.stripe_gateway import configure_stripe
from billing_engine.shared.config.redis import close_redis
from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.circuit_breaker import (
    CircuitBreakerRegistry,
    ResilientGateway,
    build_default_config,
)
from billing_engine.shared.infrastructure.database.connection import close_database, init_database
from billing_engine.shared.infrastructure.database.session import initialize_sessions
from billing_engine.shared.utils.logging import setup_logging

logger = logging.getLogger(__name__)

TASK_PREFIX = "billing_engine.background_jobs.tasks.billing_jobs"

# Per worker process; breaker state must not be shared across processes
_gateway: Optional[ResilientGateway] = None


def get_worker_gateway() -> ResilientGateway:
    global _gateway
    if _gateway is None:
        settings = get_settings()
        configure_stripe(settings)
        _gateway = ResilientGateway(CircuitBreakerRegistry(build_default_config(settings)))
    return _gateway


def _run_job(job_name: str) -> Dict[str, Any]:
    async def runner():
        # Pools are bound to the event loop, so each run opens and closes its own
        setup_logging()
        await init_database()
        initialize_sessions()
        try:
            scheduler = BillingScheduler(get_worker_gateway())
            return await getattr(scheduler, job_name)()
        finally:
            await close_redis()
            await close_database()

    try:
        return asyncio.run(runner())
    except Exception as e:
        logger.error(f"Scheduled job {job_name} could not run: {e}", exc_info=True)
        return {"failed": True, "error": str(e)}


@celery_app.task(name=f"{TASK_PREFIX}.check_upcoming_renewals")
def check_upcoming_renewals() -> Dict[str, Any]:
    return _run_job("check_upcoming_renewals")


@celery_app.task(name=f"{TASK_PREFIX}.check_failed_payments")
def check_failed_payments() -> Dict[str, Any]:
    return _run_job("check_failed_payments")


@celery_app.task(name=f"{TASK_PREFIX}.weekly_summary")
def weekly_summary() -> Dict[str, Any]:
    return _run_job("weekly_summary")


@celery_app.task(name=f"{TASK_PREFIX}.process_expired_subscriptions")
def process_expired_subscriptions() -> Dict[str, Any]:
    return _run_job("process_expired_subscriptions")


@celery_app.task(name=f"{TASK_PREFIX}.process_auto_renewals")
def process_auto_renewals() -> Dict[str, Any]:
    return _run_job("process_auto_renewals")


@celery_app.task(name=f"{TASK_PREFIX}.process_grace_periods")
def process_grace_periods() -> Dict[str, Any]:
    return _run_job("process_grace_periods")


@celery_app.task(name=f"{TASK_PREFIX}.purge_idempotency_keys")
def purge_idempotency_keys() -> Dict[str, Any]:
    return _run_job("purge_idempotency_keys")
