# 📄 File: celery_config.py
#
# 🧭 Purpose (Layman Explanation):
# Configuration for our background task system (Celery) that sends billing notifications and
# runs the billing timetable: renewal reminders, failed payment checks, the weekly summary and
# the subscription expiry/renewal sweeps.
#
# 🧪 Purpose (Technical Summary):
# Celery configuration for distributed task processing, queue management and beat scheduling
# with Redis as message broker and result backend. Processor-facing jobs run on crontab
# schedules; state sweeps run on a fixed interval.
#
# 🔗 Dependencies:
# - celery Python package
# - Redis server (message broker)
# - billing_engine.shared.config.settings
#
# 🔄 Connected Modules / Calls From:
# - billing_engine/background_jobs/celery_app.py
# - Docker Compose services (celery worker, celery beat)

import os
from datetime import timedelta

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from billing_engine.shared.config.settings import get_settings

settings = get_settings()

TASKS = "billing_engine.background_jobs.tasks"

# =============================================================================
# CELERY CONFIGURATION CLASS
# =============================================================================


class CeleryConfig:
    """
    Celery configuration class for the Billing Engine.

    Defines all settings for task execution, routing, scheduling,
    and performance optimization.
    """

    # =========================================================================
    # BROKER AND BACKEND SETTINGS
    # =========================================================================

    broker_url = settings.CELERY_BROKER_URL
    result_backend = settings.CELERY_RESULT_BACKEND

    # Broker connection settings
    broker_connection_retry_on_startup = True
    broker_connection_retry = True
    broker_connection_max_retries = 10
    broker_heartbeat = 30
    broker_pool_limit = 10

    result_expires = timedelta(hours=24)  # Results expire after 24 hours
    result_persistent = True

    # =========================================================================
    # TASK SETTINGS
    # =========================================================================

    task_serializer = "json"
    result_serializer = "json"
    accept_content = ["json"]
    timezone = "UTC"
    enable_utc = True

    task_default_queue = "default"
    task_default_exchange = "default"
    task_default_exchange_type = "direct"
    task_default_routing_key = "default"

    # Task execution limits
    task_time_limit = 600  # 10 minutes hard limit
    task_soft_time_limit = 540
    task_acks_late = True
    worker_prefetch_multiplier = 1

    task_reject_on_worker_lost = True
    task_ignore_result = False

    # =========================================================================
    # QUEUE DEFINITIONS
    # =========================================================================

    task_routes = {
        # Processor-facing jobs share the payment API breaker budget
        f"{TASKS}.billing_jobs.check_failed_payments": {"queue": "billing"},
        f"{TASKS}.billing_jobs.weekly_summary": {"queue": "billing"},
        f"{TASKS}.billing_jobs.check_upcoming_renewals": {"queue": "billing"},

        # Local state sweeps
        f"{TASKS}.billing_jobs.process_expired_subscriptions": {"queue": "sweeps"},
        f"{TASKS}.billing_jobs.process_auto_renewals": {"queue": "sweeps"},
        f"{TASKS}.billing_jobs.process_grace_periods": {"queue": "sweeps"},
        f"{TASKS}.billing_jobs.purge_idempotency_keys": {"queue": "low_priority"},

        f"{TASKS}.notification_sending.*": {"queue": "notifications"},
    }

    task_queues = (
        Queue("billing", routing_key="billing", priority=8),
        Queue("sweeps", routing_key="sweeps", priority=6),
        Queue("notifications", routing_key="notifications", priority=7),
        Queue("low_priority", routing_key="low_priority", priority=1),
        Queue("default", routing_key="default", priority=3),
    )

    # =========================================================================
    # WORKER SETTINGS
    # =========================================================================

    worker_max_tasks_per_child = 1000
    worker_max_memory_per_child = 200000  # 200MB memory limit per worker
    worker_disable_rate_limits = False
    worker_enable_remote_control = True

    worker_concurrency = int(os.getenv("CELERY_WORKER_CONCURRENCY", 4))
    worker_pool = "prefork"

    worker_log_format = "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s"
    worker_task_log_format = "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s"

    # =========================================================================
    # BEAT SCHEDULER SETTINGS
    # =========================================================================

    beat_schedule = {
        "check-upcoming-renewals": {
            "task": f"{TASKS}.billing_jobs.check_upcoming_renewals",
            "schedule": crontab(minute=0, hour=9),  # Daily at 09:00 UTC
            "options": {"queue": "billing"}
        },
        "check-failed-payments": {
            "task": f"{TASKS}.billing_jobs.check_failed_payments",
            "schedule": crontab(minute=0, hour="9-17", day_of_week="1-5"),  # Hourly, business hours
            "options": {"queue": "billing"}
        },
        "weekly-billing-summary": {
            "task": f"{TASKS}.billing_jobs.weekly_summary",
            "schedule": crontab(minute=0, hour=8, day_of_week=1),  # Mondays at 08:00 UTC
            "options": {"queue": "billing"}
        },
        "process-expired-subscriptions": {
            "task": f"{TASKS}.billing_jobs.process_expired_subscriptions",
            "schedule": timedelta(minutes=settings.SWEEP_INTERVAL_MINUTES),
            "options": {"queue": "sweeps"}
        },
        "process-auto-renewals": {
            "task": f"{TASKS}.billing_jobs.process_auto_renewals",
            "schedule": timedelta(minutes=settings.SWEEP_INTERVAL_MINUTES),
            "options": {"queue": "sweeps"}
        },
        "process-grace-periods": {
            "task": f"{TASKS}.billing_jobs.process_grace_periods",
            "schedule": timedelta(minutes=settings.SWEEP_INTERVAL_MINUTES),
            "options": {"queue": "sweeps"}
        },
        "purge-idempotency-keys": {
            "task": f"{TASKS}.billing_jobs.purge_idempotency_keys",
            "schedule": timedelta(hours=1),
            "options": {"queue": "low_priority"}
        },
    }

    beat_scheduler = "celery.beat:PersistentScheduler"
    beat_schedule_filename = "celerybeat-schedule"

    # =========================================================================
    # MONITORING AND LOGGING
    # =========================================================================

    task_send_sent_event = True
    task_track_started = True
    task_publish_retry = True
    task_publish_retry_policy = {
        "max_retries": 3,
        "interval_start": 0,
        "interval_step": 0.2,
        "interval_max": 0.2,
    }

    worker_send_task_events = True
    event_serializer = "json"

    # Our own logging setup owns the root logger
    worker_hijack_root_logger = False
    worker_log_color = False if settings.is_production else True

    broker_transport_options = {
        "visibility_timeout": 3600,  # 1 hour
        "priority_steps": list(range(10)),
        "sep": ":",
        "queue_order_strategy": "priority",
    }

    task_compression = "gzip"
    result_compression = "gzip"


# =============================================================================
# ENVIRONMENT-SPECIFIC CONFIGURATIONS
# =============================================================================

class DevelopmentCeleryConfig(CeleryConfig):
    """Development-specific Celery configuration."""

    worker_log_level = "DEBUG"


class ProductionCeleryConfig(CeleryConfig):
    """Production-specific Celery configuration."""

    worker_log_level = "INFO"
    worker_max_tasks_per_child = 5000
    worker_max_memory_per_child = 500000  # 500MB for production


class TestCeleryConfig(CeleryConfig):
    """Tasks run inline; no broker is contacted."""

    task_always_eager = True
    task_eager_propagates = False
    task_store_eager_result = False


# =============================================================================
# CONFIG FACTORY
# =============================================================================

def get_celery_config() -> CeleryConfig:
    """
    Factory function to get appropriate Celery configuration based on environment.

    Returns:
        CeleryConfig: Configuration instance for current environment
    """
    config_map = {
        "development": DevelopmentCeleryConfig,
        "staging": ProductionCeleryConfig,
        "production": ProductionCeleryConfig,
        "test": TestCeleryConfig,
    }

    config_class = config_map.get(settings.ENVIRONMENT, DevelopmentCeleryConfig)
    return config_class()


# =============================================================================
# CELERY APPLICATION INSTANCE
# =============================================================================

app = Celery("billing_engine")

celery_config = get_celery_config()
app.config_from_object(celery_config)

app.autodiscover_tasks([
    f"{TASKS}.billing_jobs",
    f"{TASKS}.notification_sending",
], related_name=None)


if __name__ == "__main__":
    app.start()
