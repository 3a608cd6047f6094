# 📄 File: billing_engine/background_jobs/celery_app.py
# 🧭 Purpose (Layman Explanation):
# Gives the billing code a handle on the background worker system so tasks can be registered
# and queued.
# 🧪 Purpose (Technical Summary):
# Re-exports the configured Celery application from celery_config so task modules bind to it
# (and to its queues, serializers and eager mode under test) instead of Celery's default app.
# 🔗 Dependencies:
# celery_config
# 🔄 Connected Modules / Calls From:
# background_jobs/tasks/*.py

from celery_config import app as celery_app

__all__ = ["celery_app"]
