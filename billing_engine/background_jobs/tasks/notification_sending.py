# 📄 File: billing_engine/background_jobs/tasks/notification_sending.py
# 🧭 Purpose (Layman Explanation):
# The background worker that actually sends billing messages (receipts, failed payment notices,
# renewal reminders) so the web request or webhook never waits on it.
# 🧪 Purpose (Technical Summary):
# Celery task rendering a NotificationKind template with its context. Delivery is logged; a
# provider integration would replace the log call. Unknown kinds are reported, not retried.
# 🔗 Dependencies:
# celery, notifications.domain.models.notification
# 🔄 Connected Modules / Calls From:
# notifications.domain.services.notification_service (task.delay)

import logging
from typing import Any, Dict

from billing_engine.background_jobs.celery_app import celery_app
from billing_engine.modules.notifications.domain.models.notification import NotificationKind, render

logger = logging.getLogger(__name__)


@celery_app.task(name="billing_engine.background_jobs.tasks.notification_sending.send_billing_notification")
def send_billing_notification(kind: str, recipient: str, context: Dict[str, Any]) -> Dict[str, Any]:
    try:
        notification_kind = NotificationKind(kind)
    except ValueError:
        logger.error(f"Unknown notification kind '{kind}' for {recipient}")
        return {"sent": False, "reason": "unknown_kind"}

    subject, body = render(notification_kind, context)
    logger.info(f"Sending {kind} notification to {recipient}: {subject} | {body}")
    return {"sent": True, "kind": kind, "recipient": recipient, "subject": subject}
