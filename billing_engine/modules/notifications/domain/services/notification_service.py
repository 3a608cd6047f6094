# 📄 File: billing_engine/modules/notifications/domain/services/notification_service.py
# 🧭 Purpose (Layman Explanation):
# Hands billing messages (receipts, failed payment notices, renewal reminders) to the background
# worker to deliver, without making the caller wait or fail if delivery has problems.
# 🧪 Purpose (Technical Summary):
# Fire-and-forget dispatcher enqueuing the send_billing_notification Celery task. Broker
# failures are logged and swallowed: notifications are best-effort side effects.
# 🔗 Dependencies:
# background_jobs.tasks.notification_sending (Celery task), logging
# 🔄 Connected Modules / Calls From:
# billing_service.py, webhook_reconciler.py, background_jobs/scheduler.py

import logging
from typing import Any, Dict, Optional

from billing_engine.modules.notifications.domain.models.notification import NotificationKind

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(self, task=None):
        # Resolved lazily so importing the service never requires a Celery app
        self._task = task

    @property
    def task(self):
        if self._task is None:
            from billing_engine.background_jobs.tasks.notification_sending import send_billing_notification
            self._task = send_billing_notification
        return self._task

    def notify(self, kind: NotificationKind, recipient: Optional[str], context: Dict[str, Any]) -> bool:
        """Enqueue a notification. Returns False if it could not be enqueued."""
        if not recipient:
            logger.info(f"No recipient for {kind.value} notification, skipping")
            return False
        try:
            self.task.delay(kind.value, recipient, context)
            logger.info(f"Queued {kind.value} notification for {recipient}")
            return True
        except Exception as e:
            logger.error(f"Failed to queue {kind.value} notification for {recipient}: {e}")
            return False
