from billing_engine.modules.notifications.domain.services.notification_service import NotificationService

__all__ = ["NotificationService"]
