from billing_engine.modules.notifications.domain.models.notification import NotificationKind, format_amount, render

__all__ = ["NotificationKind", "format_amount", "render"]
