"""Services built on top of the approval core."""

from portal.services.notifications import NotificationService

__all__ = [
    "NotificationService",
]
