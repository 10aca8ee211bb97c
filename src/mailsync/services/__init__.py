"""Change detection services and the sync facade."""

from mailsync.services.mail_sync import MailSyncService
from mailsync.services.polling import PollingScheduler
from mailsync.services.push_notification import (
    InvalidNotificationError,
    NotificationData,
    NotificationDeduplicator,
    NotificationResult,
    PushNotificationBridge,
    PushNotificationError,
    parse_notification,
)

__all__ = [
    "InvalidNotificationError",
    "MailSyncService",
    "NotificationData",
    "NotificationDeduplicator",
    "NotificationResult",
    "PollingScheduler",
    "PushNotificationBridge",
    "PushNotificationError",
    "parse_notification",
]
