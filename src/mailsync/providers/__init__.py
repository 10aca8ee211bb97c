"""Mail provider contract and implementations.

Example:
    from mailsync.auth import RefreshCoordinator
    from mailsync.providers import GmailMailProvider

    provider = GmailMailProvider(auth_provider, RefreshCoordinator(auth_provider))
    page = await provider.list_messages("acct-1")
"""

from mailsync.providers.base import (
    HistoryCursorExpiredError,
    HistoryPage,
    HistoryRecord,
    MailProvider,
    MailProviderError,
    MessagePage,
    WatchRegistration,
)
from mailsync.providers.gmail import GmailMailProvider, normalize_history_record

__all__ = [
    "GmailMailProvider",
    "HistoryCursorExpiredError",
    "HistoryPage",
    "HistoryRecord",
    "MailProvider",
    "MailProviderError",
    "MessagePage",
    "WatchRegistration",
    "normalize_history_record",
]
