"""Authentication contract and token refresh coordination."""

from mailsync.auth.coordinator import RefreshCoordinator
from mailsync.auth.provider import AuthExpiredError, AuthProvider

__all__ = [
    "AuthExpiredError",
    "AuthProvider",
    "RefreshCoordinator",
]
