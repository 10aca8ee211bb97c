"""Auth Provider contract consumed by the sync engine.

Token exchange and credential storage live outside this package. The sync
engine only needs to read the current access token, ask for a refresh, and
learn when the user has to sign in again.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class AuthExpiredError(Exception):
    """Raised when an account's credentials can no longer be refreshed.

    Attributes:
        account_id: Account that requires re-authentication.
    """

    def __init__(self, account_id: str, message: str | None = None) -> None:
        self.account_id = account_id
        super().__init__(message or f"Re-authentication required for account {account_id}")


@runtime_checkable
class AuthProvider(Protocol):
    """Narrow view of the external authentication component."""

    async def get_access_token(self, account_id: str) -> str:
        """Return the current access token for an account."""
        ...

    async def refresh_token(self, account_id: str) -> str:
        """Refresh and return a new access token.

        Raises:
            AuthExpiredError: If the refresh grant is no longer valid.
        """
        ...

    async def is_authenticated(self, account_id: str) -> bool:
        """Check whether the account currently holds usable credentials."""
        ...
