"""De-duplication of concurrent token refreshes."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from mailsync.auth.provider import AuthProvider

logger = structlog.get_logger(__name__)


class RefreshCoordinator:
    """Shares one in-flight token refresh between concurrent callers.

    When several requests for the same account hit an expired token at once,
    only the first one calls the Auth Provider; the rest await the same
    future. The coordinator is injected wherever refreshes happen, so two
    coordinators never share state.

    Example:
        coordinator = RefreshCoordinator(auth_provider)
        token = await coordinator.refresh("acct-1")
    """

    def __init__(self, auth_provider: AuthProvider) -> None:
        """Initialize coordinator.

        Args:
            auth_provider: Provider used to perform the actual refresh.
        """
        self.auth_provider = auth_provider
        self._in_flight: dict[str, asyncio.Future[str]] = {}

    def is_refreshing(self, account_id: str) -> bool:
        """Check whether a refresh is in progress for an account."""
        return account_id in self._in_flight

    async def refresh(self, account_id: str) -> str:
        """Refresh the account's token, joining an in-flight refresh if any.

        Args:
            account_id: Account whose token should be refreshed.

        Returns:
            The new access token.

        Raises:
            AuthExpiredError: If the Auth Provider reports the grant expired.
        """
        pending = self._in_flight.get(account_id)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._in_flight[account_id] = future
        try:
            token = await self.auth_provider.refresh_token(account_id)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a refresh nobody joined does not warn on GC
            future.exception()
            await logger.awarning("token_refresh_failed", account_id=account_id, error=str(e))
            raise
        else:
            future.set_result(token)
            await logger.ainfo("token_refreshed", account_id=account_id)
            return token
        finally:
            self._in_flight.pop(account_id, None)
