"""Gmail implementation of the mail provider contract."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

import structlog

from mailsync.integrations.gmail.client import GmailApiError, GmailClient
from mailsync.integrations.gmail.parser import MailParseError, parse_label, parse_raw_message
from mailsync.integrations.gmail.rate_limiter import RateLimiter
from mailsync.providers.base import (
    HistoryCursorExpiredError,
    HistoryPage,
    HistoryRecord,
    MessagePage,
    WatchRegistration,
)

if TYPE_CHECKING:
    from mailsync.auth.coordinator import RefreshCoordinator
    from mailsync.auth.provider import AuthProvider
    from mailsync.integrations.gmail.models import GmailLabel, GmailMessage

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Gmail returns 404 for a startHistoryId older than its retention window
# and 400 for one it cannot parse.
CURSOR_REJECTED_STATUSES = frozenset({400, 404})

DEFAULT_WATCH_LIFETIME = timedelta(days=7)


def _message_ids(entries: object) -> list[str]:
    ids: list[str] = []
    if not isinstance(entries, list):
        return ids
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        message = entry.get("message")
        if isinstance(message, dict) and isinstance(message.get("id"), str):
            ids.append(message["id"])
    return ids


def normalize_history_record(raw: dict[str, object]) -> HistoryRecord:
    """Flatten a Gmail history record into per-kind message ID lists."""
    return HistoryRecord(
        id=str(raw.get("id", "")),
        messages_added=_message_ids(raw.get("messagesAdded")),
        messages_deleted=_message_ids(raw.get("messagesDeleted")),
        labels_added=_message_ids(raw.get("labelsAdded")),
        labels_removed=_message_ids(raw.get("labelsRemoved")),
    )


class GmailMailProvider:
    """Mail provider backed by the Gmail REST API.

    Keeps one ``GmailClient`` per account. Tokens come from the Auth
    Provider; a 401 triggers exactly one refresh through the shared
    ``RefreshCoordinator`` before the call is retried. If the refresh itself
    fails, ``AuthExpiredError`` propagates to the caller.

    Example:
        coordinator = RefreshCoordinator(auth_provider)
        provider = GmailMailProvider(auth_provider, coordinator)
        page = await provider.list_messages("acct-1", max_results=50)
    """

    def __init__(
        self,
        auth_provider: AuthProvider,
        refresh_coordinator: RefreshCoordinator,
        requests_per_second: int = 10,
        request_timeout: float = 30.0,
    ) -> None:
        """Initialize Gmail provider.

        Args:
            auth_provider: Source of access tokens.
            refresh_coordinator: Shared refresh de-duplicator.
            requests_per_second: Per-account request rate.
            request_timeout: Per-request timeout in seconds.
        """
        self._auth_provider = auth_provider
        self._refresh_coordinator = refresh_coordinator
        self._requests_per_second = requests_per_second
        self._request_timeout = request_timeout
        self._clients: dict[str, GmailClient] = {}

    async def _client_for(self, account_id: str) -> GmailClient:
        client = self._clients.get(account_id)
        if client is None:
            token = await self._auth_provider.get_access_token(account_id)
            client = GmailClient(
                access_token=token,
                rate_limiter=RateLimiter(self._requests_per_second),
                timeout=self._request_timeout,
            )
            self._clients[account_id] = client
        return client

    async def _refresh(self, account_id: str, client: GmailClient) -> None:
        token = await self._refresh_coordinator.refresh(account_id)
        client.set_access_token(token)

    async def _call(self, account_id: str, fn: Callable[[GmailClient], Awaitable[T]]) -> T:
        client = await self._client_for(account_id)
        try:
            return await fn(client)
        except GmailApiError as e:
            if e.status_code != 401:
                raise
            await logger.ainfo("gmail_token_rejected", account_id=account_id)
            await self._refresh(account_id, client)
            return await fn(client)

    async def close_account(self, account_id: str) -> None:
        """Close and forget the client of a removed account."""
        client = self._clients.pop(account_id, None)
        if client is not None:
            await client.close()

    async def close(self) -> None:
        """Close every cached client."""
        clients = list(self._clients.values())
        self._clients.clear()
        await asyncio.gather(*(client.close() for client in clients))

    async def list_labels(self, account_id: str) -> list[GmailLabel]:
        """List all labels of the mailbox."""
        raw_labels = await self._call(account_id, lambda c: c.list_labels())
        labels = []
        for raw in raw_labels:
            try:
                labels.append(parse_label(raw))
            except MailParseError as e:
                await logger.awarning("label_parse_failed", account_id=account_id, error=str(e))
        return labels

    async def get_history_cursor(self, account_id: str) -> str | None:
        """Return the mailbox's current history ID."""
        profile = await self._call(account_id, lambda c: c.get_profile())
        history_id = profile.get("historyId")
        return str(history_id) if history_id else None

    async def list_messages(
        self,
        account_id: str,
        page_token: str | None = None,
        max_results: int = 50,
        label_ids: list[str] | None = None,
        query: str | None = None,
    ) -> MessagePage:
        """List one page of message references."""
        refs, next_token = await self._call(
            account_id,
            lambda c: c.list_messages(
                max_results=max_results,
                page_token=page_token,
                query=query,
                label_ids=label_ids,
            ),
        )
        return MessagePage(refs=refs, next_page_token=next_token)

    async def get_message(self, account_id: str, message_id: str) -> GmailMessage:
        """Fetch and parse one full message."""
        raw = await self._call(account_id, lambda c: c.get_message(message_id))
        return parse_raw_message(raw)

    async def batch_get_messages(
        self, account_id: str, message_ids: list[str]
    ) -> list[GmailMessage | Exception]:
        """Fetch several messages; API and parse errors are returned in place."""
        client = await self._client_for(account_id)
        raw_results: list[dict[str, object] | GmailApiError] = await client.batch_get_messages(
            message_ids
        )

        unauthorized = [
            i
            for i, r in enumerate(raw_results)
            if isinstance(r, GmailApiError) and r.status_code == 401
        ]
        if unauthorized:
            await self._refresh(account_id, client)
            retried = await client.batch_get_messages([message_ids[i] for i in unauthorized])
            for index, result in zip(unauthorized, retried, strict=True):
                raw_results[index] = result

        messages: list[GmailMessage | Exception] = []
        for raw in raw_results:
            if isinstance(raw, GmailApiError):
                messages.append(raw)
                continue
            try:
                messages.append(parse_raw_message(raw))
            except MailParseError as e:
                messages.append(e)
        return messages

    async def get_history(
        self, account_id: str, cursor: str, page_token: str | None = None
    ) -> HistoryPage:
        """Fetch one page of changes since a history ID.

        Raises:
            HistoryCursorExpiredError: If Gmail rejects the start history ID.
        """
        try:
            raw_records, next_token, latest = await self._call(
                account_id,
                lambda c: c.get_history(start_history_id=cursor, page_token=page_token),
            )
        except GmailApiError as e:
            if e.status_code in CURSOR_REJECTED_STATUSES:
                raise HistoryCursorExpiredError(cursor, account_id) from e
            raise

        return HistoryPage(
            records=[normalize_history_record(raw) for raw in raw_records],
            next_page_token=next_token,
            cursor=latest,
        )

    async def modify_labels(
        self,
        account_id: str,
        message_ids: list[str],
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> None:
        """Apply a label delta with messages.batchModify."""
        await self._call(
            account_id,
            lambda c: c.batch_modify(
                message_ids,
                add_label_ids=add_label_ids,
                remove_label_ids=remove_label_ids,
            ),
        )

    async def trash_messages(self, account_id: str, message_ids: list[str]) -> None:
        """Trash messages one by one (Gmail has no batch trash)."""
        for message_id in message_ids:
            await self._call(account_id, lambda c, mid=message_id: c.trash_message(mid))

    async def watch(self, account_id: str, topic_name: str) -> WatchRegistration:
        """Register a Gmail watch on the account's INBOX."""
        history_id, expiration_ms = await self._call(
            account_id, lambda c: c.watch(topic_name=topic_name)
        )
        if expiration_ms:
            expires_at = datetime.fromtimestamp(expiration_ms / 1000, tz=UTC)
        else:
            expires_at = datetime.now(UTC) + DEFAULT_WATCH_LIFETIME
        return WatchRegistration(cursor=history_id or None, expires_at=expires_at)

    async def stop_watch(self, account_id: str) -> None:
        """Stop the account's Gmail watch."""
        await self._call(account_id, lambda c: c.stop_watch())
