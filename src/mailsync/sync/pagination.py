"""Token-stack pagination over remote message listings.

A ``PaginationCursor`` remembers the continuation token of every page the
user has visited, so "previous page" can be refetched from the provider.
State lives in a single frozen ``PaginationState`` that is replaced as a
whole on every move; the loaded count is derived from the stack and is
never tracked on its own.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from mailsync.integrations.gmail.models import GmailMessage
    from mailsync.providers.base import MailProvider
    from mailsync.sync.store import MailStateStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaginationState:
    """Snapshot of a paginated view.

    Attributes:
        next_page_token: Token for the page after the current one.
        stack: Tokens of the visited pages, oldest first. The first page's
            token is ``None``.
        page_size: Fixed number of items per page.
    """

    next_page_token: str | None = None
    stack: tuple[str | None, ...] = ()
    page_size: int = 50

    @property
    def loaded_count(self) -> int:
        """Items loaded so far, always ``len(stack) * page_size``."""
        return len(self.stack) * self.page_size


class PaginationCursor:
    """Forward/backward navigation over opaque continuation tokens.

    Example:
        cursor = PaginationCursor(page_size=50)
        cursor.advance(None, next_page_token="t2")  # page 1 fetched
        cursor.advance("t2", next_page_token="t3")  # page 2 fetched
        cursor.retreat()  # -> None, the token to refetch page 1
    """

    def __init__(self, page_size: int = 50) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._state = PaginationState(page_size=page_size)

    @property
    def state(self) -> PaginationState:
        return self._state

    @property
    def page_size(self) -> int:
        return self._state.page_size

    @property
    def loaded_count(self) -> int:
        return self._state.loaded_count

    @property
    def next_page_token(self) -> str | None:
        return self._state.next_page_token

    @property
    def current_token(self) -> str | None:
        return self._state.stack[-1] if self._state.stack else None

    @property
    def has_next(self) -> bool:
        return self._state.next_page_token is not None

    @property
    def has_previous(self) -> bool:
        return len(self._state.stack) > 1

    @property
    def page_number(self) -> int:
        """One-based number of the current page, 0 before the first fetch."""
        return len(self._state.stack)

    def advance(self, token: str | None, next_page_token: str | None = None) -> PaginationState:
        """Record a forward fetch of the page identified by ``token``."""
        self._state = replace(
            self._state,
            stack=(*self._state.stack, token),
            next_page_token=next_page_token,
        )
        return self._state

    def retreat(self) -> str | None:
        """Step back one page.

        Returns:
            The token to refetch the new current page with, or ``None`` when
            that page is the first one.
        """
        stack = self._state.stack
        if not stack:
            return None
        popped = stack[-1]
        remaining = stack[:-1]
        # The page we leave is by construction the successor of the new top.
        self._state = replace(
            self._state,
            stack=remaining,
            next_page_token=popped if remaining else None,
        )
        return remaining[-1] if remaining else None

    def jump_to(self, token: str | None, next_page_token: str | None = None) -> PaginationState:
        """Make ``token``'s page current.

        A token already on the stack truncates the stack back to it; an
        unseen token is pushed as a new page.
        """
        stack = self._state.stack
        if token in stack:
            index = stack.index(token)
            new_stack = stack[: index + 1]
        else:
            new_stack = (*stack, token)
        self._state = replace(self._state, stack=new_stack, next_page_token=next_page_token)
        return self._state

    def peek_previous(self) -> str | None:
        """Return the token ``retreat`` would return, without moving."""
        stack = self._state.stack
        return stack[-2] if len(stack) > 1 else None

    def set_next_page_token(self, token: str | None) -> None:
        self._state = replace(self._state, next_page_token=token)

    def reset(self, page_size: int | None = None) -> None:
        """Forget every visited page (view, filter or query changed)."""
        size = page_size if page_size is not None else self._state.page_size
        if size <= 0:
            raise ValueError("page_size must be positive")
        self._state = PaginationState(page_size=size)


class MessagePager:
    """Pagination controls over one account's message listing.

    Each move fetches the target page first and only then updates the
    cursor, so a failed request leaves the view where it was. Fetched
    messages are upserted into the store.
    """

    def __init__(
        self,
        provider: MailProvider,
        store: MailStateStore,
        account_id: str,
        page_size: int = 50,
        label_ids: list[str] | None = None,
        query: str | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        self.provider = provider
        self.store = store
        self.account_id = account_id
        self.label_ids = label_ids
        self.query = query
        self.request_timeout = request_timeout
        self.cursor = PaginationCursor(page_size=page_size)

    @property
    def state(self) -> PaginationState:
        return self.cursor.state

    async def _fetch(self, token: str | None) -> tuple[list[GmailMessage], str | None]:
        page = await asyncio.wait_for(
            self.provider.list_messages(
                self.account_id,
                page_token=token,
                max_results=self.cursor.page_size,
                label_ids=self.label_ids,
                query=self.query,
            ),
            timeout=self.request_timeout,
        )
        results = await asyncio.wait_for(
            self.provider.batch_get_messages(self.account_id, [ref.id for ref in page.refs]),
            timeout=self.request_timeout,
        )

        messages: list[GmailMessage] = []
        for ref, result in zip(page.refs, results, strict=True):
            if isinstance(result, Exception):
                await logger.awarning(
                    "page_message_fetch_failed",
                    account_id=self.account_id,
                    message_id=ref.id,
                    error=str(result),
                )
                continue
            messages.append(result)

        self.store.upsert_messages(self.account_id, messages)
        return messages, page.next_page_token

    async def first_page(self) -> list[GmailMessage]:
        messages, next_token = await self._fetch(None)
        self.cursor.reset()
        self.cursor.advance(None, next_token)
        return messages

    async def next_page(self) -> list[GmailMessage]:
        """Fetch the following page; returns ``[]`` when there is none."""
        if self.cursor.page_number == 0:
            return await self.first_page()
        if not self.cursor.has_next:
            return []
        token = self.cursor.next_page_token
        messages, next_token = await self._fetch(token)
        self.cursor.advance(token, next_token)
        return messages

    async def prev_page(self) -> list[GmailMessage]:
        """Refetch the page before the current one; returns ``[]`` on page one."""
        if not self.cursor.has_previous:
            return []
        token = self.cursor.peek_previous()
        messages, next_token = await self._fetch(token)
        self.cursor.retreat()
        if next_token != self.cursor.next_page_token:
            self.cursor.set_next_page_token(next_token)
        return messages

    async def go_to_page(self, token: str | None) -> list[GmailMessage]:
        """Fetch the page a previously seen token points at."""
        messages, next_token = await self._fetch(token)
        self.cursor.jump_to(token, next_token)
        return messages

    def reset(
        self,
        label_ids: list[str] | None = None,
        query: str | None = None,
        page_size: int | None = None,
    ) -> None:
        """Switch the view to a new filter and start over."""
        self.label_ids = label_ids
        self.query = query
        self.cursor.reset(page_size)
