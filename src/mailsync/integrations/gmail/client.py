"""Gmail API client for sync operations."""

from __future__ import annotations

import asyncio

import httpx

from mailsync.integrations.gmail.models import GmailMessageRef
from mailsync.integrations.gmail.rate_limiter import RateLimiter


class GmailApiError(Exception):
    """Exception raised for Gmail API errors.

    Attributes:
        status_code: HTTP status code from the API.
        error_code: Error code from Gmail API response.
        reason: First ``errors[].reason`` entry (e.g. "rateLimitExceeded").
        retry_after: Seconds from a ``Retry-After`` header, if present.
        message: Human-readable error message.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        reason: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.reason = reason
        self.retry_after = retry_after
        self.message = message


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class GmailClient:
    """Client for the Gmail REST API.

    Handles bearer authentication, rate limiting, per-request timeouts and
    translation of error responses into ``GmailApiError``. Network failures
    surface as the underlying ``httpx`` exceptions.

    Typical usage:
        async with GmailClient(access_token="...") as client:
            refs, next_token = await client.list_messages(max_results=50)
            raw = await client.get_message(refs[0].id)

    Attributes:
        BASE_URL: Gmail API base URL.
    """

    BASE_URL = "https://gmail.googleapis.com/gmail/v1"

    def __init__(
        self,
        access_token: str,
        rate_limiter: RateLimiter | None = None,
        user_id: str = "me",
        timeout: float = 30.0,
    ) -> None:
        """Initialize Gmail client.

        Args:
            access_token: Valid OAuth2 access token for Gmail API.
            rate_limiter: Optional rate limiter for API throttling.
            user_id: Gmail user ID (default: "me" for authenticated user).
            timeout: Per-request timeout in seconds.
        """
        self.access_token = access_token
        self.rate_limiter = rate_limiter or RateLimiter()
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
        )

    def set_access_token(self, access_token: str) -> None:
        """Swap the bearer token after a refresh."""
        self.access_token = access_token
        self._client.headers["Authorization"] = f"Bearer {access_token}"

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> GmailClient:
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager."""
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json_body: dict[str, object] | None = None,
    ) -> dict[str, object]:
        """Make an API request with rate limiting.

        Args:
            method: HTTP method (GET, POST, etc.).
            path: API path relative to the user resource.
            params: Query parameters.
            json_body: JSON body for POST requests.

        Returns:
            JSON response as dict (empty for bodiless responses).

        Raises:
            GmailApiError: If the API returns an error status.
            httpx.TransportError: On network failures and timeouts.
        """
        await self.rate_limiter.acquire()

        url = f"{self.BASE_URL}/users/{self.user_id}/{path}"
        response = await self._client.request(method, url, params=params, json=json_body)

        if response.status_code >= 400:
            raise self._build_error(response)

        if not response.content:
            return {}

        result: dict[str, object] = response.json()
        return result

    @staticmethod
    def _build_error(response: httpx.Response) -> GmailApiError:
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        try:
            error_data: object = response.json() if response.content else {}
        except ValueError:
            error_data = {}

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        if not isinstance(error_info, dict):
            return GmailApiError(
                message=response.text or f"HTTP {response.status_code}",
                status_code=response.status_code,
                retry_after=retry_after,
            )

        reason = None
        errors = error_info.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            reason = errors[0].get("reason")

        return GmailApiError(
            message=str(error_info.get("message", response.text)),
            status_code=response.status_code,
            error_code=str(error_info.get("code", "")),
            reason=str(reason) if reason else None,
            retry_after=retry_after,
        )

    async def list_messages(
        self,
        max_results: int = 100,
        page_token: str | None = None,
        query: str | None = None,
        label_ids: list[str] | None = None,
    ) -> tuple[list[GmailMessageRef], str | None]:
        """List message IDs with pagination.

        Args:
            max_results: Maximum number of results per page (1-500).
            page_token: Token for fetching a specific page.
            query: Gmail search query (e.g., "is:unread").
            label_ids: Filter by label IDs.

        Returns:
            Tuple of (list of message refs, next page token or None).

        Raises:
            GmailApiError: If the API returns an error.
        """
        params: dict[str, str] = {"maxResults": str(min(max_results, 500))}

        if page_token:
            params["pageToken"] = page_token
        if query:
            params["q"] = query
        if label_ids:
            params["labelIds"] = ",".join(label_ids)

        result = await self._request("GET", "messages", params)

        messages = []
        raw_messages = result.get("messages", [])
        if isinstance(raw_messages, list):
            for msg in raw_messages:
                if isinstance(msg, dict):
                    msg_id = str(msg.get("id", ""))
                    thread_id = str(msg.get("threadId", ""))
                    if msg_id:
                        messages.append(GmailMessageRef(id=msg_id, thread_id=thread_id))

        next_page = result.get("nextPageToken")
        return messages, str(next_page) if next_page else None

    async def get_message(
        self,
        message_id: str,
        format: str = "full",  # noqa: A002
    ) -> dict[str, object]:
        """Get a single message by ID.

        Args:
            message_id: Gmail message ID.
            format: Response format ("minimal", "full", "raw", "metadata").

        Returns:
            Raw Gmail API message response.

        Raises:
            GmailApiError: If the API returns an error.
        """
        return await self._request("GET", f"messages/{message_id}", {"format": format})

    async def batch_get_messages(
        self,
        message_ids: list[str],
        format: str = "full",  # noqa: A002
    ) -> list[dict[str, object] | GmailApiError]:
        """Get multiple messages concurrently.

        Requests are still paced by the rate limiter. Per-message API errors
        are returned in place instead of raised; network errors propagate.

        Args:
            message_ids: Message IDs to fetch.
            format: Response format.

        Returns:
            List of results in same order as input.
        """

        async def fetch_one(message_id: str) -> dict[str, object] | GmailApiError:
            try:
                return await self.get_message(message_id, format=format)
            except GmailApiError as e:
                return e

        results = await asyncio.gather(*[fetch_one(message_id) for message_id in message_ids])
        return list(results)

    async def get_profile(self) -> dict[str, object]:
        """Get the mailbox profile (email address, totals, current historyId)."""
        return await self._request("GET", "profile")

    async def list_labels(self) -> list[dict[str, object]]:
        """List all labels in the mailbox.

        Returns:
            Raw label resources.
        """
        result = await self._request("GET", "labels")
        raw_labels = result.get("labels", [])
        if not isinstance(raw_labels, list):
            return []
        return [label for label in raw_labels if isinstance(label, dict)]

    async def get_history(
        self,
        start_history_id: str,
        max_results: int = 100,
        page_token: str | None = None,
        label_ids: list[str] | None = None,
    ) -> tuple[list[dict[str, object]], str | None, str | None]:
        """Get mailbox changes since a history ID.

        Args:
            start_history_id: History ID to start from.
            max_results: Maximum number of history records per page.
            page_token: Token for fetching next page.
            label_ids: Filter by label IDs.

        Returns:
            Tuple of (history records, next page token, latest history ID).

        Raises:
            GmailApiError: If the API returns an error (404 when the start
                history ID is too old).
        """
        params: dict[str, str] = {
            "startHistoryId": start_history_id,
            "maxResults": str(min(max_results, 500)),
        }

        if page_token:
            params["pageToken"] = page_token
        if label_ids:
            params["labelIds"] = ",".join(label_ids)

        result = await self._request("GET", "history", params)

        history_records: list[dict[str, object]] = []
        raw_history = result.get("history", [])
        if isinstance(raw_history, list):
            for record in raw_history:
                if isinstance(record, dict):
                    history_records.append(record)

        next_page = result.get("nextPageToken")
        history_id = result.get("historyId")

        return (
            history_records,
            str(next_page) if next_page else None,
            str(history_id) if history_id else None,
        )

    async def batch_modify(
        self,
        message_ids: list[str],
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> None:
        """Add and remove labels on up to 1000 messages in one call.

        Raises:
            GmailApiError: If the API returns an error.
        """
        body: dict[str, object] = {"ids": message_ids}
        if add_label_ids:
            body["addLabelIds"] = add_label_ids
        if remove_label_ids:
            body["removeLabelIds"] = remove_label_ids
        await self._request("POST", "messages/batchModify", json_body=body)

    async def trash_message(self, message_id: str) -> None:
        """Move a message to the trash.

        Raises:
            GmailApiError: If the API returns an error.
        """
        await self._request("POST", f"messages/{message_id}/trash")

    async def watch(
        self,
        topic_name: str,
        label_ids: list[str] | None = None,
        label_filter_action: str = "include",
    ) -> tuple[str, int]:
        """Set up Gmail push notifications via Pub/Sub.

        Args:
            topic_name: Full Pub/Sub topic name (projects/{project}/topics/{topic}).
            label_ids: Labels to watch. If None, watches INBOX.
            label_filter_action: How to apply label filter ("include" or "exclude").

        Returns:
            Tuple of (history_id, expiration_timestamp_ms).

        Raises:
            GmailApiError: If the API returns an error.

        Note:
            Watches expire (typically after 7 days) and must be renewed.
        """
        body: dict[str, object] = {
            "topicName": topic_name,
            "labelFilterAction": label_filter_action,
            "labelIds": label_ids or ["INBOX"],
        }

        result = await self._request("POST", "watch", json_body=body)

        history_id = str(result.get("historyId", ""))
        expiration_value = result.get("expiration")
        expiration = int(str(expiration_value)) if expiration_value else 0

        return history_id, expiration

    async def stop_watch(self) -> None:
        """Stop receiving push notifications.

        Raises:
            GmailApiError: If the API returns an error.
        """
        await self._request("POST", "stop")
