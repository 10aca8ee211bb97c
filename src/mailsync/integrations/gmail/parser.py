"""Conversion of raw Gmail API responses into typed models."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

from mailsync.integrations.gmail.mime import build_mime_tree, extract_content
from mailsync.integrations.gmail.models import GmailLabel, GmailMessage


class MailParseError(Exception):
    """Exception raised when a Gmail response cannot be parsed.

    Attributes:
        message_id: Gmail message ID that failed to parse.
        field: The field that caused the parsing error.
        reason: Human-readable error description.
    """

    def __init__(
        self,
        reason: str,
        message_id: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(reason)
        self.message_id = message_id
        self.field = field
        self.reason = reason


def parse_email_address(address: str) -> tuple[str, str | None]:
    """Parse an email address into email and name components.

    Handles formats like:
    - "Name <email@example.com>"
    - "<email@example.com>"
    - "email@example.com"

    Args:
        address: Raw email address string.

    Returns:
        Tuple of (email, name) where name may be None.
    """
    if not address:
        return "", None

    match = re.match(r'^"?([^"<]+)"?\s*<([^>]+)>$', address.strip())
    if match:
        name = match.group(1).strip()
        email = match.group(2).strip().lower()
        return email, name if name else None

    match = re.match(r"^<([^>]+)>$", address.strip())
    if match:
        return match.group(1).strip().lower(), None

    if "@" in address:
        return address.strip().lower(), None

    return address.strip(), None


def parse_raw_message(raw_data: dict[str, object]) -> GmailMessage:
    """Parse a messages.get (format=full) response into a GmailMessage.

    Args:
        raw_data: Raw JSON response from Gmail API.

    Returns:
        Parsed GmailMessage object.

    Raises:
        MailParseError: If required fields are missing or invalid.
    """
    msg_id = str(raw_data.get("id", ""))
    if not msg_id:
        raise MailParseError("Missing message ID", field="id")

    thread_id = str(raw_data.get("threadId", ""))
    history_id = str(raw_data.get("historyId", ""))
    label_ids_raw = raw_data.get("labelIds", [])
    label_ids = [str(label) for label in label_ids_raw] if isinstance(label_ids_raw, list) else []
    snippet = str(raw_data.get("snippet", ""))
    size_raw = raw_data.get("sizeEstimate", 0)
    size_bytes = int(size_raw) if isinstance(size_raw, int) else 0

    payload = raw_data.get("payload", {})
    if not isinstance(payload, dict):
        raise MailParseError("Payload is not an object", message_id=msg_id, field="payload")

    tree = build_mime_tree(payload)
    headers = tree.headers
    content = extract_content(tree)

    return GmailMessage(
        id=msg_id,
        thread_id=thread_id,
        history_id=history_id,
        message_id=headers.get("message-id", f"<{msg_id}@gmail.com>"),
        subject=headers.get("subject", ""),
        from_address=headers.get("from", ""),
        date_sent=_parse_date(headers.get("date", ""), raw_data.get("internalDate")),
        snippet=snippet,
        size_bytes=size_bytes,
        label_ids=label_ids,
        to_addresses=_split_addresses(headers.get("to", "")),
        cc_addresses=_split_addresses(headers.get("cc", "")),
        in_reply_to=headers.get("in-reply-to"),
        references=_parse_references(headers.get("references", "")),
        body_plain=content.body_plain,
        body_html=content.body_html,
        attachments=list(content.attachments),
    )


def parse_label(raw_data: dict[str, object]) -> GmailLabel:
    """Parse a labels.get/labels.list entry into a GmailLabel.

    Raises:
        MailParseError: If the label has no ID.
    """
    label_id = str(raw_data.get("id", ""))
    if not label_id:
        raise MailParseError("Missing label ID", field="id")

    color = raw_data.get("color")
    background = color.get("backgroundColor") if isinstance(color, dict) else None

    return GmailLabel(
        id=label_id,
        name=str(raw_data.get("name", label_id)),
        type=str(raw_data.get("type", "user")).lower(),
        messages_total=_as_int(raw_data.get("messagesTotal")),
        messages_unread=_as_int(raw_data.get("messagesUnread")),
        color=str(background) if background else None,
    )


def _as_int(value: object) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return 0


def _split_addresses(raw: str) -> list[str]:
    """Split comma-separated email addresses."""
    if not raw:
        return []

    addresses = []
    # Commas inside quoted display names are not separators
    parts = re.split(r",\s*(?=(?:[^\"]*\"[^\"]*\")*[^\"]*$)", raw)
    for part in parts:
        part = part.strip()
        if part:
            email, _ = parse_email_address(part)
            if email:
                addresses.append(email)

    return addresses


def _parse_references(raw: str) -> list[str]:
    """Parse References header into list of message IDs."""
    refs = []
    for ref in raw.split():
        if ref.startswith("<") and ref.endswith(">"):
            refs.append(ref)
        elif "@" in ref:
            refs.append(f"<{ref}>")
    return refs


def _parse_date(date_str: str, internal_date: object = None) -> datetime:
    """Parse the Date header, falling back to Gmail's internalDate (ms)."""
    if date_str:
        try:
            return parsedate_to_datetime(date_str)
        except (ValueError, TypeError):
            pass
        try:
            return datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        except ValueError:
            pass

    millis = _as_int(internal_date)
    if millis:
        return datetime.fromtimestamp(millis / 1000, tz=UTC)

    return datetime.now(UTC)
