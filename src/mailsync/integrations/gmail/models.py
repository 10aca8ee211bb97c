"""Gmail API data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class GmailMessageRef:
    """Reference to a Gmail message (from list operation).

    Attributes:
        id: Unique Gmail message ID.
        thread_id: ID of the thread this message belongs to.
    """

    id: str
    thread_id: str


@dataclass(frozen=True)
class AttachmentInfo:
    """Attachment metadata found in a message's MIME tree.

    Only metadata is kept; downloading content is not part of sync.

    Attributes:
        attachment_id: Gmail attachment ID (or a positional fallback).
        filename: File name from the part, if any.
        mime_type: Content type of the part.
        size_bytes: Size reported by Gmail.
        content_id: Content-ID header for inline parts.
        is_inline: Whether the part is referenced from the HTML body.
    """

    attachment_id: str
    filename: str | None
    mime_type: str
    size_bytes: int = 0
    content_id: str | None = None
    is_inline: bool = False


@dataclass
class GmailLabel:
    """A Gmail label.

    Attributes:
        id: Label ID (system labels use upper-case names like INBOX).
        name: Display name.
        type: "system" or "user".
        messages_total: Messages carrying the label.
        messages_unread: Unread messages carrying the label.
        color: Background color for user labels.
    """

    id: str
    name: str
    type: str = "user"
    messages_total: int = 0
    messages_unread: int = 0
    color: str | None = None

    @property
    def is_system(self) -> bool:
        """Check if this is a built-in Gmail label."""
        return self.type == "system"


@dataclass
class GmailMessage:
    """Full Gmail message with parsed data.

    Attributes:
        id: Unique Gmail message ID.
        thread_id: ID of the thread this message belongs to.
        history_id: Gmail history ID of the last change to the message.
        message_id: RFC 822 Message-ID header value.
        subject: Email subject line.
        from_address: Sender email address.
        date_sent: When the message was sent.
        snippet: Short preview text from Gmail.
        size_bytes: Total message size in bytes.
        label_ids: Gmail label IDs applied to this message.
        to_addresses: Recipient email addresses.
        cc_addresses: CC'd email addresses.
        in_reply_to: RFC 822 In-Reply-To header (if reply).
        references: RFC 822 References header values.
        body_plain: Plain text body (may be None).
        body_html: HTML body (may be None).
        attachments: Attachment metadata.
    """

    id: str
    thread_id: str
    history_id: str
    message_id: str
    subject: str
    from_address: str
    date_sent: datetime
    snippet: str
    size_bytes: int

    label_ids: list[str] = field(default_factory=list)
    to_addresses: list[str] = field(default_factory=list)
    cc_addresses: list[str] = field(default_factory=list)
    in_reply_to: str | None = None
    references: list[str] = field(default_factory=list)
    body_plain: str | None = None
    body_html: str | None = None
    attachments: list[AttachmentInfo] = field(default_factory=list)

    @property
    def has_attachments(self) -> bool:
        """Check if the message carries any non-inline attachment."""
        return any(not a.is_inline for a in self.attachments)

    def is_inbox(self) -> bool:
        """Check if the INBOX label is present."""
        return "INBOX" in self.label_ids

    def is_unread(self) -> bool:
        """Check if the UNREAD label is present."""
        return "UNREAD" in self.label_ids

    def is_starred(self) -> bool:
        """Check if the STARRED label is present."""
        return "STARRED" in self.label_ids

    def is_trash(self) -> bool:
        """Check if the TRASH label is present."""
        return "TRASH" in self.label_ids

    def apply_label_delta(
        self, add: list[str] | None = None, remove: list[str] | None = None
    ) -> None:
        """Apply a label delta in place, keeping label order stable."""
        removed = set(remove or [])
        labels = [label for label in self.label_ids if label not in removed]
        for label in add or []:
            if label not in labels:
                labels.append(label)
        self.label_ids = labels
