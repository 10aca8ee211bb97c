"""Gmail API integration."""

from mailsync.integrations.gmail.client import GmailApiError, GmailClient
from mailsync.integrations.gmail.mime import (
    MessageContent,
    MimeNode,
    MimeNodeKind,
    build_mime_tree,
    extract_content,
)
from mailsync.integrations.gmail.models import (
    AttachmentInfo,
    GmailLabel,
    GmailMessage,
    GmailMessageRef,
)
from mailsync.integrations.gmail.parser import (
    MailParseError,
    parse_email_address,
    parse_label,
    parse_raw_message,
)
from mailsync.integrations.gmail.rate_limiter import RateLimiter

__all__ = [
    "AttachmentInfo",
    "GmailApiError",
    "GmailClient",
    "GmailLabel",
    "GmailMessage",
    "GmailMessageRef",
    "MailParseError",
    "MessageContent",
    "MimeNode",
    "MimeNodeKind",
    "RateLimiter",
    "build_mime_tree",
    "extract_content",
    "parse_email_address",
    "parse_label",
    "parse_raw_message",
]
