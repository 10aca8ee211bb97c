"""Explicit MIME tree for Gmail message payloads.

Gmail returns a message body as nested ``payload.parts``. The payload is
converted once into ``MimeNode`` values by ``build_mime_tree``; everything
after that is a pure recursive walk over the typed tree, with no probing of
raw dictionaries.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum

from mailsync.integrations.gmail.models import AttachmentInfo


class MimeNodeKind(str, Enum):
    """Kind of a MIME tree node."""

    LEAF = "leaf"
    BRANCH = "branch"


@dataclass(frozen=True)
class MimeNode:
    """One node of a message's MIME structure.

    Branches are ``multipart/*`` containers with children; leaves carry
    content (inline body data) or reference an attachment.
    """

    kind: MimeNodeKind
    mime_type: str
    children: tuple[MimeNode, ...] = ()
    filename: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    data: str | None = None
    attachment_id: str | None = None
    size: int = 0

    @property
    def disposition(self) -> str:
        """Lowercased Content-Disposition header value."""
        return self.headers.get("content-disposition", "").lower()

    @property
    def content_id(self) -> str | None:
        """Content-ID without angle brackets."""
        raw = self.headers.get("content-id")
        if not raw:
            return None
        return raw.strip().strip("<>")

    @property
    def is_attachment(self) -> bool:
        """Whether this leaf is an attachment rather than a body part."""
        if self.kind is not MimeNodeKind.LEAF:
            return False
        if self.filename or self.attachment_id:
            return True
        return "attachment" in self.disposition


@dataclass(frozen=True)
class MessageContent:
    """Bodies and attachment metadata extracted from a MIME tree."""

    body_plain: str | None = None
    body_html: str | None = None
    attachments: tuple[AttachmentInfo, ...] = ()


def build_mime_tree(payload: dict[str, object]) -> MimeNode:
    """Convert a Gmail ``payload`` dict into a typed MIME tree.

    Args:
        payload: The ``payload`` object of a messages.get response.

    Returns:
        Root node of the tree.
    """
    mime_type = str(payload.get("mimeType", "")).lower()

    headers: dict[str, str] = {}
    raw_headers = payload.get("headers", [])
    if isinstance(raw_headers, list):
        for header in raw_headers:
            if isinstance(header, dict) and header.get("name"):
                headers[str(header["name"]).lower()] = str(header.get("value", ""))

    body = payload.get("body", {})
    if not isinstance(body, dict):
        body = {}
    data = body.get("data")
    attachment_id = body.get("attachmentId")
    size = body.get("size", 0)

    raw_parts = payload.get("parts", [])
    children: tuple[MimeNode, ...] = ()
    if isinstance(raw_parts, list):
        children = tuple(build_mime_tree(part) for part in raw_parts if isinstance(part, dict))

    if children or mime_type.startswith("multipart/"):
        kind = MimeNodeKind.BRANCH
    else:
        kind = MimeNodeKind.LEAF
    filename = payload.get("filename")

    return MimeNode(
        kind=kind,
        mime_type=mime_type,
        children=children,
        filename=str(filename) if filename else None,
        headers=headers,
        data=data if isinstance(data, str) else None,
        attachment_id=str(attachment_id) if attachment_id else None,
        size=size if isinstance(size, int) else 0,
    )


def extract_content(node: MimeNode) -> MessageContent:
    """Extract the first plain and HTML bodies and all attachments.

    Depth-first, document order. The first ``text/plain`` and ``text/html``
    leaves that are not attachments win.

    Args:
        node: Root of the MIME tree.

    Returns:
        Extracted message content.
    """
    if node.kind is MimeNodeKind.BRANCH:
        plain: str | None = None
        html: str | None = None
        attachments: list[AttachmentInfo] = []
        for child in node.children:
            content = extract_content(child)
            plain = plain if plain is not None else content.body_plain
            html = html if html is not None else content.body_html
            attachments.extend(
                _renumber(a, len(attachments) + i) for i, a in enumerate(content.attachments)
            )
        return MessageContent(body_plain=plain, body_html=html, attachments=tuple(attachments))

    if node.is_attachment:
        return MessageContent(attachments=(_attachment_info(node, 0),))

    if node.data is None:
        return MessageContent()

    text = decode_body(node.data)
    if node.mime_type == "text/plain":
        return MessageContent(body_plain=text)
    if node.mime_type == "text/html":
        return MessageContent(body_html=text)
    return MessageContent()


def decode_body(data: str) -> str:
    """Decode Gmail's unpadded base64url body data."""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _attachment_info(node: MimeNode, position: int) -> AttachmentInfo:
    content_id = node.content_id
    return AttachmentInfo(
        attachment_id=node.attachment_id or f"att_{position}",
        filename=node.filename,
        mime_type=node.mime_type,
        size_bytes=node.size,
        content_id=content_id,
        is_inline=content_id is not None and "attachment" not in node.disposition,
    )


def _renumber(info: AttachmentInfo, position: int) -> AttachmentInfo:
    # Positional IDs are only unique once the whole tree has been walked
    if not info.attachment_id.startswith("att_"):
        return info
    return AttachmentInfo(
        attachment_id=f"att_{position}",
        filename=info.filename,
        mime_type=info.mime_type,
        size_bytes=info.size_bytes,
        content_id=info.content_id,
        is_inline=info.is_inline,
    )
