# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""MIME message composition for the Gmail ``messages.send`` API.

Messages are modelled as a small tree of parts rendered by one serializer,
so CRLF discipline and boundary generation live in a single place:

- :class:`TextPart` / :class:`HtmlPart`: body leaves
- :class:`AttachmentPart`: base64 attachment leaf
- :class:`Multipart`: ``multipart/alternative`` or ``multipart/mixed`` container

Layout produced by :func:`compose_message`:

- no attachments: ``multipart/alternative`` with the text part then the HTML part
- attachments: ``multipart/mixed`` holding a nested ``multipart/alternative``
  (when there is any body) followed by one part per attachment

Boundaries combine a millisecond timestamp with a random suffix. A
container re-draws its boundary if the delimiter occurs in a rendered child,
so a collision with part content cannot corrupt the structure.

Example:
    Composing and encoding a message::

        message = compose_message(
            sender=Sender("me@example.com", "Me"),
            to=["you@example.com"],
            subject="Hi",
            content=NormalizedContent(text="hello"),
        )
        enforce_size_limit(message)
        raw = message.envelope()  # base64url for {"raw": ...}
"""

from __future__ import annotations

import base64
import re
import secrets
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from .attachments.base import ResolvedAttachment
from .config import DEFAULT_SIZE_LIMIT, MiB
from .content import NormalizedContent
from .errors import SizeLimitError

CRLF = "\r\n"
BASE64_LINE_LENGTH = 76
MAX_BOUNDARY_ATTEMPTS = 8
LINE_BREAKS = re.compile(r"[\r\n]+")


def generate_boundary() -> str:
    return f"----=_Part_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def clean_header_value(value: str) -> str:
    """Collapse CR/LF so a value cannot inject extra header lines."""
    return " ".join(LINE_BREAKS.split(value)).strip()


def is_printable_ascii(value: str) -> bool:
    return all(0x20 <= ord(ch) <= 0x7E for ch in value)


def encode_word(value: str) -> str:
    """RFC 2047 base64 encoded-word for a UTF-8 string."""
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


def encode_header_text(value: str) -> str:
    value = clean_header_value(value)
    return value if is_printable_ascii(value) else encode_word(value)


def format_sender(email: str, name: str | None = None) -> str:
    email = clean_header_value(email)
    if not name:
        return email
    name = clean_header_value(name)
    if is_printable_ascii(name):
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}" <{email}>'
    return f"{encode_word(name)} <{email}>"


def format_filename(filename: str) -> str:
    """Value placed inside ``filename="..."``.

    Non-printable-ASCII names become an RFC 2047 word; others only have
    their quotes escaped.
    """
    if not is_printable_ascii(filename):
        return encode_word(filename)
    return filename.replace('"', '\\"')


def wrap_base64(content: str, width: int = BASE64_LINE_LENGTH) -> str:
    compact = "".join(content.split())
    return CRLF.join(compact[i:i + width] for i in range(0, len(compact), width))


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n").replace("\n", CRLF)


class Part:
    """A renderable MIME entity: header lines, a blank line, a body."""

    def headers(self) -> list[tuple[str, str]]:
        raise NotImplementedError

    def body(self) -> str:
        raise NotImplementedError

    def render(self) -> str:
        lines = [f"{name}: {value}" for name, value in self.headers()]
        return CRLF.join(lines) + CRLF + CRLF + self.body()


@dataclass
class TextPart(Part):
    text: str
    subtype: str = "plain"

    def headers(self) -> list[tuple[str, str]]:
        encoding = "7bit" if self.text.isascii() else "8bit"
        return [
            ("Content-Type", f"text/{self.subtype}; charset=UTF-8"),
            ("Content-Transfer-Encoding", encoding),
        ]

    def body(self) -> str:
        return normalize_newlines(self.text)


class HtmlPart(TextPart):
    def __init__(self, html: str):
        super().__init__(text=html, subtype="html")


@dataclass
class AttachmentPart(Part):
    filename: str
    content_type: str
    content: str

    @classmethod
    def from_resolved(cls, attachment: ResolvedAttachment) -> AttachmentPart:
        return cls(
            filename=attachment.filename,
            content_type=attachment.content_type,
            content=attachment.content,
        )

    def headers(self) -> list[tuple[str, str]]:
        return [
            ("Content-Type", clean_header_value(self.content_type)),
            ("Content-Disposition", f'attachment; filename="{format_filename(self.filename)}"'),
            ("Content-Transfer-Encoding", "base64"),
        ]

    def body(self) -> str:
        return wrap_base64(self.content)


@dataclass
class Multipart(Part):
    subtype: str
    parts: list[Part] = field(default_factory=list)
    boundary: str = field(default_factory=generate_boundary)

    def headers(self) -> list[tuple[str, str]]:
        return [("Content-Type", f'multipart/{self.subtype}; boundary="{self.boundary}"')]

    def render(self) -> str:
        rendered = [part.render() for part in self.parts]
        attempts = 1
        while any(f"--{self.boundary}" in chunk for chunk in rendered):
            if attempts >= MAX_BOUNDARY_ATTEMPTS:
                raise RuntimeError("Unable to generate a collision-free MIME boundary")
            self.boundary = generate_boundary()
            attempts += 1
        self._rendered = rendered
        return super().render()

    def body(self) -> str:
        rendered = getattr(self, "_rendered", None)
        if rendered is None:
            rendered = [part.render() for part in self.parts]
        out = "".join(f"--{self.boundary}{CRLF}{chunk}{CRLF}" for chunk in rendered)
        return out + f"--{self.boundary}--"


@dataclass(frozen=True)
class Sender:
    email: str
    name: str | None = None


@dataclass(frozen=True)
class ComposedMessage:
    """Wire-format message and its size before the base64url envelope."""

    raw: bytes

    @property
    def size(self) -> int:
        return len(self.raw)

    def as_text(self) -> str:
        return self.raw.decode("utf-8")

    def envelope(self) -> str:
        """Base64url encoding without padding, as Gmail expects in ``raw``."""
        return encode_envelope(self.raw)


def encode_envelope(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _join_addresses(addresses: str | Sequence[str] | None) -> str:
    if not addresses:
        return ""
    if isinstance(addresses, str):
        return clean_header_value(addresses)
    return ", ".join(clean_header_value(a) for a in addresses if a)


def build_body(content: NormalizedContent, attachments: Sequence[ResolvedAttachment] = ()) -> Multipart:
    """Build the part tree for the given content and attachments."""
    alternative_parts: list[Part] = []
    if content.text:
        alternative_parts.append(TextPart(content.text))
    if content.html:
        alternative_parts.append(HtmlPart(content.html))

    if not attachments:
        return Multipart("alternative", alternative_parts)

    mixed = Multipart("mixed")
    if alternative_parts:
        mixed.parts.append(Multipart("alternative", alternative_parts))
    mixed.parts.extend(AttachmentPart.from_resolved(att) for att in attachments)
    return mixed


def compose_message(
    sender: Sender,
    to: str | Sequence[str],
    subject: str,
    content: NormalizedContent,
    cc: str | Sequence[str] | None = None,
    bcc: str | Sequence[str] | None = None,
    reply_to: str | Sequence[str] | None = None,
    attachments: Sequence[ResolvedAttachment] = (),
) -> ComposedMessage:
    """Assemble a complete RFC 2045 message.

    Args:
        sender: ``From`` identity.
        to: Recipient address or addresses.
        subject: Subject line; non-ASCII text is RFC 2047 encoded.
        content: Normalized text and/or HTML bodies.
        cc: Optional carbon-copy recipients.
        bcc: Optional blind-copy recipients.
        reply_to: Optional reply-to addresses.
        attachments: Resolved attachments, in order.

    Returns:
        The composed message as CRLF-delimited UTF-8 bytes.
    """
    headers: list[tuple[str, str]] = [
        ("From", format_sender(sender.email, sender.name)),
        ("To", _join_addresses(to)),
    ]
    for name, value in (("Cc", cc), ("Bcc", bcc), ("Reply-To", reply_to)):
        joined = _join_addresses(value)
        if joined:
            headers.append((name, joined))
    headers.append(("Subject", encode_header_text(subject)))
    headers.append(("MIME-Version", "1.0"))

    body = build_body(content, attachments)
    rendered = body.render()
    top = CRLF.join(f"{name}: {value}" for name, value in headers)
    return ComposedMessage(raw=(top + CRLF + rendered).encode("utf-8"))


def enforce_size_limit(message: ComposedMessage, limit: int = DEFAULT_SIZE_LIMIT) -> int:
    """Fail closed when the composed message exceeds ``limit`` bytes.

    Returns:
        The measured size in bytes.

    Raises:
        SizeLimitError: With both the measured size and the limit.
    """
    size = message.size
    if size > limit:
        raise SizeLimitError(
            f"Message size ({size / MiB:.2f}MB) exceeds Gmail API limit of {limit / MiB:.0f}MB",
            measured=size,
            limit=limit,
        )
    return size
