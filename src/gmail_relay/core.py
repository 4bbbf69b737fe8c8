# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery orchestration for the Gmail relay.

:class:`MailRelay` drives one email request through the pipeline:

1. validate required fields, addresses and credentials
2. normalize the content source into text and HTML
3. validate and resolve attachments
4. compose the MIME message
5. enforce the provider size limit
6. exchange the refresh token for an access token
7. deliver through the Gmail API

Each step raises a :class:`~gmail_relay.errors.MailRelayError` subclass on
failure and nothing is retried. The size gate runs before the token exchange
so an oversize message never costs a call to the token endpoint.

Example:
    Sending a request::

        relay = MailRelay(config)
        result = await relay.send(EmailRequest(to="a@b.com", subject="Hi", text="hello"))
        result.message_id
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .addresses import as_address_list, find_invalid_addresses, is_valid_email
from .attachments import AttachmentManager
from .attachments.base import ResolvedAttachment
from .config import RelayConfig
from .content import NormalizedContent, normalize_content, render_template
from .errors import MailRelayError, ValidationError
from .gmail import GmailClient
from .logger import get_logger
from .mime import ComposedMessage, Sender, compose_message, enforce_size_limit
from .models import AttachmentInfo, EmailRequest, SendResponse
from .oauth import GoogleOAuthClient
from .prometheus import RelayMetrics

ADDRESS_FIELDS = (("to", "to"), ("cc", "cc"), ("bcc", "bcc"), ("reply_to", "replyTo"))


@dataclass(frozen=True)
class PreparedMessage:
    """A composed message together with what went into it."""

    message: ComposedMessage
    attachments: list[ResolvedAttachment]
    refresh_token: str | None

    @property
    def attachment_bytes(self) -> int:
        return sum(att.size for att in self.attachments)


@dataclass(frozen=True)
class SendResult:
    message_id: str
    size: int
    attachment_count: int = 0
    attachment_bytes: int = 0

    def to_response(self) -> SendResponse:
        info = None
        if self.attachment_count:
            info = AttachmentInfo(count=self.attachment_count, total_size=self.attachment_bytes)
        return SendResponse(message_id=self.message_id, attachments=info)


def _trimmed(value: Any) -> list[str]:
    return [a.strip() for a in as_address_list(value) if isinstance(a, str) and a.strip()]


class MailRelay:
    """Compose and deliver email requests through Gmail.

    Collaborators default to instances built from ``config`` and can be
    injected for testing.

    Attributes:
        config: The relay configuration.
        attachments: Validator and resolver for request attachments.
        oauth: Token exchanger.
        gmail: Delivery client.
        metrics: Prometheus counters.
    """

    def __init__(
        self,
        config: RelayConfig | None = None,
        attachments: AttachmentManager | None = None,
        oauth: GoogleOAuthClient | None = None,
        gmail: GmailClient | None = None,
        metrics: RelayMetrics | None = None,
    ):
        self.config = config or RelayConfig()
        self.attachments = attachments or AttachmentManager.from_config(self.config)
        self.oauth = oauth or GoogleOAuthClient.from_config(self.config)
        self.gmail = gmail or GmailClient.from_config(self.config)
        self.metrics = metrics or RelayMetrics()
        self.logger = get_logger("MailRelay")

    # ----------------------------------------------------------------- validation
    def validate_request(self, request: EmailRequest, require_token: bool = True) -> Sender:
        """Check required fields, addresses and credentials.

        Returns:
            The sender identity to use.

        Raises:
            ValidationError: Naming the offending field and values.
        """
        if not request.to:
            raise ValidationError('Field "to" is required', field="to")
        if not request.subject:
            raise ValidationError('Field "subject" is required', field="subject")

        for attr, label in ADDRESS_FIELDS:
            value = getattr(request, attr)
            if not value:
                continue
            invalid = find_invalid_addresses(value)
            if invalid:
                raise ValidationError(
                    f'Invalid email addresses in "{label}" field', field=label, invalid=invalid
                )

        if require_token and not (request.refresh_token or self.config.refresh_token):
            raise ValidationError(
                "refreshToken is required (provide in body or set a default refresh token)",
                field="refreshToken",
            )

        sender_email = (request.sender_email or self.config.sender_email or "").strip()
        if not sender_email:
            raise ValidationError(
                "senderEmail is required (provide in body or set a default sender email)",
                field="senderEmail",
            )
        if not is_valid_email(sender_email):
            raise ValidationError(
                'Invalid email address in "senderEmail" field', field="senderEmail", invalid=[sender_email]
            )
        return Sender(email=sender_email, name=request.sender_name or self.config.sender_name)

    def build_content(self, request: EmailRequest) -> NormalizedContent:
        """Pick the first content source present and normalize it.

        Sources are tried in order: ``html``, ``text``, ``fields``, then
        ``template`` with ``data``.
        """
        if request.html is not None:
            content = normalize_content(request.html)
        elif request.text is not None:
            content = normalize_content(request.text)
        elif request.fields is not None:
            content = normalize_content(request.fields)
        elif request.template is not None and request.data is not None:
            template = request.template
            if not isinstance(template, str):
                template = template.model_dump()
            content = render_template(template, request.data)
        elif request.template is not None:
            raise ValidationError('Field "data" is required when "template" is used', field="data")
        else:
            raise ValidationError(
                'Either "html", "text", "fields", or "template" field is required', field="content"
            )

        if content.is_empty:
            raise ValidationError("Email content is empty", field="content")
        return content

    # ---------------------------------------------------------------- composition
    async def prepare(self, request: EmailRequest, require_token: bool = True) -> PreparedMessage:
        """Run every step up to and including the size gate."""
        sender = self.validate_request(request, require_token=require_token)
        content = self.build_content(request)

        resolved = await self.attachments.resolve(request.attachments)
        if resolved:
            self.logger.debug("Resolved %d attachment(s)", len(resolved))

        message = compose_message(
            sender=sender,
            to=_trimmed(request.to),
            subject=request.subject or "",
            content=content,
            cc=_trimmed(request.cc),
            bcc=_trimmed(request.bcc),
            reply_to=_trimmed(request.reply_to),
            attachments=resolved,
        )
        try:
            enforce_size_limit(message, self.config.max_message_bytes)
        except MailRelayError as exc:
            self.logger.warning("Composed message rejected: %s", exc.message)
            raise
        return PreparedMessage(
            message=message,
            attachments=resolved,
            refresh_token=request.refresh_token or self.config.refresh_token,
        )

    # ------------------------------------------------------------------- delivery
    async def send(self, request: EmailRequest) -> SendResult:
        """Compose and deliver ``request``.

        Raises:
            MailRelayError: The first failure of any pipeline step.
        """
        try:
            prepared = await self.prepare(request)
            token = await self.oauth.refresh_access_token(prepared.refresh_token)
            message_id = await self.gmail.send_raw(token.access_token, prepared.message.envelope())
        except MailRelayError as exc:
            self.metrics.inc_error(exc.kind.value)
            raise

        result = SendResult(
            message_id=message_id,
            size=prepared.message.size,
            attachment_count=len(prepared.attachments),
            attachment_bytes=prepared.attachment_bytes,
        )
        self.metrics.inc_sent(result.attachment_bytes)
        self.logger.info(
            "Message %s delivered (%d bytes, %d attachment(s))",
            message_id,
            result.size,
            result.attachment_count,
        )
        return result
