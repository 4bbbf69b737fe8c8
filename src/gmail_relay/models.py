# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the Gmail relay service.

This module defines the request and response shapes of the send endpoint.
Fields use the camelCase names of the public JSON contract as aliases, and
accept their snake_case names too.

Models:
    - AttachmentSpec: One attachment, inline base64 ``content`` or a ``url``
    - TemplateBody: ``{html, text}`` template branches
    - EmailRequest: The logical email request accepted by ``/api/sendmail``
    - SendResponse: Successful send result
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONTENT_TYPE = "application/octet-stream"

AddressField = str | list[str] | None


class AttachmentSpec(BaseModel):
    """Attachment descriptor as submitted by the caller.

    Fields are deliberately permissive: policy checks (filename rules,
    dangerous types, sizes) are performed by the attachment validator so
    that the caller gets a report naming every offending item.

    Attributes:
        filename: Name shown to the recipient.
        content_type: Declared MIME type.
        content: Inline base64-encoded bytes.
        url: HTTP(S) URL to download the bytes from.
    """

    model_config = ConfigDict(populate_by_name=True)

    filename: Annotated[str, Field(default="", description="Attachment file name")]
    content_type: Annotated[
        str | None,
        Field(default=None, alias="contentType", description="Declared MIME type"),
    ]
    content: Annotated[str | None, Field(default=None, description="Base64-encoded content")]
    url: Annotated[str | None, Field(default=None, description="URL to load the content from")]

    def summary(self) -> dict[str, Any]:
        """Identifying fields, without the payload, for error reports."""
        out: dict[str, Any] = {"filename": self.filename}
        if self.content_type:
            out["contentType"] = self.content_type
        if self.url:
            out["url"] = self.url
        return out


class TemplateBody(BaseModel):
    """Template given as separate HTML and text branches."""

    html: str | None = None
    text: str | None = None


class EmailRequest(BaseModel):
    """Logical email request accepted by the send endpoint.

    ``to`` and ``subject`` are optional at the schema level so that their
    absence is reported by the relay as a validation error naming the field.
    Content sources are tried in order: ``html``, ``text``, ``fields``, then
    ``template`` with ``data``.
    """

    model_config = ConfigDict(populate_by_name=True)

    to: AddressField = None
    cc: AddressField = None
    bcc: AddressField = None
    reply_to: Annotated[AddressField, Field(default=None, alias="replyTo")]
    subject: str | None = None
    html: Any = None
    text: Any = None
    fields: Any = None
    template: str | TemplateBody | None = None
    data: dict[str, Any] | None = None
    attachments: list[AttachmentSpec] | None = None
    sender_email: Annotated[str | None, Field(default=None, alias="senderEmail")]
    sender_name: Annotated[str | None, Field(default=None, alias="senderName")]
    refresh_token: Annotated[str | None, Field(default=None, alias="refreshToken")]


class AttachmentInfo(BaseModel):
    count: int
    total_size: int = Field(serialization_alias="totalSize")


class SendResponse(BaseModel):
    """Successful send result returned by the HTTP layer."""

    ok: bool = True
    message_id: str = Field(serialization_alias="messageId")
    message: str = "Email sent successfully"
    attachments: AttachmentInfo | None = None
