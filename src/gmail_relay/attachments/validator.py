# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Attachment policy checks.

Three independent checks (filename, type, size) composed by
:func:`validate_attachments`, which also enforces the count limit and the
aggregate decoded size of inline content.

Example:
    Validating a request's attachments::

        policy = AttachmentPolicy.from_config(config)
        result = validate_attachments(request.attachments, policy)
        if not result.valid:
            raise ValidationError(result.error, field="attachments",
                                  invalid=[i.as_dict() for i in result.invalid])
"""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import DEFAULT_MAX_ATTACHMENTS, DEFAULT_SIZE_LIMIT, MiB, RelayConfig
from ..models import AttachmentSpec

MAX_FILENAME_LENGTH = 255

DANGEROUS_EXTENSIONS = frozenset({".exe", ".bat", ".cmd", ".com", ".pif", ".scr", ".vbs", ".js"})
DANGEROUS_MIME_TYPES = frozenset({
    "application/x-msdownload",
    "application/x-executable",
    "application/x-msdos-program",
    "application/x-ms-installer",
})

BASE64_PATTERN = re.compile(r"[A-Za-z0-9+/]*={0,2}")


@dataclass(frozen=True)
class AttachmentPolicy:
    """Limits applied to a request's attachments."""

    max_count: int = DEFAULT_MAX_ATTACHMENTS
    max_size: int = DEFAULT_SIZE_LIMIT
    max_total_size: int = DEFAULT_SIZE_LIMIT

    @classmethod
    def from_config(cls, config: RelayConfig) -> AttachmentPolicy:
        return cls(
            max_count=config.max_attachments,
            max_size=config.max_attachment_bytes,
            max_total_size=config.max_total_attachment_bytes,
        )


@dataclass(frozen=True)
class CheckResult:
    valid: bool
    error: str | None = None
    size: int = 0


@dataclass(frozen=True)
class InvalidAttachment:
    """An attachment that failed validation and why."""

    index: int
    attachment: AttachmentSpec
    reason: str

    def as_dict(self) -> dict[str, Any]:
        return {"index": self.index, **self.attachment.summary(), "reason": self.reason}


@dataclass
class AttachmentValidationResult:
    valid: bool
    error: str | None = None
    invalid: list[InvalidAttachment] = field(default_factory=list)
    total_size: int = 0
    total_exceeded: bool = False


def _megabytes(size: int) -> str:
    return f"{size / MiB:.2f}MB"


def decode_base64(content: str) -> bytes:
    """Strictly decode standard base64 content.

    Raises:
        ValueError: If the content is not valid base64.
    """
    if not BASE64_PATTERN.fullmatch(content):
        raise ValueError("Invalid base64 format")
    padded = content + "=" * (-len(content) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Unable to decode base64: {exc}") from exc


def check_filename(filename: str | None) -> CheckResult:
    if not filename or not filename.strip():
        return CheckResult(False, "Attachment filename cannot be empty")
    if ".." in filename or "/" in filename or "\\" in filename:
        return CheckResult(False, f'Invalid filename "{filename}": path traversal characters not allowed')
    if "\0" in filename:
        return CheckResult(False, f'Invalid filename "{filename}": null bytes not allowed')
    if len(filename) > MAX_FILENAME_LENGTH:
        return CheckResult(False, f'Filename "{filename}" is too long (max {MAX_FILENAME_LENGTH} characters)')
    return CheckResult(True)


def check_type(content_type: str | None, filename: str) -> CheckResult:
    lowered = filename.lower()
    dot = lowered.rfind(".")
    extension = lowered[dot:] if dot >= 0 else ""
    if extension in DANGEROUS_EXTENSIONS:
        return CheckResult(False, f'Attachment "{filename}" has a potentially dangerous file type')
    if content_type and content_type.strip().lower() in DANGEROUS_MIME_TYPES:
        return CheckResult(
            False, f'Attachment "{filename}" has a potentially dangerous MIME type: {content_type}'
        )
    return CheckResult(True)


def check_size(content: str, filename: str, max_size: int = DEFAULT_SIZE_LIMIT) -> CheckResult:
    """Validate base64 ``content`` and measure its decoded size."""
    try:
        decoded = decode_base64(content)
    except ValueError as exc:
        return CheckResult(False, f'Invalid base64 content for attachment "{filename}": {exc}')

    size = len(decoded)
    if content and size == 0:
        return CheckResult(
            False, f'Invalid base64 content for attachment "{filename}": Unable to decode base64'
        )
    if size > max_size:
        return CheckResult(
            False,
            f'Attachment "{filename}" size ({_megabytes(size)}) exceeds limit of {_megabytes(max_size)}',
            size,
        )
    return CheckResult(True, size=size)


def validate_attachment(attachment: AttachmentSpec, policy: AttachmentPolicy) -> CheckResult:
    """Run filename, type and (for inline content) size checks on one item."""
    result = check_filename(attachment.filename)
    if not result.valid:
        return result
    result = check_type(attachment.content_type, attachment.filename)
    if not result.valid:
        return result
    if attachment.content and attachment.url:
        return CheckResult(
            False, f'Attachment "{attachment.filename}" must have either "content" or "url", not both'
        )
    if attachment.content:
        return check_size(attachment.content, attachment.filename, policy.max_size)
    if not attachment.url:
        return CheckResult(
            False, f'Attachment "{attachment.filename}" must have either "content" or "url" field'
        )
    return CheckResult(True)


def validate_attachments(
    attachments: Sequence[AttachmentSpec] | None,
    policy: AttachmentPolicy | None = None,
) -> AttachmentValidationResult:
    """Validate a request's attachment list.

    The count limit is checked before anything else. Items are then
    validated in order while the decoded size of inline content is summed;
    the first time the running total exceeds the aggregate limit the result
    fails with a total-size error.

    Args:
        attachments: The attachments as submitted.
        policy: Limits to apply; defaults to the provider limits.

    Returns:
        An :class:`AttachmentValidationResult` listing every invalid item.
    """
    policy = policy or AttachmentPolicy()
    if not attachments:
        return AttachmentValidationResult(valid=True)

    if len(attachments) > policy.max_count:
        return AttachmentValidationResult(
            valid=False,
            error=f"Too many attachments ({len(attachments)}). Maximum allowed: {policy.max_count}",
        )

    invalid: list[InvalidAttachment] = []
    total_size = 0
    for index, attachment in enumerate(attachments):
        result = validate_attachment(attachment, policy)
        if not result.valid:
            invalid.append(InvalidAttachment(index, attachment, result.error or "invalid"))
            continue
        total_size += result.size
        if total_size > policy.max_total_size:
            return AttachmentValidationResult(
                valid=False,
                error=f"Total attachments size exceeds limit of {_megabytes(policy.max_total_size)}",
                invalid=invalid,
                total_size=total_size,
                total_exceeded=True,
            )

    if invalid:
        return AttachmentValidationResult(
            valid=False, error="Invalid attachments found", invalid=invalid, total_size=total_size
        )
    return AttachmentValidationResult(valid=True, total_size=total_size)
