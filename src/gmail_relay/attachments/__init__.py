# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Attachment validation and resolution.

Provides AttachmentManager for turning a request's attachment descriptors
into composable attachments:

- policy validation (count, filename, dangerous types, sizes) before any
  network access
- inline base64 content passed through unchanged
- ``url`` attachments downloaded with a per-URL timeout and size ceiling

URLs are resolved sequentially by default; a concurrency above one fans out
with a semaphore while the per-item and aggregate limits still hold.
Resolution is all-or-nothing: the first failure aborts the batch and the
already-resolved items are discarded.
"""

from __future__ import annotations

import asyncio
import mimetypes
from collections.abc import Sequence

from ..config import RelayConfig
from ..errors import ResolutionError, SizeLimitError, ValidationError
from ..logger import get_logger
from ..models import DEFAULT_CONTENT_TYPE, AttachmentSpec
from .base import AttachmentFetcherBase, FetchedContent, ResolvedAttachment
from .inline_fetcher import InlineAttachmentFetcher
from .url_fetcher import URLAttachmentFetcher
from .validator import AttachmentPolicy, AttachmentValidationResult, validate_attachments

__all__ = [
    "AttachmentFetcherBase",
    "AttachmentManager",
    "AttachmentPolicy",
    "FetchedContent",
    "InlineAttachmentFetcher",
    "ResolvedAttachment",
    "URLAttachmentFetcher",
    "validate_attachments",
]


class AttachmentManager:
    """Validate and resolve the attachments of one request at a time."""

    def __init__(
        self,
        policy: AttachmentPolicy | None = None,
        url_fetcher: AttachmentFetcherBase | None = None,
        inline_fetcher: AttachmentFetcherBase | None = None,
        concurrency: int = 1,
    ):
        self.policy = policy or AttachmentPolicy()
        self._url_fetcher = url_fetcher or URLAttachmentFetcher(max_size=self.policy.max_size)
        self._inline_fetcher = inline_fetcher or InlineAttachmentFetcher()
        self._concurrency = max(1, concurrency)
        self.logger = get_logger("AttachmentManager")

    @classmethod
    def from_config(cls, config: RelayConfig) -> AttachmentManager:
        policy = AttachmentPolicy.from_config(config)
        return cls(
            policy=policy,
            url_fetcher=URLAttachmentFetcher(
                timeout=config.attachment_timeout, max_size=policy.max_size
            ),
            concurrency=config.attachment_concurrency,
        )

    @staticmethod
    def guess_mime(filename: str) -> str:
        """Guess the MIME type for the given filename."""
        mt, _ = mimetypes.guess_type(filename)
        return mt or DEFAULT_CONTENT_TYPE

    def validate(self, attachments: Sequence[AttachmentSpec] | None) -> AttachmentValidationResult:
        """Apply the policy, raising on the first rejected batch.

        Raises:
            SizeLimitError: If the aggregate inline size exceeds the limit.
            ValidationError: If the count is exceeded or any item is invalid.
        """
        result = validate_attachments(attachments, self.policy)
        if result.valid:
            return result
        if result.total_exceeded:
            raise SizeLimitError(
                result.error or "Total attachments size exceeds limit",
                measured=result.total_size,
                limit=self.policy.max_total_size,
            )
        raise ValidationError(
            result.error or "Invalid attachments",
            field="attachments",
            invalid=[item.as_dict() for item in result.invalid],
        )

    async def resolve(self, attachments: Sequence[AttachmentSpec] | None) -> list[ResolvedAttachment]:
        """Validate then resolve every attachment, preserving order.

        Raises:
            ValidationError: If the policy rejects the batch.
            ResolutionError: If an attachment cannot be loaded.
            SizeLimitError: If the aggregate decoded size exceeds the limit.
        """
        if not attachments:
            return []
        self.validate(attachments)

        semaphore = asyncio.Semaphore(self._concurrency)

        async def bounded(att: AttachmentSpec) -> ResolvedAttachment:
            async with semaphore:
                return await self.resolve_one(att)

        if self._concurrency == 1:
            resolved = [await self.resolve_one(att) for att in attachments]
        else:
            tasks = [asyncio.ensure_future(bounded(att)) for att in attachments]
            try:
                resolved = list(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    task.cancel()
                raise

        total = sum(item.size for item in resolved)
        if total > self.policy.max_total_size:
            raise SizeLimitError(
                f"Total attachments size ({total} bytes) exceeds limit of "
                f"{self.policy.max_total_size} bytes",
                measured=total,
                limit=self.policy.max_total_size,
            )
        return resolved

    async def resolve_one(self, att: AttachmentSpec) -> ResolvedAttachment:
        """Resolve a single, already validated, attachment."""
        if att.content:
            fetched = await self._inline_fetcher.fetch(att.content, self.policy.max_size)
        elif att.url:
            try:
                fetched = await self._url_fetcher.fetch(att.url, self.policy.max_size)
            except ResolutionError as exc:
                self.logger.warning("Attachment %s could not be loaded: %s", att.filename, exc.message)
                raise exc.for_attachment(att.filename)
        else:
            raise ValidationError(
                f'Attachment "{att.filename}" must have either "content" or "url" field',
                field="attachments",
                invalid=[att.summary()],
            )

        content_type = att.content_type or fetched.content_type or self.guess_mime(att.filename)
        return ResolvedAttachment(
            filename=att.filename,
            content_type=content_type,
            content=fetched.content,
            size=fetched.size,
        )
