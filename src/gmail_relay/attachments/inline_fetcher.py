"""Handle attachments embedded inline as base64 strings."""

from __future__ import annotations

from ..errors import ResolutionError
from .base import AttachmentFetcherBase, FetchedContent
from .validator import decode_base64


class InlineAttachmentFetcher(AttachmentFetcherBase):
    async def fetch(self, source: str, max_size: int | None = None) -> FetchedContent:
        """Pass the base64 ``source`` through unchanged, measuring its size."""
        try:
            size = len(decode_base64(source))
        except ValueError as exc:
            raise ResolutionError(str(exc)) from exc
        if max_size is not None and size > max_size:
            raise ResolutionError(f"Attachment size ({size} bytes) exceeds limit of {max_size} bytes")
        return FetchedContent(content=source, size=size)
