"""Base protocol for attachment fetchers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FetchedContent:
    """Bytes produced by a fetcher, already base64-encoded.

    Attributes:
        content: Standard base64 encoding of the payload.
        size: Decoded payload size in bytes.
        content_type: Content type reported by the source, if any.
    """

    content: str
    size: int
    content_type: str | None = None


@dataclass(frozen=True)
class ResolvedAttachment:
    """An attachment ready to be composed into a MIME part."""

    filename: str
    content_type: str
    content: str
    size: int


class AttachmentFetcherBase:
    """Interface implemented by concrete attachment fetchers."""

    async def fetch(self, source: str, max_size: int | None = None) -> FetchedContent:
        """Return the attachment payload referenced by ``source``."""
        raise NotImplementedError
