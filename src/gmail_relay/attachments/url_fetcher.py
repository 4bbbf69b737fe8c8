"""Download attachments exposed through HTTP(S) URLs.

Downloads are bounded in time (one total timeout per URL) and in size: a
declared ``Content-Length`` above the ceiling fails before the body is read,
and the body itself is read in chunks so an undeclared oversize payload is
abandoned as soon as it crosses the ceiling.

Example:
    Fetching a remote file::

        fetcher = URLAttachmentFetcher(timeout=30)
        fetched = await fetcher.fetch("https://example.com/report.pdf")
        fetched.content       # base64 text
        fetched.content_type  # "application/pdf"
"""

from __future__ import annotations

import asyncio
import base64
from urllib.parse import urlparse

import aiohttp

from ..config import DEFAULT_ATTACHMENT_TIMEOUT, DEFAULT_SIZE_LIMIT, MiB
from ..errors import AttachmentTimeoutError, ResolutionError
from ..logger import get_logger
from .base import AttachmentFetcherBase, FetchedContent

USER_AGENT = "Mail-Service/1.0"
CHUNK_SIZE = 64 * 1024
ALLOWED_SCHEMES = ("http", "https")

logger = get_logger("URLAttachmentFetcher")


def _megabytes(size: int) -> str:
    return f"{size / MiB:.2f}MB"


def _too_large(size: int, max_size: int) -> str:
    return f"Attachment size ({_megabytes(size)}) exceeds limit of {_megabytes(max_size)}"


class URLAttachmentFetcher(AttachmentFetcherBase):
    """Fetcher for attachments referenced by an ``http(s)://`` URL.

    Attributes:
        timeout: Seconds allowed for the whole download of one URL.
        max_size: Default size ceiling in bytes.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_ATTACHMENT_TIMEOUT,
        max_size: int = DEFAULT_SIZE_LIMIT,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the URL fetcher.

        Args:
            timeout: Total timeout in seconds for each download.
            max_size: Default size ceiling, overridable per call.
            session: Optional shared client session. When omitted a
                short-lived session is opened for each download.
        """
        self.timeout = timeout
        self.max_size = max_size
        self._session = session

    @staticmethod
    def check_url(url: str) -> None:
        """Reject URLs that are malformed or not plain HTTP(S).

        Raises:
            ResolutionError: If the URL cannot be fetched by this fetcher.
        """
        try:
            parsed = urlparse(url)
        except ValueError as exc:
            raise ResolutionError(f"Invalid URL: {url}", url=url) from exc
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise ResolutionError(f"Invalid URL: {url}", url=url)
        if parsed.scheme.lower() not in ALLOWED_SCHEMES:
            raise ResolutionError(
                f"Unsupported protocol: {parsed.scheme}:. Only http:// and https:// are allowed",
                url=url,
            )
        if not parsed.netloc:
            raise ResolutionError(f"Invalid URL: {url}", url=url)

    async def fetch(self, source: str, max_size: int | None = None) -> FetchedContent:
        """Download ``source`` and return its base64-encoded content.

        Args:
            source: The attachment URL.
            max_size: Size ceiling for this call; defaults to ``self.max_size``.

        Returns:
            The encoded content, its decoded size and the served content type.

        Raises:
            ResolutionError: On invalid URL, HTTP failure or oversize payload.
            AttachmentTimeoutError: If the download exceeds the timeout.
        """
        self.check_url(source)
        limit = self.max_size if max_size is None else max_size
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        logger.debug("Fetching attachment from %s", source)
        try:
            if self._session is not None:
                return await self._download(self._session, source, limit, client_timeout)
            async with aiohttp.ClientSession() as session:
                return await self._download(session, source, limit, client_timeout)
        except asyncio.TimeoutError as exc:
            raise AttachmentTimeoutError(
                f"Timeout loading attachment from URL: {source}", url=source
            ) from exc
        except aiohttp.ClientError as exc:
            raise ResolutionError(
                f"Failed to load attachment from URL: {exc.__class__.__name__}", url=source
            ) from exc

    async def _download(
        self,
        session: aiohttp.ClientSession,
        url: str,
        max_size: int,
        timeout: aiohttp.ClientTimeout,
    ) -> FetchedContent:
        async with session.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout) as response:
            if not 200 <= response.status < 300:
                raise ResolutionError(
                    f"Failed to load attachment from URL: {response.status} {response.reason or ''}".rstrip(),
                    url=url,
                    status=response.status,
                )

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > max_size:
                raise ResolutionError(_too_large(int(declared), max_size), url=url, status=response.status)

            buffer = bytearray()
            async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                buffer.extend(chunk)
                if len(buffer) > max_size:
                    raise ResolutionError(_too_large(len(buffer), max_size), url=url, status=response.status)

            content_type = response.headers.get("Content-Type") or None
            return FetchedContent(
                content=base64.b64encode(bytes(buffer)).decode("ascii"),
                size=len(buffer),
                content_type=content_type,
            )
