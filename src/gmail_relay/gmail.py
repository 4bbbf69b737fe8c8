# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Delivery through the Gmail REST API.

:class:`GmailClient` posts a base64url-encoded message to
``users/me/messages/send``. Rejections are classified by status code into a
:class:`ProviderErrorCategory`; the raw provider body is only inspected for
keywords and never returned to the caller.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from .config import DEFAULT_GMAIL_API_BASE, RelayConfig
from .errors import ProviderError, ProviderErrorCategory
from .logger import get_logger

SEND_PATH = "/gmail/v1/users/me/messages/send"

logger = get_logger("GmailClient")


def _category_for(status: int) -> ProviderErrorCategory:
    if status == 400:
        return ProviderErrorCategory.BAD_REQUEST
    if status == 401:
        return ProviderErrorCategory.AUTH_FAILURE
    if status == 403:
        return ProviderErrorCategory.QUOTA_OR_PERMISSION
    if status == 429:
        return ProviderErrorCategory.RATE_LIMITED
    if status in (500, 502, 503, 504):
        return ProviderErrorCategory.SERVICE_UNAVAILABLE
    return ProviderErrorCategory.UNKNOWN


def classify_provider_error(status: int, body: str) -> ProviderError:
    """Turn a rejected delivery response into a user-facing :class:`ProviderError`."""
    category = _category_for(status)
    try:
        data = json.loads(body)
    except ValueError:
        return ProviderError(
            f"Gmail API error ({status}): Unable to parse error response", status, category
        )

    error: Any = data.get("error") if isinstance(data, dict) else None
    detail = ""
    if isinstance(error, dict):
        detail = str(error.get("message") or "")
    elif isinstance(error, str):
        detail = error

    if category is ProviderErrorCategory.BAD_REQUEST:
        if "Invalid" in detail:
            message = "Invalid request: Please check your email parameters"
        elif "size" in detail:
            message = "Message too large: Email exceeds Gmail API size limit"
        else:
            message = "Bad request: Invalid email parameters"
    elif category is ProviderErrorCategory.AUTH_FAILURE:
        message = "Authentication failed. Check your refresh token."
    elif category is ProviderErrorCategory.QUOTA_OR_PERMISSION:
        if "quota" in detail:
            message = "Gmail API quota exceeded. Daily limit reached."
        elif "permission" in detail:
            message = "Permission denied. Check OAuth scopes."
        else:
            message = "Access forbidden: Check OAuth permissions and API quotas"
    elif category is ProviderErrorCategory.RATE_LIMITED:
        message = "Rate limit exceeded. Too many requests to Gmail API."
    elif category is ProviderErrorCategory.SERVICE_UNAVAILABLE:
        message = "Gmail API service temporarily unavailable. Please try again later."
    else:
        message = f"Gmail API error ({status}): Please try again later"
    return ProviderError(message, status, category)


class GmailClient:
    """Minimal client for the Gmail ``messages.send`` endpoint."""

    def __init__(
        self,
        api_base: str = DEFAULT_GMAIL_API_BASE,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._session = session

    @classmethod
    def from_config(cls, config: RelayConfig) -> GmailClient:
        return cls(api_base=config.gmail_api_base, timeout=config.http_timeout)

    @property
    def send_url(self) -> str:
        return f"{self.api_base}{SEND_PATH}"

    async def send_raw(self, access_token: str, raw: str) -> str:
        """Deliver an already encoded message and return its Gmail id.

        Args:
            access_token: Bearer token from the token exchange.
            raw: Base64url envelope of the composed message.

        Raises:
            ProviderError: If Gmail rejects the call or cannot be reached.
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self._session is not None:
                return await self._post(self._session, access_token, raw, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, access_token, raw, timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Gmail API request timed out")
            raise ProviderError(
                "Gmail API request timed out. Please try again later.",
                None,
                ProviderErrorCategory.SERVICE_UNAVAILABLE,
            ) from exc
        except aiohttp.ClientError as exc:
            logger.error("Gmail API unreachable: %s", exc.__class__.__name__)
            raise ProviderError(
                "Gmail API service temporarily unavailable. Please try again later.",
                None,
                ProviderErrorCategory.SERVICE_UNAVAILABLE,
            ) from exc

    async def _post(
        self,
        session: aiohttp.ClientSession,
        access_token: str,
        raw: str,
        timeout: aiohttp.ClientTimeout,
    ) -> str:
        headers = {"Authorization": f"Bearer {access_token}"}
        async with session.post(self.send_url, json={"raw": raw}, headers=headers, timeout=timeout) as resp:
            if not 200 <= resp.status < 300:
                error = classify_provider_error(resp.status, await resp.text())
                logger.error(
                    "Gmail API rejected message (status=%s, category=%s)",
                    error.status,
                    error.category.value,
                )
                raise error
            try:
                payload = await resp.json(content_type=None)
            except ValueError:
                payload = None
        message_id = payload.get("id") if isinstance(payload, dict) else None
        if not message_id:
            raise ProviderError(
                "Gmail API response did not include a message id",
                resp.status,
                ProviderErrorCategory.UNKNOWN,
            )
        return str(message_id)
