# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Google OAuth2 token exchange.

The relay never stores access tokens: every delivery exchanges the caller's
refresh token for a fresh bearer token via :meth:`GoogleOAuthClient.refresh_access_token`.

The one-time setup flow (consent redirect, then authorization-code
exchange) is also provided so an operator can obtain the refresh token in
the first place.

Example:
    Obtaining a bearer token for a delivery::

        oauth = GoogleOAuthClient.from_config(config)
        token = await oauth.refresh_access_token(refresh_token)
        headers = {"Authorization": f"Bearer {token.access_token}"}
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import aiohttp

from .config import DEFAULT_TOKEN_URL, RelayConfig
from .errors import AuthError, ConfigurationError
from .logger import get_logger

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"

UNPARSEABLE_ERROR = "Token exchange failed: Unable to parse error response"
INVALID_GRANT_HINT = (
    ". This usually means: 1) Refresh token is invalid/expired, 2) Token was revoked, "
    "3) Token belongs to different client ID, or 4) Redirect URI mismatch. "
    "Please get a new refresh token via /api/auth/google"
)
INVALID_CLIENT_HINT = ". Check that the OAuth client ID and client secret are correct"
MISSING_REFRESH_TOKEN = (
    "Refresh token not received. This may happen if you already authorized the app. "
    "Try revoking access and authorizing again."
)

logger = get_logger("GoogleOAuth")


@dataclass(frozen=True)
class AccessToken:
    """Short-lived bearer credential; never cached across requests."""

    access_token: str
    expires_in: int | None = None
    token_type: str | None = None
    scope: str | None = None


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by the authorization-code exchange."""

    access_token: str
    refresh_token: str
    expires_in: int | None = None
    scope: str | None = None


def _opt_int(value: Any) -> int | None:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _opt_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class GoogleOAuthClient:
    """Talks to Google's OAuth token endpoint with the application credentials.

    Attributes:
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        token_url: Token endpoint URL.
        timeout: Seconds allowed for one token endpoint call.
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.client_id = (client_id or "").strip()
        self.client_secret = (client_secret or "").strip()
        self.token_url = token_url
        self.timeout = timeout
        self._session = session

    @classmethod
    def from_config(cls, config: RelayConfig) -> GoogleOAuthClient:
        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            token_url=config.token_url,
            timeout=config.http_timeout,
        )

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def require_credentials(self) -> None:
        if not self.is_configured():
            raise ConfigurationError("Google API keys not found: set the OAuth client ID and client secret")

    def authorization_url(self, redirect_uri: str, state: str | None = None) -> str:
        """Build the consent URL; ``prompt=consent`` guarantees a refresh token."""
        self.require_credentials()
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": GMAIL_SEND_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def refresh_access_token(self, refresh_token: str | None) -> AccessToken:
        """Exchange a refresh token for a fresh access token.

        Raises:
            ConfigurationError: If the client credentials are missing.
            AuthError: If the refresh token is empty or Google rejects it.
        """
        self.require_credentials()
        if not refresh_token or not refresh_token.strip():
            raise AuthError("Refresh token is empty or not provided")

        status, payload = await self._post_token({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token.strip(),
            "grant_type": "refresh_token",
        })
        if not 200 <= status < 300:
            raise self._refresh_error(payload)
        if payload is None:
            raise AuthError(UNPARSEABLE_ERROR)

        access_token = _opt_str(payload.get("access_token"))
        if access_token is None:
            raise AuthError("Access token not received in response")
        return AccessToken(
            access_token=access_token,
            expires_in=_opt_int(payload.get("expires_in")),
            token_type=_opt_str(payload.get("token_type")),
            scope=_opt_str(payload.get("scope")),
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for access and refresh tokens.

        Raises:
            ConfigurationError: If the client credentials are missing.
            AuthError: If the exchange fails or no refresh token is returned.
        """
        self.require_credentials()
        if not code or not code.strip():
            raise AuthError("Authorization code not provided")

        status, payload = await self._post_token({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code.strip(),
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        })
        if not 200 <= status < 300:
            if payload is None:
                raise AuthError(UNPARSEABLE_ERROR)
            code_name = _opt_str(payload.get("error"))
            message = f"Token exchange failed: {code_name or 'unknown error'}"
            if code_name == "invalid_grant":
                message += ". The authorization code may have expired or already been used."
            elif code_name == "redirect_uri_mismatch":
                message += (
                    f". Redirect URI mismatch. Expected: {redirect_uri}. Make sure this URI is added "
                    "to your Google Cloud Console OAuth 2.0 Client ID settings."
                )
            description = _opt_str(payload.get("error_description"))
            if description:
                message += f" ({description})"
            logger.warning("Authorization code exchange rejected (error=%s)", code_name or "-")
            raise AuthError(message, provider_code=code_name)
        if payload is None:
            raise AuthError(UNPARSEABLE_ERROR)

        access_token = _opt_str(payload.get("access_token"))
        if access_token is None:
            raise AuthError("Access token not received in response")
        refresh = _opt_str(payload.get("refresh_token"))
        if refresh is None:
            raise AuthError(MISSING_REFRESH_TOKEN)
        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh,
            expires_in=_opt_int(payload.get("expires_in")),
            scope=_opt_str(payload.get("scope")),
        )

    def _refresh_error(self, payload: dict[str, Any] | None) -> AuthError:
        if payload is None:
            logger.warning("Token exchange failed with an unparseable response")
            return AuthError(UNPARSEABLE_ERROR)
        code_name = _opt_str(payload.get("error"))
        message = f"Token exchange failed: {code_name or 'unknown error'}"
        if code_name == "invalid_grant":
            message += INVALID_GRANT_HINT
        elif code_name == "invalid_client":
            message += INVALID_CLIENT_HINT
        description = _opt_str(payload.get("error_description"))
        if description:
            message += f" ({description})"
        logger.warning("Token exchange rejected (error=%s)", code_name or "-")
        return AuthError(message, provider_code=code_name)

    async def _post_token(self, form: dict[str, str]) -> tuple[int, dict[str, Any] | None]:
        """POST ``form`` to the token endpoint.

        Returns:
            The HTTP status and the decoded JSON object, or ``None`` when the
            body is not a JSON object.
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self._session is not None:
                return await self._send(self._session, form, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._send(session, form, timeout)
        except asyncio.TimeoutError as exc:
            raise AuthError("Token exchange failed: request to the token endpoint timed out") from exc
        except aiohttp.ClientError as exc:
            raise AuthError(f"Token exchange failed: {exc.__class__.__name__}") from exc

    async def _send(
        self,
        session: aiohttp.ClientSession,
        form: dict[str, str],
        timeout: aiohttp.ClientTimeout,
    ) -> tuple[int, dict[str, Any] | None]:
        async with session.post(self.token_url, data=form, timeout=timeout) as resp:
            try:
                payload = await resp.json(content_type=None)
            except ValueError:
                payload = None
            return resp.status, payload if isinstance(payload, dict) else None
