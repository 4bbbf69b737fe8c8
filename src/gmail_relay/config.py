# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration for the Gmail relay service.

Every component receives a :class:`RelayConfig` at construction time; no
component reads the environment on its own. :func:`load_settings` builds the
configuration from an INI file with environment variables as fallbacks.

Environment variables (all prefixed with GMR_):
  GMR_CONFIG - Path to config.ini file (default: config.ini)
  GMR_LOG_LEVEL - Logging level (default: INFO)
  GMR_HOST / GMR_PORT - Server bind address (default: 0.0.0.0:8000)
  GMR_CLIENT_ID / GMR_CLIENT_SECRET - OAuth client credentials
  GMR_REDIRECT_URI - Fixed redirect URI for the OAuth setup flow
  GMR_REFRESH_TOKEN - Default refresh token
  GMR_SENDER_EMAIL / GMR_SENDER_NAME - Default sender identity
  GMR_API_KEY - Static API key protecting the send endpoint
  GMR_CORS_ORIGINS - Comma-separated allowed origins (default: *)
  GMR_MAX_ATTACHMENTS - Attachment count limit (default: 10)
  GMR_MAX_ATTACHMENT_BYTES - Per-attachment limit (default: 25 MiB)
  GMR_MAX_TOTAL_ATTACHMENT_BYTES - Aggregate attachment limit (default: 25 MiB)
  GMR_MAX_MESSAGE_BYTES - Composed message limit (default: 25 MiB)
  GMR_ATTACHMENT_TIMEOUT - Per-URL fetch timeout in seconds (default: 30)
  GMR_ATTACHMENT_CONCURRENCY - Parallel URL fetches per request (default: 1)
  GMR_HTTP_TIMEOUT - Token endpoint and delivery timeout (default: 30)
  GMR_RATE_LIMIT_WINDOW - Admission window in seconds (default: 60)
  GMR_AUTHENTICATED_QUOTA - Requests per window with API key (default: 10)
  GMR_ANONYMOUS_QUOTA - Requests per window without API key (default: 5)
  GMR_RATE_LIMIT_SWEEP_INTERVAL - Seconds between sweeps (default: 300)

Config file sections/keys:
  [google] client_id, client_secret, redirect_uri, refresh_token
  [sender] email, name
  [server] host, port, api_key, cors_origins, log_level
  [limits] max_attachments, max_attachment_bytes, max_total_attachment_bytes,
           max_message_bytes, attachment_timeout, attachment_concurrency,
           http_timeout
  [rate_limit] window_seconds, authenticated_quota, anonymous_quota,
               sweep_interval
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path

MiB = 1024 * 1024
DEFAULT_SIZE_LIMIT = 25 * MiB
DEFAULT_MAX_ATTACHMENTS = 10
DEFAULT_ATTACHMENT_TIMEOUT = 30.0
DEFAULT_GMAIL_API_BASE = "https://gmail.googleapis.com"
DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class RelayConfig:
    """Explicit configuration shared by all relay components.

    Attributes:
        client_id: OAuth client id. Without it every token exchange fails.
        client_secret: OAuth client secret. Without it every token exchange fails.
        redirect_uri: Fixed redirect URI for the authorization-code setup flow.
        refresh_token: Default refresh token for requests that carry none.
        sender_email: Default ``From`` address for requests that carry none.
        sender_name: Default display name for the ``From`` header.
        api_key: Static API key; when set, requests must present it.
        max_attachments: Maximum attachments per request.
        max_attachment_bytes: Maximum decoded size of a single attachment.
        max_total_attachment_bytes: Maximum decoded size of all attachments.
        max_message_bytes: Maximum size of the composed MIME message.
        attachment_timeout: Seconds allowed for each attachment URL fetch.
        attachment_concurrency: URL fetches allowed in flight per request.
        http_timeout: Seconds allowed for token exchange and delivery calls.
        rate_limit_window: Sliding window length in seconds.
        authenticated_quota: Requests per window for callers with the API key.
        anonymous_quota: Requests per window for other callers.
        rate_limit_sweep_interval: Seconds between empty-window sweeps.
        cors_origins: Origins allowed by the CORS middleware.
        gmail_api_base: Base URL of the Gmail REST API.
        token_url: OAuth token endpoint.
        host: Server bind host.
        port: Server bind port.
        log_level: Logging level name.
    """

    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    refresh_token: str | None = None
    sender_email: str | None = None
    sender_name: str | None = None
    api_key: str | None = None
    max_attachments: int = DEFAULT_MAX_ATTACHMENTS
    max_attachment_bytes: int = DEFAULT_SIZE_LIMIT
    max_total_attachment_bytes: int = DEFAULT_SIZE_LIMIT
    max_message_bytes: int = DEFAULT_SIZE_LIMIT
    attachment_timeout: float = DEFAULT_ATTACHMENT_TIMEOUT
    attachment_concurrency: int = 1
    http_timeout: float = 30.0
    rate_limit_window: float = 60.0
    authenticated_quota: int = 10
    anonymous_quota: int = 5
    rate_limit_sweep_interval: float = 300.0
    cors_origins: tuple[str, ...] = ("*",)
    gmail_api_base: str = DEFAULT_GMAIL_API_BASE
    token_url: str = DEFAULT_TOKEN_URL
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @property
    def oauth_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings(config_path: str | Path | None = None) -> RelayConfig:
    """Load configuration from an INI file with environment variables as fallbacks.

    Values found in the INI file win over environment variables; anything
    missing from both keeps the :class:`RelayConfig` default.

    Args:
        config_path: Path to the INI file. Defaults to ``GMR_CONFIG`` or
            ``config.ini`` in the working directory. A missing file is not
            an error.

    Returns:
        The populated :class:`RelayConfig`.
    """
    path = Path(config_path or os.getenv("GMR_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(path)

    def get(section: str, option: str, env: str) -> str | None:
        if parser.has_option(section, option):
            return _clean(parser.get(section, option))
        return _clean(os.getenv(env))

    def get_int(section: str, option: str, env: str, default: int) -> int:
        value = get(section, option, env)
        return int(value) if value is not None else default

    def get_float(section: str, option: str, env: str, default: float) -> float:
        value = get(section, option, env)
        return float(value) if value is not None else default

    origins = get("server", "cors_origins", "GMR_CORS_ORIGINS")
    cors_origins = tuple(o.strip() for o in origins.split(",") if o.strip()) if origins else ("*",)

    return RelayConfig(
        client_id=get("google", "client_id", "GMR_CLIENT_ID"),
        client_secret=get("google", "client_secret", "GMR_CLIENT_SECRET"),
        redirect_uri=get("google", "redirect_uri", "GMR_REDIRECT_URI"),
        refresh_token=get("google", "refresh_token", "GMR_REFRESH_TOKEN"),
        sender_email=get("sender", "email", "GMR_SENDER_EMAIL"),
        sender_name=get("sender", "name", "GMR_SENDER_NAME"),
        api_key=get("server", "api_key", "GMR_API_KEY"),
        max_attachments=get_int("limits", "max_attachments", "GMR_MAX_ATTACHMENTS", DEFAULT_MAX_ATTACHMENTS),
        max_attachment_bytes=get_int(
            "limits", "max_attachment_bytes", "GMR_MAX_ATTACHMENT_BYTES", DEFAULT_SIZE_LIMIT
        ),
        max_total_attachment_bytes=get_int(
            "limits", "max_total_attachment_bytes", "GMR_MAX_TOTAL_ATTACHMENT_BYTES", DEFAULT_SIZE_LIMIT
        ),
        max_message_bytes=get_int("limits", "max_message_bytes", "GMR_MAX_MESSAGE_BYTES", DEFAULT_SIZE_LIMIT),
        attachment_timeout=get_float(
            "limits", "attachment_timeout", "GMR_ATTACHMENT_TIMEOUT", DEFAULT_ATTACHMENT_TIMEOUT
        ),
        attachment_concurrency=max(
            1, get_int("limits", "attachment_concurrency", "GMR_ATTACHMENT_CONCURRENCY", 1)
        ),
        http_timeout=get_float("limits", "http_timeout", "GMR_HTTP_TIMEOUT", 30.0),
        rate_limit_window=get_float("rate_limit", "window_seconds", "GMR_RATE_LIMIT_WINDOW", 60.0),
        authenticated_quota=get_int("rate_limit", "authenticated_quota", "GMR_AUTHENTICATED_QUOTA", 10),
        anonymous_quota=get_int("rate_limit", "anonymous_quota", "GMR_ANONYMOUS_QUOTA", 5),
        rate_limit_sweep_interval=get_float(
            "rate_limit", "sweep_interval", "GMR_RATE_LIMIT_SWEEP_INTERVAL", 300.0
        ),
        cors_origins=cors_origins,
        host=get("server", "host", "GMR_HOST") or "0.0.0.0",
        port=get_int("server", "port", "GMR_PORT", 8000),
        log_level=(get("server", "log_level", "GMR_LOG_LEVEL") or "INFO").upper(),
    )
