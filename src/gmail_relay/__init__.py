# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Gmail relay: deliver HTTP email requests through the Gmail REST API.

The package composes MIME messages from heterogeneous content and
attachments, exchanges an OAuth refresh token for a bearer token, and
delivers through ``users/me/messages/send``, with per-caller sliding-window
admission control in front.
"""

from .config import RelayConfig, load_settings
from .core import MailRelay, SendResult
from .errors import (
    AttachmentTimeoutError,
    AuthError,
    ConfigurationError,
    ErrorKind,
    MailRelayError,
    ProviderError,
    ProviderErrorCategory,
    RateLimitError,
    ResolutionError,
    SizeLimitError,
    UnauthorizedError,
    ValidationError,
)
from .models import AttachmentSpec, EmailRequest

__version__ = "0.1.0"

__all__ = [
    "AttachmentSpec",
    "AttachmentTimeoutError",
    "AuthError",
    "ConfigurationError",
    "EmailRequest",
    "ErrorKind",
    "MailRelay",
    "MailRelayError",
    "ProviderError",
    "ProviderErrorCategory",
    "RateLimitError",
    "RelayConfig",
    "ResolutionError",
    "SendResult",
    "SizeLimitError",
    "UnauthorizedError",
    "ValidationError",
    "load_settings",
]
