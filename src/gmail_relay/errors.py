# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error kinds raised by the delivery pipeline.

Every failure surfaced by the relay is a :class:`MailRelayError` subclass
tagged with an :class:`ErrorKind`. Structured details (limits, measured
sizes, HTTP status codes) are carried as attributes so callers never have
to parse the human-readable message.

All errors are terminal for the request that raised them. The relay never
retries; :attr:`ProviderError.retryable` and :class:`RateLimitError` exist
only to inform the caller's own retry decision.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Tag identifying the family of a pipeline failure."""

    VALIDATION = "validation"
    RESOLUTION = "resolution"
    SIZE_LIMIT = "size_limit"
    AUTH = "auth"
    PROVIDER = "provider"
    RATE_LIMIT = "rate_limit"
    CONFIGURATION = "configuration"
    UNAUTHORIZED = "unauthorized"


class ProviderErrorCategory(str, Enum):
    """User-facing classification of a rejected delivery call."""

    BAD_REQUEST = "bad_request"
    AUTH_FAILURE = "auth_failure"
    QUOTA_OR_PERMISSION = "quota_or_permission"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNKNOWN = "unknown"


class MailRelayError(Exception):
    """Base class for every error produced by the relay.

    Attributes:
        kind: The :class:`ErrorKind` tag.
        message: Human-readable description, safe to return to callers.
        http_status: Status code the HTTP layer should answer with.
    """

    kind: ErrorKind = ErrorKind.VALIDATION
    http_status: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        """Structured fields specific to the subclass."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": False,
            "error": self.kind.value,
            "message": self.message,
        }
        payload.update({k: v for k, v in self.details().items() if v is not None})
        return payload


class ValidationError(MailRelayError):
    """Bad address, bad attachment or missing required field."""

    kind = ErrorKind.VALIDATION
    http_status = 400

    def __init__(self, message: str, field: str | None = None, invalid: list[Any] | None = None):
        super().__init__(message)
        self.field = field
        self.invalid = invalid

    def details(self) -> dict[str, Any]:
        return {"field": self.field, "invalid": self.invalid}


class ResolutionError(MailRelayError):
    """An attachment URL could not be loaded; aborts the whole send."""

    kind = ErrorKind.RESOLUTION
    http_status = 400
    timed_out = False

    def __init__(
        self,
        message: str,
        url: str | None = None,
        filename: str | None = None,
        status: int | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.filename = filename
        self.status = status

    def for_attachment(self, filename: str) -> ResolutionError:
        """Return the same error reworded to name the attachment."""
        self.filename = filename
        self.message = f'Failed to load attachment "{filename}" from URL: {self.message}'
        self.args = (self.message,)
        return self

    def details(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "url": self.url,
            "status": self.status,
            "timedOut": self.timed_out or None,
        }


class AttachmentTimeoutError(ResolutionError):
    """An attachment fetch exceeded its time limit."""

    timed_out = True


class SizeLimitError(MailRelayError):
    """A size ceiling was exceeded; carries both measured and limit values."""

    kind = ErrorKind.SIZE_LIMIT
    http_status = 413

    def __init__(self, message: str, measured: int, limit: int):
        super().__init__(message)
        self.measured = measured
        self.limit = limit

    def details(self) -> dict[str, Any]:
        return {"measured": self.measured, "limit": self.limit}


class AuthError(MailRelayError):
    """The OAuth token exchange failed."""

    kind = ErrorKind.AUTH
    http_status = 502

    def __init__(self, message: str, provider_code: str | None = None):
        super().__init__(message)
        self.provider_code = provider_code

    def details(self) -> dict[str, Any]:
        return {"providerCode": self.provider_code}


class ProviderError(MailRelayError):
    """The delivery call was rejected by the mail provider."""

    kind = ErrorKind.PROVIDER
    http_status = 502

    def __init__(self, message: str, status: int | None, category: ProviderErrorCategory):
        super().__init__(message)
        self.status = status
        self.category = category

    @property
    def retryable(self) -> bool:
        return self.category in (
            ProviderErrorCategory.RATE_LIMITED,
            ProviderErrorCategory.SERVICE_UNAVAILABLE,
        )

    def details(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "category": self.category.value,
            "retryable": self.retryable,
        }


class RateLimitError(MailRelayError):
    """Admission was denied; retry after ``retry_after`` seconds."""

    kind = ErrorKind.RATE_LIMIT
    http_status = 429

    def __init__(self, message: str, retry_after: int, limit: int):
        super().__init__(message)
        self.retry_after = retry_after
        self.limit = limit

    def details(self) -> dict[str, Any]:
        return {"retryAfter": self.retry_after, "limit": self.limit}


class ConfigurationError(MailRelayError):
    """The service is missing configuration it cannot run without."""

    kind = ErrorKind.CONFIGURATION
    http_status = 500


class UnauthorizedError(MailRelayError):
    """The caller did not present the configured API key."""

    kind = ErrorKind.UNAUTHORIZED
    http_status = 401
