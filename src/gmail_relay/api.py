"""FastAPI application factory for the Gmail relay.

This module provides the REST interface of the relay:

- ``POST /api/sendmail``: compose and deliver one email request
- ``GET /api/auth/google`` and ``GET /api/auth/google/callback``: one-time
  OAuth setup returning a refresh token
- ``GET /health`` and ``GET /metrics``: container monitoring

Requests to the send endpoint pass admission control first. The caller's
identity is the presented API key, or failing that the client IP, and the
authenticated quota applies only when the presented key matches the
configured one. The API key itself is checked after admission.

Example:
    Creating and running the API application::

        from gmail_relay.core import MailRelay
        from gmail_relay.api import create_app

        relay = MailRelay(config)
        app = create_app(relay)
        uvicorn.run(app, host="0.0.0.0", port=8000)
"""

import asyncio
import contextlib
import json
import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.security import APIKeyHeader
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import ValidationError as PydanticValidationError

from .config import RelayConfig
from .core import MailRelay
from .errors import MailRelayError, RateLimitError, UnauthorizedError, ValidationError
from .logger import get_logger
from .models import EmailRequest
from .rate_limit import RateLimitSweeper, SlidingWindowRateLimiter

logger = get_logger("GmailRelayAPI")

API_KEY_HEADER_NAME = "X-API-Key"
CALLBACK_PATH = "/api/auth/google/callback"
DISCONNECT_POLL_INTERVAL = 0.5
CLIENT_CLOSED_REQUEST = 499

api_key_scheme = APIKeyHeader(name=API_KEY_HEADER_NAME, auto_error=False)

_service: MailRelay | None = None


@dataclass
class RateLimitTiers:
    """The two admission limiters, selected by whether a valid API key was shown."""

    authenticated: SlidingWindowRateLimiter
    anonymous: SlidingWindowRateLimiter

    @classmethod
    def from_config(cls, config: RelayConfig) -> "RateLimitTiers":
        return cls(
            authenticated=SlidingWindowRateLimiter(config.authenticated_quota, config.rate_limit_window),
            anonymous=SlidingWindowRateLimiter(config.anonymous_quota, config.rate_limit_window),
        )

    def select(self, authenticated: bool) -> tuple[str, SlidingWindowRateLimiter]:
        if authenticated:
            return "authenticated", self.authenticated
        return "anonymous", self.anonymous


def presented_api_key(request: Request, header_key: str | None) -> str | None:
    """API key from ``X-API-Key`` or an ``Authorization: Bearer`` header."""
    if header_key:
        return header_key
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):] or None
    return None


def client_identity(request: Request, api_key: str | None) -> str:
    """Admission key: the presented API key, else the client IP."""
    if api_key:
        return f"api_key:{api_key}"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")
    return f"ip:{ip or 'unknown'}"


def key_matches(expected: str | None, presented: str | None) -> bool:
    if not expected or not presented:
        return False
    return secrets.compare_digest(expected.encode(), presented.encode())


async def rate_limit_headers(limiter: SlidingWindowRateLimiter, identity: str) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limiter.quota),
        "X-RateLimit-Remaining": str(await limiter.remaining(identity)),
        "X-RateLimit-Reset": str(await limiter.reset_at(identity)),
    }


def error_response(exc: MailRelayError, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)


async def _wait_for_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


def create_app(
    svc: MailRelay,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager] | None = None,
    tiers: RateLimitTiers | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        svc: The :class:`MailRelay` performing the deliveries. Its
            configuration provides the API key, CORS origins and quotas.
        lifespan: Optional lifespan context manager for extra startup and
            shutdown work. The rate-limit sweeper always runs.
        tiers: Admission limiters; built from the configuration when omitted.

    Returns:
        A configured application ready to be served by Uvicorn.
    """
    global _service
    _service = svc
    config = svc.config
    tiers = tiers or RateLimitTiers.from_config(config)
    sweeper = RateLimitSweeper(
        [tiers.authenticated, tiers.anonymous], interval=config.rate_limit_sweep_interval
    )

    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper.start()
        try:
            if lifespan is not None:
                async with lifespan(app):
                    yield
            else:
                yield
        finally:
            await sweeper.stop()

    api = FastAPI(title="Gmail Relay", lifespan=app_lifespan)
    api.state.relay = svc
    api.state.tiers = tiers
    api.state.sweeper = sweeper
    api.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", API_KEY_HEADER_NAME],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )

    @api.exception_handler(MailRelayError)
    async def relay_error_handler(request: Request, exc: MailRelayError):
        """Translate relay errors into their JSON error body."""
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind.value, exc.message)
        return error_response(exc)

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return {"status": "ok"}

    @api.get("/metrics")
    async def metrics():
        """Expose Prometheus metrics."""
        return Response(content=svc.metrics.generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @api.post("/api/sendmail")
    async def sendmail(request: Request, header_key: str | None = Depends(api_key_scheme)):
        """Compose and deliver one email request."""
        if not _service:
            raise HTTPException(500, "Service not initialized")

        presented = presented_api_key(request, header_key)
        authenticated = key_matches(config.api_key, presented)
        identity = client_identity(request, presented)
        tier, limiter = tiers.select(authenticated)

        if not await limiter.is_allowed(identity):
            svc.metrics.inc_rate_limited(tier)
            retry_after = await limiter.reset_seconds(identity)
            headers = await rate_limit_headers(limiter, identity)
            headers["Retry-After"] = str(retry_after)
            exc = RateLimitError(
                "Too many requests. Please try again later.", retry_after=retry_after, limit=limiter.quota
            )
            return error_response(exc, headers)

        if config.api_key:
            if not presented:
                raise UnauthorizedError(
                    f"API key is required. Provide it in {API_KEY_HEADER_NAME} header "
                    "or Authorization: Bearer <token>"
                )
            if not authenticated:
                raise UnauthorizedError("Invalid API key")

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationError("Request body must be valid JSON") from exc
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            email = EmailRequest.model_validate(body)
        except PydanticValidationError as exc:
            invalid = [
                {"loc": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in exc.errors()
            ]
            raise ValidationError("Invalid request body", invalid=invalid) from exc

        send_task = asyncio.create_task(_service.send(email))
        watcher = asyncio.create_task(_wait_for_disconnect(request))
        try:
            await asyncio.wait({send_task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            send_task.cancel()
            raise
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
        if not send_task.done():
            send_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, MailRelayError):
                await send_task
            logger.info("Client disconnected, send to %s cancelled", email.to)
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        result = send_task.result()
        headers = await rate_limit_headers(limiter, identity)
        return JSONResponse(
            content=result.to_response().model_dump(by_alias=True, exclude_none=True),
            headers=headers,
        )

    def callback_uri(request: Request) -> str:
        return config.redirect_uri or str(request.url_for("google_auth_callback"))

    @api.get("/api/auth/google")
    async def google_auth(request: Request, state: str | None = None):
        """Redirect to Google's consent page to start the OAuth setup.

        The redirect URI is the one the callback later presents to the token
        endpoint, so the two always match.
        """
        target = callback_uri(request)
        return RedirectResponse(svc.oauth.authorization_url(target, state=state), status_code=307)

    @api.get(CALLBACK_PATH, name="google_auth_callback")
    async def google_auth_callback(request: Request, code: str | None = None, error: str | None = None):
        """Exchange the authorization code for a refresh token."""
        svc.oauth.require_credentials()
        if error:
            raise ValidationError(f"OAuth error: {error}", field="error")
        if not code:
            raise ValidationError("Authorization code not provided", field="code")
        redirect = callback_uri(request)
        grant = await svc.oauth.exchange_code(code, redirect)
        logger.info("OAuth setup completed, refresh token issued")
        return {
            "ok": True,
            "refreshToken": grant.refresh_token,
            "accessToken": grant.access_token,
            "expiresIn": grant.expires_in,
            "message": "Save the refresh token as the default refresh token in the relay configuration",
            "redirectUri": redirect,
        }

    return api
