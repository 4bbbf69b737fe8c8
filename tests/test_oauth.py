import asyncio
from urllib.parse import parse_qs, urlparse

import pytest
from aioresponses import aioresponses
from yarl import URL

from gmail_relay.config import DEFAULT_TOKEN_URL, RelayConfig
from gmail_relay.errors import AuthError, ConfigurationError
from gmail_relay.oauth import GMAIL_SEND_SCOPE, UNPARSEABLE_ERROR, GoogleOAuthClient

REDIRECT = "http://localhost:8000/api/auth/google/callback"


@pytest.fixture
def oauth():
    return GoogleOAuthClient("client-id", "client-secret")


@pytest.mark.asyncio
async def test_refresh_returns_access_token(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, payload={"access_token": "ya29.token", "expires_in": 3599, "token_type": "Bearer"})
        token = await oauth.refresh_access_token("  refresh-1  ")

        request = m.requests[("POST", URL(DEFAULT_TOKEN_URL))][0]

    assert token.access_token == "ya29.token"
    assert token.expires_in == 3599
    assert request.kwargs["data"] == {
        "client_id": "client-id",
        "client_secret": "client-secret",
        "refresh_token": "refresh-1",
        "grant_type": "refresh_token",
    }


@pytest.mark.asyncio
async def test_every_call_exchanges_again(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, payload={"access_token": "a1"})
        m.post(DEFAULT_TOKEN_URL, payload={"access_token": "a2"})
        first = await oauth.refresh_access_token("rt")
        second = await oauth.refresh_access_token("rt")

    assert (first.access_token, second.access_token) == ("a1", "a2")


@pytest.mark.asyncio
async def test_missing_client_credentials_is_configuration_error():
    oauth = GoogleOAuthClient(None, "secret")
    with pytest.raises(ConfigurationError):
        await oauth.refresh_access_token("rt")


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "", "   "])
async def test_empty_refresh_token_rejected(oauth, token):
    with pytest.raises(AuthError, match="Refresh token is empty"):
        await oauth.refresh_access_token(token)


@pytest.mark.asyncio
async def test_invalid_grant_is_actionable(oauth):
    with aioresponses() as m:
        m.post(
            DEFAULT_TOKEN_URL,
            status=400,
            payload={"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
        )
        with pytest.raises(AuthError) as excinfo:
            await oauth.refresh_access_token("stale")

    err = excinfo.value
    assert err.provider_code == "invalid_grant"
    assert err.message.startswith("Token exchange failed: invalid_grant")
    assert "/api/auth/google" in err.message
    assert "(Token has been expired or revoked.)" in err.message
    assert err.http_status == 502


@pytest.mark.asyncio
async def test_invalid_client_points_at_credentials(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, status=401, payload={"error": "invalid_client"})
        with pytest.raises(AuthError, match="client secret") as excinfo:
            await oauth.refresh_access_token("rt")

    assert excinfo.value.provider_code == "invalid_client"


@pytest.mark.asyncio
async def test_unparseable_error_is_not_leaked(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, status=500, body="<html>internal stack trace</html>", content_type="text/html")
        with pytest.raises(AuthError) as excinfo:
            await oauth.refresh_access_token("rt")

    assert excinfo.value.message == UNPARSEABLE_ERROR
    assert "stack trace" not in excinfo.value.message


@pytest.mark.asyncio
async def test_non_2xx_status_is_failure(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, status=304, payload={"access_token": "ya29.token"})
        with pytest.raises(AuthError, match="Token exchange failed"):
            await oauth.refresh_access_token("rt")


@pytest.mark.asyncio
async def test_exchange_code_non_2xx_status_is_failure(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, status=304, payload={"access_token": "a", "refresh_token": "rt"})
        with pytest.raises(AuthError, match="Token exchange failed"):
            await oauth.exchange_code("4/code", REDIRECT)


@pytest.mark.asyncio
async def test_missing_access_token_is_failure(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, payload={"token_type": "Bearer"})
        with pytest.raises(AuthError, match="Access token not received"):
            await oauth.refresh_access_token("rt")


@pytest.mark.asyncio
async def test_timeout_is_auth_error(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, exception=asyncio.TimeoutError())
        with pytest.raises(AuthError, match="timed out"):
            await oauth.refresh_access_token("rt")


def test_authorization_url(oauth):
    url = oauth.authorization_url(REDIRECT, state="xyz")
    parsed = urlparse(url)
    params = parse_qs(parsed.query)

    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://accounts.google.com/o/oauth2/v2/auth"
    assert params["client_id"] == ["client-id"]
    assert params["redirect_uri"] == [REDIRECT]
    assert params["scope"] == [GMAIL_SEND_SCOPE]
    assert params["access_type"] == ["offline"]
    assert params["prompt"] == ["consent"]
    assert params["response_type"] == ["code"]
    assert params["state"] == ["xyz"]


def test_authorization_url_requires_credentials():
    with pytest.raises(ConfigurationError):
        GoogleOAuthClient("", "").authorization_url(REDIRECT)


@pytest.mark.asyncio
async def test_exchange_code_returns_refresh_token(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, payload={"access_token": "a", "refresh_token": "1//refresh", "expires_in": 3599})
        grant = await oauth.exchange_code("4/code", REDIRECT)
        request = m.requests[("POST", URL(DEFAULT_TOKEN_URL))][0]

    assert grant.refresh_token == "1//refresh"
    assert request.kwargs["data"]["grant_type"] == "authorization_code"
    assert request.kwargs["data"]["redirect_uri"] == REDIRECT


@pytest.mark.asyncio
async def test_exchange_code_without_refresh_token(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, payload={"access_token": "a"})
        with pytest.raises(AuthError, match="revoking access"):
            await oauth.exchange_code("4/code", REDIRECT)


@pytest.mark.asyncio
async def test_exchange_code_redirect_mismatch_names_uri(oauth):
    with aioresponses() as m:
        m.post(DEFAULT_TOKEN_URL, status=400, payload={"error": "redirect_uri_mismatch"})
        with pytest.raises(AuthError) as excinfo:
            await oauth.exchange_code("4/code", REDIRECT)

    assert f"Expected: {REDIRECT}" in excinfo.value.message
    assert excinfo.value.provider_code == "redirect_uri_mismatch"


def test_from_config():
    config = RelayConfig(client_id="id", client_secret="s", token_url="https://token.test/t", http_timeout=7)
    oauth = GoogleOAuthClient.from_config(config)
    assert oauth.is_configured()
    assert oauth.token_url == "https://token.test/t"
    assert oauth.timeout == 7
