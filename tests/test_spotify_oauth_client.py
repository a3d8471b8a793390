try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from tokenkeeper.clients.spotify_auth import (
    AuthorizationCodeExchangeError,
    SpotifyOAuthClient,
    TokenRefreshError,
)
from tokenkeeper.core.config import SpotifySettings


def _settings(**overrides) -> SpotifySettings:
    values = {
        "SPOTIFY_CLIENT_ID": "client",
        "SPOTIFY_CLIENT_SECRET": "secret",
        "SPOTIFY_REDIRECT_URI": "https://app.example.com/api/auth/spotify/callback",
        "SPOTIFY_ACCOUNTS_BASE_URL": "https://accounts.example.com/",
    }
    values.update(overrides)
    return SpotifySettings(**values)


class RecordingHandler:
    def __init__(self, response: httpx.Response | Exception) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def form(self, index: int = -1) -> dict[str, str]:
        parsed = parse_qs(self.requests[index].content.decode("utf-8"))
        return {key: values[0] for key, values in parsed.items()}


def _client(handler: RecordingHandler, **overrides) -> SpotifyOAuthClient:
    return SpotifyOAuthClient(
        _settings(**overrides), transport=httpx.MockTransport(handler)
    )


def test_authorization_url_carries_client_scope_and_state() -> None:
    client = SpotifyOAuthClient(_settings())

    url = client.build_authorization_url(state="signed-state")

    parts = urlsplit(url)
    query = {key: values[0] for key, values in parse_qs(parts.query).items()}
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == (
        "https://accounts.example.com/authorize"
    )
    assert query["response_type"] == "code"
    assert query["client_id"] == "client"
    assert query["scope"] == "streaming user-read-email user-read-private"
    assert query["redirect_uri"] == "https://app.example.com/api/auth/spotify/callback"
    assert query["state"] == "signed-state"
    assert "show_dialog" not in query


def test_authorization_url_can_force_dialog_and_custom_scopes() -> None:
    client = SpotifyOAuthClient(
        _settings(SPOTIFY_SHOW_DIALOG=True, SPOTIFY_SCOPES="user-read-email, playlist-read-private")
    )

    query = parse_qs(urlsplit(client.build_authorization_url(state="s")).query)

    assert query["show_dialog"] == ["true"]
    assert query["scope"] == ["user-read-email playlist-read-private"]


@pytest.mark.asyncio
async def test_code_exchange_posts_form_with_basic_auth() -> None:
    handler = RecordingHandler(
        httpx.Response(
            200,
            json={
                "access_token": "access",
                "refresh_token": "refresh",
                "expires_in": 3600,
                "scope": "streaming",
                "token_type": "Bearer",
            },
        )
    )

    grant = await _client(handler).exchange_authorization_code("one-time-code")

    assert grant.access_token == "access"
    assert grant.refresh_token == "refresh"
    assert grant.lifetime_seconds == 3600
    request = handler.requests[0]
    assert str(request.url) == "https://accounts.example.com/api/token"
    expected_auth = base64.b64encode(b"client:secret").decode("ascii")
    assert request.headers["authorization"] == f"Basic {expected_auth}"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    assert handler.form() == {
        "grant_type": "authorization_code",
        "code": "one-time-code",
        "redirect_uri": "https://app.example.com/api/auth/spotify/callback",
    }


@pytest.mark.asyncio
async def test_code_exchange_is_not_retried_on_rejection() -> None:
    handler = RecordingHandler(
        httpx.Response(
            400,
            json={"error": "invalid_grant", "error_description": "Invalid authorization code"},
        )
    )

    with pytest.raises(AuthorizationCodeExchangeError) as excinfo:
        await _client(handler).exchange_authorization_code("used-code")

    assert len(handler.requests) == 1
    assert excinfo.value.transient is False
    assert excinfo.value.error == "invalid_grant"
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_code_exchange_requires_refresh_token() -> None:
    handler = RecordingHandler(
        httpx.Response(200, json={"access_token": "access", "expires_in": 3600})
    )

    with pytest.raises(AuthorizationCodeExchangeError):
        await _client(handler).exchange_authorization_code("code")


@pytest.mark.asyncio
async def test_refresh_without_rotation_returns_no_refresh_token() -> None:
    handler = RecordingHandler(
        httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
    )

    grant = await _client(handler).refresh_access_token("R1")

    assert grant.access_token == "fresh"
    assert grant.refresh_token is None
    assert handler.form() == {"grant_type": "refresh_token", "refresh_token": "R1"}


@pytest.mark.asyncio
async def test_refresh_rejection_requires_reauthorization() -> None:
    handler = RecordingHandler(
        httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Refresh token revoked"}
        )
    )

    with pytest.raises(TokenRefreshError) as excinfo:
        await _client(handler).refresh_access_token("R1")

    assert excinfo.value.requires_reauthorization is True
    assert excinfo.value.description == "Refresh token revoked"


@pytest.mark.parametrize("status_code", [429, 500, 503])
@pytest.mark.asyncio
async def test_refresh_provider_errors_are_transient(status_code: int) -> None:
    handler = RecordingHandler(httpx.Response(status_code, text="busy"))

    with pytest.raises(TokenRefreshError) as excinfo:
        await _client(handler).refresh_access_token("R1")

    assert excinfo.value.transient is True
    assert excinfo.value.status_code == status_code


@pytest.mark.asyncio
async def test_refresh_timeout_is_transient() -> None:
    handler = RecordingHandler(httpx.ReadTimeout("timed out"))

    with pytest.raises(TokenRefreshError) as excinfo:
        await _client(handler).refresh_access_token("R1")

    assert excinfo.value.transient is True


@pytest.mark.asyncio
async def test_unreachable_provider_is_transient() -> None:
    handler = RecordingHandler(httpx.ConnectError("connection refused"))

    with pytest.raises(AuthorizationCodeExchangeError) as excinfo:
        await _client(handler).exchange_authorization_code("code")

    assert excinfo.value.transient is True


@pytest.mark.asyncio
async def test_malformed_success_payload_is_rejected() -> None:
    handler = RecordingHandler(httpx.Response(200, json={"access_token": "x"}))

    with pytest.raises(TokenRefreshError) as excinfo:
        await _client(handler).refresh_access_token("R1")

    assert excinfo.value.transient is False


@pytest.mark.parametrize(
    "payload",
    [
        {"access_token": "A2", "expires_in": 3600, "refresh_token": 12345},
        {"access_token": {"nested": 1}, "expires_in": 3600},
        {"access_token": "A2", "expires_in": 3600, "scope": ["streaming"]},
        {"access_token": "A2", "expires_in": 10**12},
        {"access_token": "A2", "expires_in": -1},
        {"access_token": "A2", "expires_in": "soon"},
    ],
)
@pytest.mark.asyncio
async def test_mistyped_success_payload_requires_reauthorization(payload: dict) -> None:
    handler = RecordingHandler(httpx.Response(200, json=payload))

    with pytest.raises(TokenRefreshError) as excinfo:
        await _client(handler).refresh_access_token("R1")

    assert excinfo.value.transient is False
    assert excinfo.value.status_code is None


@pytest.mark.asyncio
async def test_code_exchange_rejects_non_string_refresh_token() -> None:
    handler = RecordingHandler(
        httpx.Response(200, json={"access_token": "A", "expires_in": 3600, "refresh_token": 7})
    )

    with pytest.raises(AuthorizationCodeExchangeError) as excinfo:
        await _client(handler).exchange_authorization_code("code")

    assert excinfo.value.requires_reauthorization is True


@pytest.mark.asyncio
async def test_granted_scope_is_kept_on_the_grant() -> None:
    handler = RecordingHandler(
        httpx.Response(
            200,
            json={
                "access_token": "A",
                "refresh_token": "R",
                "expires_in": 3600,
                "scope": "streaming user-read-email",
            },
        )
    )

    grant = await _client(handler).exchange_authorization_code("code")

    assert grant.scope == "streaming user-read-email"
