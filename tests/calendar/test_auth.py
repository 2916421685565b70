"""Tests for OAuth credential parsing and access-token providers."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from gigsync.calendar.auth import (
    GOOGLE_OAUTH_TOKEN_URL,
    GoogleOAuthCredentials,
    GoogleOAuthTokenProvider,
    StaticTokenProvider,
)
from gigsync.calendar.errors import CalendarCredentialError, CalendarTokenRefreshError

pytestmark = pytest.mark.unit


def _credentials() -> GoogleOAuthCredentials:
    return GoogleOAuthCredentials(
        client_id="client-id", client_secret="client-secret", refresh_token="refresh-token"
    )


def _token_response(status_code: int = 200, payload: dict | None = None) -> httpx.Response:
    request = httpx.Request("POST", GOOGLE_OAUTH_TOKEN_URL)
    return httpx.Response(
        status_code,
        json=payload if payload is not None else {"access_token": "tok", "expires_in": 3600},
        request=request,
    )


def _mock_http_client(*responses: httpx.Response) -> MagicMock:
    mock_client = MagicMock(spec=httpx.AsyncClient)
    mock_client.post = AsyncMock(side_effect=list(responses))
    return mock_client


class TestCredentialsFromJson:
    def test_flat_payload(self):
        creds = GoogleOAuthCredentials.from_json(
            json.dumps(
                {"client_id": " id ", "client_secret": "secret", "refresh_token": "refresh"}
            )
        )
        assert creds.client_id == "id"

    def test_installed_wrapper(self):
        creds = GoogleOAuthCredentials.from_json(
            json.dumps(
                {
                    "installed": {"client_id": "id", "client_secret": "secret"},
                    "refresh_token": "refresh",
                }
            )
        )
        assert creds.client_secret == "secret"
        assert creds.refresh_token == "refresh"

    def test_invalid_json(self):
        with pytest.raises(CalendarCredentialError, match="valid JSON"):
            GoogleOAuthCredentials.from_json("{nope")

    def test_missing_fields_are_listed(self):
        with pytest.raises(CalendarCredentialError, match="client_secret, refresh_token"):
            GoogleOAuthCredentials.from_json(json.dumps({"client_id": "id"}))

    def test_blank_fields_rejected(self):
        with pytest.raises(CalendarCredentialError, match="non-empty"):
            GoogleOAuthCredentials.from_json(
                json.dumps({"client_id": "id", "client_secret": " ", "refresh_token": "r"})
            )


class TestGoogleOAuthTokenProvider:
    async def test_exchanges_refresh_token_and_caches(self):
        http_client = _mock_http_client(_token_response())
        provider = GoogleOAuthTokenProvider(_credentials(), http_client)

        assert await provider() == "tok"
        assert await provider(False) == "tok"

        http_client.post.assert_awaited_once()
        call = http_client.post.await_args
        assert call.args[0] == GOOGLE_OAUTH_TOKEN_URL
        assert call.kwargs["data"]["grant_type"] == "refresh_token"
        assert call.kwargs["data"]["refresh_token"] == "refresh-token"

    async def test_force_refresh_bypasses_cache(self):
        http_client = _mock_http_client(
            _token_response(payload={"access_token": "first", "expires_in": 3600}),
            _token_response(payload={"access_token": "second", "expires_in": 3600}),
        )
        provider = GoogleOAuthTokenProvider(_credentials(), http_client)

        assert await provider() == "first"
        assert await provider(True) == "second"
        assert http_client.post.await_count == 2

    async def test_short_lived_token_refreshes_again(self):
        http_client = _mock_http_client(
            _token_response(payload={"access_token": "first", "expires_in": 0}),
            _token_response(payload={"access_token": "second", "expires_in": 3600}),
        )
        provider = GoogleOAuthTokenProvider(_credentials(), http_client)
        await provider()
        # expires_in=0 falls back to the default lifetime, so the cache holds.
        assert await provider() == "first"

    async def test_http_failure(self):
        http_client = _mock_http_client(
            _token_response(400, {"error": {"message": "invalid_grant"}})
        )
        provider = GoogleOAuthTokenProvider(_credentials(), http_client)
        with pytest.raises(CalendarTokenRefreshError, match="invalid_grant"):
            await provider()

    async def test_network_failure(self):
        http_client = MagicMock(spec=httpx.AsyncClient)
        http_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        provider = GoogleOAuthTokenProvider(_credentials(), http_client)
        with pytest.raises(CalendarTokenRefreshError, match="refused"):
            await provider()

    async def test_missing_access_token(self):
        http_client = _mock_http_client(_token_response(payload={"expires_in": 3600}))
        provider = GoogleOAuthTokenProvider(_credentials(), http_client)
        with pytest.raises(CalendarTokenRefreshError, match="access_token"):
            await provider()


class TestStaticTokenProvider:
    async def test_returns_same_token(self):
        provider = StaticTokenProvider(" abc ")
        assert await provider() == "abc"
        assert await provider(True) == "abc"

    def test_blank_token_rejected(self):
        with pytest.raises(CalendarCredentialError):
            StaticTokenProvider("  ")
