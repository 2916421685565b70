"""Tests for session wiring from config."""

from __future__ import annotations

import json

import httpx
import pytest

from gigsync.calendar.auth import GoogleOAuthTokenProvider, StaticTokenProvider
from gigsync.calendar.errors import CalendarCredentialError
from gigsync.calendar.session import build_token_provider, open_session
from gigsync.config import GigsyncConfig, GoogleConfig

from ._fake_google import BASE_URL, VALID_TOKEN, FakeGoogleCalendar

pytestmark = pytest.mark.unit


class TestBuildTokenProvider:
    async def test_access_token_gives_static_provider(self, http_client: httpx.AsyncClient):
        provider = build_token_provider(GoogleConfig(access_token=VALID_TOKEN), http_client)

        assert isinstance(provider, StaticTokenProvider)
        assert await provider(True) == VALID_TOKEN

    async def test_credentials_json_wins_over_access_token(self, http_client: httpx.AsyncClient):
        google = GoogleConfig(
            credentials_json=json.dumps(
                {"client_id": "id", "client_secret": "secret", "refresh_token": "refresh"}
            ),
            access_token=VALID_TOKEN,
        )

        assert isinstance(build_token_provider(google, http_client), GoogleOAuthTokenProvider)

    async def test_no_credentials_is_an_error(self, http_client: httpx.AsyncClient):
        with pytest.raises(CalendarCredentialError, match="No Google credentials configured"):
            build_token_provider(GoogleConfig(), http_client)


class TestOpenSession:
    async def test_shared_http_client_is_not_owned(
        self, google: FakeGoogleCalendar, http_client: httpx.AsyncClient
    ):
        config = GigsyncConfig(google=GoogleConfig(access_token=VALID_TOKEN, api_base_url=BASE_URL))

        async with open_session(config, http_client=http_client) as session:
            calendars = await session.client.list_calendars()

        assert session.owned_http_client is None
        assert [calendar.id for calendar in calendars][0] == "primary@example.com"
        assert http_client.is_closed is False

    async def test_own_http_client_is_closed(self):
        config = GigsyncConfig(google=GoogleConfig(access_token=VALID_TOKEN))

        session = open_session(config)
        owned = session.owned_http_client
        await session.aclose()

        assert owned is not None
        assert owned.is_closed
