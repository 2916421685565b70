"""Wiring of client, token provider and store for one calendar session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from gigsync.calendar.auth import (
    GoogleOAuthCredentials,
    GoogleOAuthTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from gigsync.calendar.client import GoogleCalendarClient
from gigsync.calendar.errors import CalendarCredentialError
from gigsync.calendar.store import SyncStore

if TYPE_CHECKING:
    from gigsync.config import GigsyncConfig, GoogleConfig

logger = logging.getLogger(__name__)


@dataclass
class CalendarSession:
    """A client plus the one store that caches its calendars."""

    client: GoogleCalendarClient
    store: SyncStore
    owned_http_client: httpx.AsyncClient | None = None

    async def aclose(self) -> None:
        await self.store.aclose()
        await self.client.aclose()
        if self.owned_http_client is not None:
            await self.owned_http_client.aclose()

    async def __aenter__(self) -> CalendarSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _load_credentials(google: GoogleConfig) -> GoogleOAuthCredentials | None:
    if google.credentials_json:
        return GoogleOAuthCredentials.from_json(google.credentials_json)
    if google.access_token:
        return None
    raise CalendarCredentialError(
        "No Google credentials configured: set gigsync.google.credentials_json "
        "or gigsync.google.access_token"
    )


def build_token_provider(google: GoogleConfig, http_client: httpx.AsyncClient) -> TokenProvider:
    credentials = _load_credentials(google)
    if credentials is not None:
        return GoogleOAuthTokenProvider(credentials, http_client)
    return StaticTokenProvider(google.access_token or "")


def open_session(
    config: GigsyncConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> CalendarSession:
    """Create a session from *config*; the caller must ``aclose()`` it.

    A caller-supplied *http_client* is shared, not closed.
    """
    _load_credentials(config.google)
    owned_http_client = None
    if http_client is None:
        owned_http_client = http_client = httpx.AsyncClient(timeout=30.0)

    client = GoogleCalendarClient(
        build_token_provider(config.google, http_client),
        http_client,
        base_url=config.google.api_base_url,
    )
    store = SyncStore(
        client,
        range_days_back=config.sync.range_days_back,
        range_days_forward=config.sync.range_days_forward,
        max_results=config.sync.max_results,
        preferred_calendar_ids=config.sync.selected_calendars,
        tag_key=config.correlation.tag_key,
    )
    logger.debug("Opened calendar session against %s", config.google.api_base_url)
    return CalendarSession(client=client, store=store, owned_http_client=owned_http_client)
