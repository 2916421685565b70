"""Fixtures wiring the client and store to the in-memory Google Calendar double."""

from __future__ import annotations

import httpx
import pytest

from gigsync.calendar.auth import StaticTokenProvider
from gigsync.calendar.client import GoogleCalendarClient
from gigsync.calendar.store import SyncStore

from ._fake_google import BASE_URL, VALID_TOKEN, FakeGoogleCalendar


@pytest.fixture
def google() -> FakeGoogleCalendar:
    fake = FakeGoogleCalendar()
    fake.add_calendar("primary@example.com", summary="Me", primary=True)
    fake.add_calendar("work@example.com", summary="Work", access_role="writer")
    fake.add_calendar("shared@example.com", summary="Shared", access_role="reader")
    return fake


@pytest.fixture
async def http_client(google: FakeGoogleCalendar):
    async with httpx.AsyncClient(transport=httpx.MockTransport(google.handle)) as client:
        yield client


@pytest.fixture
def client(http_client: httpx.AsyncClient) -> GoogleCalendarClient:
    return GoogleCalendarClient(StaticTokenProvider(VALID_TOKEN), http_client, base_url=BASE_URL)


@pytest.fixture
async def store(client: GoogleCalendarClient):
    sync_store = SyncStore(client)
    yield sync_store
    await sync_store.aclose()
