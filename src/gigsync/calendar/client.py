"""Google Calendar v3 adapter.

:class:`GoogleCalendarClient` is stateless apart from its HTTP client and
token provider. It builds requests, parses responses into local models and
raises typed errors; it never touches the sync store.
"""

from __future__ import annotations

import abc
import logging
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from gigsync.calendar.auth import TokenProvider
from gigsync.calendar.codec import (
    build_event_body,
    calendar_meta_from_google,
    draft_from_google,
    event_from_google,
    google_rfc3339,
    master_event_id,
    safe_google_error,
)
from gigsync.calendar.errors import (
    AUTH_RETRY_STATUS_CODES,
    CalendarError,
    CalendarNotFoundError,
    CalendarTransportError,
    request_error_for,
)
from gigsync.calendar.models import (
    BulkDeleteResult,
    CalendarCreate,
    CalendarEvent,
    CalendarMeta,
    TagFilter,
)

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_LIST_PAGE_SIZE = 250
EVENT_LIST_PAGE_SIZE = 2500
PURGE_WINDOW_START = datetime(1970, 1, 1, tzinfo=UTC)
PURGE_WINDOW_END = datetime(2100, 1, 1, tzinfo=UTC)


def _path_id(value: str, *, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} must be a non-empty string")
    return quote(normalized, safe="")


def _write_params(*, wants_conferencing: bool, notify_attendees: bool) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if notify_attendees:
        params["sendUpdates"] = "all"
    if wants_conferencing:
        params["conferenceDataVersion"] = 1
    return params


def _tag_filter_params(tag_filter: TagFilter | None) -> dict[str, Any]:
    if tag_filter is None:
        return {}
    params: dict[str, Any] = {}
    if tag_filter.private:
        params["privateExtendedProperty"] = [f"{k}={v}" for k, v in tag_filter.private.items()]
    if tag_filter.shared:
        params["sharedExtendedProperty"] = [f"{k}={v}" for k, v in tag_filter.shared.items()]
    return params


class CalendarProvider(abc.ABC):
    """Remote calendar contract used by the sync store and its helpers."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., ``google``)."""
        ...

    @abc.abstractmethod
    async def list_calendars(self) -> list[CalendarMeta]:
        """Return the user's calendar list."""
        ...

    @abc.abstractmethod
    async def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        *,
        max_results: int = EVENT_LIST_PAGE_SIZE,
        tag_filter: TagFilter | None = None,
    ) -> list[CalendarEvent]:
        """Return expanded single events in ``[time_min, time_max)``."""
        ...

    @abc.abstractmethod
    async def get_event_payload(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        """Return the raw remote event resource."""
        ...

    @abc.abstractmethod
    async def get_event(self, calendar_id: str, event_id: str) -> CalendarEvent:
        ...

    @abc.abstractmethod
    async def create_event(
        self,
        calendar_id: str,
        body: dict[str, Any],
        *,
        wants_conferencing: bool = False,
        notify_attendees: bool = False,
    ) -> CalendarEvent:
        ...

    @abc.abstractmethod
    async def update_event(
        self,
        calendar_id: str,
        event_id: str,
        body: dict[str, Any],
        *,
        wants_conferencing: bool = False,
        notify_attendees: bool = False,
    ) -> CalendarEvent:
        ...

    @abc.abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        ...

    @abc.abstractmethod
    async def safe_delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event or its series; succeed if it is already gone."""
        ...

    @abc.abstractmethod
    async def delete_all_events_by_tag(
        self, calendar_id: str, tag_key: str, tag_value: str
    ) -> BulkDeleteResult:
        ...

    @abc.abstractmethod
    async def move_event(
        self, source_calendar_id: str, event_id: str, dest_calendar_id: str
    ) -> CalendarEvent:
        ...

    @abc.abstractmethod
    async def clone_event_to_calendar(
        self, source_calendar_id: str, event_id: str, dest_calendar_id: str
    ) -> CalendarEvent:
        ...

    @abc.abstractmethod
    async def aclose(self) -> None:
        """Release provider resources."""
        ...


class GoogleCalendarClient(CalendarProvider):
    """Google Calendar REST client with a single auth-retry path."""

    def __init__(
        self,
        token_provider: TokenProvider,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ) -> None:
        self._token_provider = token_provider
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=30.0)
        self._base_url = base_url.rstrip("/")

    @property
    def name(self) -> str:
        return "google"

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request_once(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = await self._token_provider(force_refresh)
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise CalendarTransportError(f"Google Calendar request failed: {exc}") from exc

    async def _request_with_bearer(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self._base_url}{normalized_path}"

        response = await self._request_once(
            method=method, url=url, params=params, json_body=json_body, force_refresh=False
        )
        if response.status_code in AUTH_RETRY_STATUS_CODES:
            logger.debug(
                "Google Calendar %s %s returned %d; retrying with a fresh token",
                method,
                normalized_path,
                response.status_code,
            )
            response = await self._request_once(
                method=method, url=url, params=params, json_body=json_body, force_refresh=True
            )

        if response.status_code < 200 or response.status_code >= 300:
            message, reason = safe_google_error(response)
            raise request_error_for(response.status_code, message, reason)
        return response

    async def _request_google_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._request_with_bearer(
            method, path, params=params, json_body=json_body
        )
        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarTransportError(
                "Google Calendar API returned invalid JSON for a successful response"
            ) from exc

        if not isinstance(payload, dict):
            raise CalendarTransportError(
                "Google Calendar API returned an unexpected JSON payload shape"
            )
        return payload

    async def _iter_pages(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token
            payload = await self._request_google_json("GET", path, params=page_params)
            raw_items = payload.get("items") or []
            if not isinstance(raw_items, list):
                raise CalendarTransportError(
                    f"Google Calendar response for {path} has no items array"
                )
            items.extend(item for item in raw_items if isinstance(item, dict))
            next_token = payload.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token:
                return items
            page_token = next_token

    def _map_event(self, payload: dict[str, Any], calendar_id: str) -> CalendarEvent:
        event = event_from_google(payload, calendar_id)
        if event is None:
            raise CalendarTransportError(
                "Google Calendar returned an event that could not be mapped"
            )
        return event

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    async def list_calendars(self) -> list[CalendarMeta]:
        items = await self._iter_pages(
            "/users/me/calendarList",
            {"maxResults": CALENDAR_LIST_PAGE_SIZE, "showHidden": "true"},
        )
        calendars: list[CalendarMeta] = []
        for item in items:
            meta = calendar_meta_from_google(item)
            if meta is not None:
                calendars.append(meta)
        return calendars

    async def create_calendar(self, payload: CalendarCreate) -> CalendarMeta:
        """Insert a secondary calendar and return its calendar-list entry."""
        body: dict[str, Any] = {"summary": payload.summary}
        if payload.time_zone:
            body["timeZone"] = payload.time_zone
        if payload.description:
            body["description"] = payload.description
        if payload.location:
            body["location"] = payload.location
        created = await self._request_google_json("POST", "/calendars", json_body=body)

        calendar_id = created.get("id")
        if not isinstance(calendar_id, str) or not calendar_id:
            raise CalendarTransportError(
                "Google Calendar create_calendar response is missing an id"
            )
        encoded = _path_id(calendar_id, field_name="calendar_id")

        list_patch: dict[str, Any] = {"selected": payload.selected}
        if payload.color:
            list_patch["backgroundColor"] = payload.color
            list_patch["foregroundColor"] = "#000000"
        await self._request_google_json(
            "PATCH",
            f"/users/me/calendarList/{encoded}",
            params={"colorRgbFormat": "true"},
            json_body=list_patch,
        )

        entry = await self._request_google_json("GET", f"/users/me/calendarList/{encoded}")
        meta = calendar_meta_from_google(entry)
        if meta is None:
            raise CalendarTransportError("Google Calendar returned an unusable calendarList entry")
        logger.info("Created calendar %s (%s)", meta.summary, meta.id)
        return meta

    async def delete_calendar(self, calendar_id: str) -> None:
        encoded = _path_id(calendar_id, field_name="calendar_id")
        await self._request_with_bearer("DELETE", f"/calendars/{encoded}")

    async def set_calendar_color(self, calendar_id: str, background_color: str) -> CalendarMeta:
        encoded = _path_id(calendar_id, field_name="calendar_id")
        entry = await self._request_google_json(
            "PATCH",
            f"/users/me/calendarList/{encoded}",
            params={"colorRgbFormat": "true"},
            json_body={"backgroundColor": background_color, "foregroundColor": "#000000"},
        )
        meta = calendar_meta_from_google(entry)
        if meta is None:
            raise CalendarTransportError("Google Calendar returned an unusable calendarList entry")
        return meta

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_event_payloads(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        *,
        max_results: int = EVENT_LIST_PAGE_SIZE,
        tag_filter: TagFilter | None = None,
    ) -> list[dict[str, Any]]:
        if max_results < 1:
            raise ValueError("max_results must be at least 1")
        encoded = _path_id(calendar_id, field_name="calendar_id")
        params: dict[str, Any] = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "timeMin": google_rfc3339(time_min),
            "timeMax": google_rfc3339(time_max),
            "maxResults": max_results,
        }
        params.update(_tag_filter_params(tag_filter))
        return await self._iter_pages(f"/calendars/{encoded}/events", params)

    async def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        *,
        max_results: int = EVENT_LIST_PAGE_SIZE,
        tag_filter: TagFilter | None = None,
    ) -> list[CalendarEvent]:
        items = await self.list_event_payloads(
            calendar_id, time_min, time_max, max_results=max_results, tag_filter=tag_filter
        )
        events: list[CalendarEvent] = []
        for item in items:
            event = event_from_google(item, calendar_id)
            if event is not None:
                events.append(event)
        return events

    async def get_event_payload(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        encoded_calendar = _path_id(calendar_id, field_name="calendar_id")
        encoded_event = _path_id(event_id, field_name="event_id")
        return await self._request_google_json(
            "GET", f"/calendars/{encoded_calendar}/events/{encoded_event}"
        )

    async def get_event(self, calendar_id: str, event_id: str) -> CalendarEvent:
        payload = await self.get_event_payload(calendar_id, event_id)
        return self._map_event(payload, calendar_id)

    async def create_event(
        self,
        calendar_id: str,
        body: dict[str, Any],
        *,
        wants_conferencing: bool = False,
        notify_attendees: bool = False,
    ) -> CalendarEvent:
        encoded = _path_id(calendar_id, field_name="calendar_id")
        payload = await self._request_google_json(
            "POST",
            f"/calendars/{encoded}/events",
            params=_write_params(
                wants_conferencing=wants_conferencing, notify_attendees=notify_attendees
            ),
            json_body=body,
        )
        return self._map_event(payload, calendar_id)

    async def update_event(
        self,
        calendar_id: str,
        event_id: str,
        body: dict[str, Any],
        *,
        wants_conferencing: bool = False,
        notify_attendees: bool = False,
    ) -> CalendarEvent:
        encoded_calendar = _path_id(calendar_id, field_name="calendar_id")
        encoded_event = _path_id(event_id, field_name="event_id")
        payload = await self._request_google_json(
            "PATCH",
            f"/calendars/{encoded_calendar}/events/{encoded_event}",
            params=_write_params(
                wants_conferencing=wants_conferencing, notify_attendees=notify_attendees
            ),
            json_body=body,
        )
        return self._map_event(payload, calendar_id)

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        encoded_calendar = _path_id(calendar_id, field_name="calendar_id")
        encoded_event = _path_id(event_id, field_name="event_id")
        await self._request_with_bearer(
            "DELETE", f"/calendars/{encoded_calendar}/events/{encoded_event}"
        )

    async def safe_delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete ``event_id``, falling back to its recurring master.

        An event that is already gone counts as deleted, so calling this twice
        is harmless.
        """
        try:
            await self.delete_event(calendar_id, event_id)
            return
        except CalendarError as direct_exc:
            logger.debug(
                "Direct delete of %s/%s failed (%s); resolving master",
                calendar_id,
                event_id,
                type(direct_exc).__name__,
            )

        try:
            payload = await self.get_event_payload(calendar_id, event_id)
        except CalendarNotFoundError:
            logger.debug("Event %s/%s already deleted", calendar_id, event_id)
            return

        master_id = master_event_id(payload) or event_id
        try:
            await self.delete_event(calendar_id, master_id)
        except CalendarError:
            try:
                await self.get_event_payload(calendar_id, master_id)
            except CalendarNotFoundError:
                logger.debug("Master %s/%s already deleted", calendar_id, master_id)
                return
            raise

    async def delete_all_events_by_tag(
        self, calendar_id: str, tag_key: str, tag_value: str
    ) -> BulkDeleteResult:
        """Best-effort delete of every event tagged ``tag_key=tag_value``.

        Instances collapse to their master so no partial series is left behind.
        A listing failure propagates; per-event failures are collected.
        """
        items = await self.list_event_payloads(
            calendar_id,
            PURGE_WINDOW_START,
            PURGE_WINDOW_END,
            tag_filter=TagFilter(private={tag_key: tag_value}),
        )

        master_ids: list[str] = []
        seen: set[str] = set()
        for item in items:
            master_id = master_event_id(item)
            if master_id is None or master_id in seen:
                continue
            seen.add(master_id)
            master_ids.append(master_id)

        result = BulkDeleteResult()
        for master_id in master_ids:
            try:
                await self.safe_delete_event(calendar_id, master_id)
            except CalendarError as exc:
                logger.warning(
                    "Failed to delete tagged event %s/%s: %s", calendar_id, master_id, exc
                )
                result.failed.append(exc)
            else:
                result.succeeded += 1

        logger.info(
            "Purged %d of %d event(s) tagged %s=%s from %s",
            result.succeeded,
            result.attempted,
            tag_key,
            tag_value,
            calendar_id,
        )
        return result

    async def move_event(
        self, source_calendar_id: str, event_id: str, dest_calendar_id: str
    ) -> CalendarEvent:
        encoded_calendar = _path_id(source_calendar_id, field_name="calendar_id")
        encoded_event = _path_id(event_id, field_name="event_id")
        payload = await self._request_google_json(
            "POST",
            f"/calendars/{encoded_calendar}/events/{encoded_event}/move",
            params={"destination": dest_calendar_id},
        )
        return self._map_event(payload, dest_calendar_id)

    async def clone_event_to_calendar(
        self, source_calendar_id: str, event_id: str, dest_calendar_id: str
    ) -> CalendarEvent:
        """Recreate an event in another calendar; the source is left untouched."""
        source = await self.get_event_payload(source_calendar_id, event_id)
        draft = draft_from_google(source)
        return await self.create_event(
            dest_calendar_id,
            build_event_body(draft),
            wants_conferencing=draft.add_conference,
            notify_attendees=draft.notify_attendees,
        )
