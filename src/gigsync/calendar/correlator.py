"""Correlation of calendar events with external opportunity records.

An opportunity id is stored verbatim as an extended-property value (by default
under the private ``opty_id`` key) and looked up with server-side filters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Literal

from gigsync.calendar.client import CalendarProvider
from gigsync.calendar.errors import CalendarError
from gigsync.calendar.models import CalendarEvent, EventRange, TagFilter

if TYPE_CHECKING:
    from gigsync.calendar.store import SyncStore

logger = logging.getLogger(__name__)

DEFAULT_TAG_KEY = "opty_id"

TagScope = Literal["private", "shared"]


class Correlator:
    def __init__(
        self,
        client: CalendarProvider,
        store: SyncStore,
        *,
        tag_key: str = DEFAULT_TAG_KEY,
    ) -> None:
        self._client = client
        self._store = store
        self._tag_key = tag_key

    async def set_tag(
        self,
        calendar_id: str,
        event_id: str,
        *,
        private: dict[str, str] | None = None,
        shared: dict[str, str] | None = None,
    ) -> CalendarEvent:
        """Patch only ``extendedProperties``; other event fields are untouched."""
        extended: dict[str, dict[str, str]] = {}
        if private:
            extended["private"] = dict(private)
        if shared:
            extended["shared"] = dict(shared)

        if not extended:
            cached = self._store.find_event(calendar_id, event_id)
            if cached is not None:
                return cached
            return await self._client.get_event(calendar_id, event_id)

        event = await self._client.update_event(
            calendar_id, event_id, {"extendedProperties": extended}
        )
        self._store.record_event(event)
        self._store.emit()
        return event

    async def find_by_tag(
        self,
        tag_value: str,
        calendar_ids: Iterable[str] | None = None,
        range: EventRange | None = None,
        *,
        tag_key: str | None = None,
    ) -> list[CalendarEvent]:
        """Collect events tagged with *tag_value* across calendars.

        Calendars that fail (lost access, deleted, ...) are skipped.
        """
        if not tag_value:
            return []
        window = range or self._store.range or self._store.default_range()
        ids = list(calendar_ids or []) or [calendar.id for calendar in self._store.calendars]
        tag_filter = TagFilter(private={tag_key or self._tag_key: str(tag_value)})

        found: list[CalendarEvent] = []
        for calendar_id in ids:
            try:
                found.extend(
                    await self._client.list_events(
                        calendar_id, window.start, window.end, tag_filter=tag_filter
                    )
                )
            except CalendarError as exc:
                logger.warning("Skipping calendar %s in tag lookup: %s", calendar_id, exc)
        return found

    @staticmethod
    def read_tag(
        event: CalendarEvent, key: str = DEFAULT_TAG_KEY, scope: TagScope = "private"
    ) -> str | None:
        properties = event.extended.private if scope == "private" else event.extended.shared
        return properties.get(key)
