"""Relocate events between calendars."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gigsync.calendar.client import CalendarProvider
from gigsync.calendar.errors import CalendarError
from gigsync.calendar.models import CalendarEvent

if TYPE_CHECKING:
    from gigsync.calendar.store import SyncStore

logger = logging.getLogger(__name__)


class Mover:
    def __init__(self, client: CalendarProvider, store: SyncStore) -> None:
        self._client = client
        self._store = store

    async def move_event(
        self, source_calendar_id: str, event_id: str, dest_calendar_id: str
    ) -> CalendarEvent:
        """Move an event, cloning and deleting the original if the native move fails.

        The remote may briefly list both copies, so the store is refreshed and
        de-duplicated by event id afterwards.
        """
        if source_calendar_id == dest_calendar_id:
            raise ValueError("source and destination calendars must differ")

        try:
            moved = await self._client.move_event(source_calendar_id, event_id, dest_calendar_id)
        except CalendarError as exc:
            logger.warning(
                "Native move of %s from %s to %s failed (%s); falling back to clone",
                event_id,
                source_calendar_id,
                dest_calendar_id,
                exc,
            )
            moved = await self._client.clone_event_to_calendar(
                source_calendar_id, event_id, dest_calendar_id
            )
            await self._client.safe_delete_event(source_calendar_id, event_id)

        relocated = moved.model_copy(update={"calendar_id": dest_calendar_id})
        self._store.forget_event(source_calendar_id, event_id)
        self._store.record_event(relocated, select=True)
        logger.info(
            "Moved event %s from %s to %s as %s",
            event_id,
            source_calendar_id,
            dest_calendar_id,
            relocated.event_id,
        )
        await self._store.refresh_after_mutation()
        return relocated
