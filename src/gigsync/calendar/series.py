"""Recurring-series edits: single-instance delete, whole-series delete and split."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from gigsync.calendar.client import CalendarProvider
from gigsync.calendar.codec import (
    attendee_emails,
    conference_create_request,
    event_start_instant,
    had_conferencing,
    master_event_id,
    prune_empty,
)
from gigsync.calendar.errors import CalendarNotFoundError, MalformedRecurrenceError
from gigsync.calendar.models import CalendarEvent
from gigsync.calendar.recurrence import instance_start_cutoff, split_recurrence

if TYPE_CHECKING:
    from gigsync.calendar.store import SyncStore

logger = logging.getLogger(__name__)

# Master fields copied verbatim onto the series created by a split.
_SPLIT_COPIED_FIELDS = (
    "summary",
    "description",
    "location",
    "visibility",
    "transparency",
    "reminders",
    "extendedProperties",
)


class SeriesEditor:
    def __init__(self, client: CalendarProvider, store: SyncStore) -> None:
        self._client = client
        self._store = store

    async def delete_instance(self, calendar_id: str, event_id: str) -> None:
        """Delete one occurrence; the rest of the series is untouched."""
        await self._store.delete_by_id(calendar_id, event_id)

    async def delete_series(self, calendar_id: str, instance_id: str) -> str:
        """Delete the whole series that *instance_id* belongs to.

        Returns the master event id that was deleted.
        """
        instance = await self._client.get_event_payload(calendar_id, instance_id)
        master_id = master_event_id(instance) or instance_id
        try:
            await self._client.delete_event(calendar_id, master_id)
        except CalendarNotFoundError:
            logger.debug("Series %s/%s was already deleted", calendar_id, master_id)
        self._store.forget_series(calendar_id, master_id)
        logger.info("Deleted series %s from %s", master_id, calendar_id)
        await self._store.refresh_after_mutation()
        return master_id

    async def split_at_instance(self, calendar_id: str, instance_id: str) -> CalendarEvent:
        """End the series just before *instance_id* and start a new one there.

        The original master keeps every occurrence before the instance. The new
        series starts at the instance and reuses the master's rule without its
        UNTIL bound. Raises :class:`MalformedRecurrenceError` when the master
        carries no RRULE.
        """
        instance = await self._client.get_event_payload(calendar_id, instance_id)
        master_id = master_event_id(instance) or instance_id
        if master_id == instance.get("id"):
            master = instance
        else:
            master = await self._client.get_event_payload(calendar_id, master_id)

        rule, other_lines = split_recurrence(master.get("recurrence"))
        if rule is None:
            raise MalformedRecurrenceError(
                f"Event {master_id} has no RRULE; cannot split the series"
            )

        cutoff = instance_start_cutoff(event_start_instant(instance))
        await self._client.update_event(
            calendar_id,
            master_id,
            {"recurrence": [rule.with_until(cutoff).to_line(), *other_lines]},
        )
        logger.info("Series %s in %s now ends at %s", master_id, calendar_id, cutoff.isoformat())

        body: dict[str, Any] = {field: master.get(field) for field in _SPLIT_COPIED_FIELDS}
        attendees = attendee_emails(master.get("attendees"))
        body["attendees"] = [{"email": email} for email in attendees]
        body["start"] = instance.get("start")
        body["end"] = instance.get("end")
        body["recurrence"] = [rule.without_until().to_line()]
        wants_conferencing = had_conferencing(master)
        if wants_conferencing:
            body["conferenceData"] = conference_create_request("split")

        created = await self._client.create_event(
            calendar_id,
            prune_empty(body),
            wants_conferencing=wants_conferencing,
            notify_attendees=bool(attendees),
        )
        self._store.record_event(created, select=True)
        await self._store.refresh_after_mutation()
        return created
