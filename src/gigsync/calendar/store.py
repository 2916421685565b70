"""Stateful calendar cache kept consistent with the remote calendar.

:class:`SyncStore` is the only owner of mutable calendar state. Every change
produces a new immutable :class:`CalendarSnapshot` which is pushed
synchronously to subscribers.

Refreshes never overlap: a refresh requested while one is in flight collapses
into a single ``pending`` follow-up, and every refresh captures a generation
number so a slower, older result can never overwrite a newer one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from datetime import UTC, date, datetime, timedelta
from typing import Any

from gigsync.calendar.client import EVENT_LIST_PAGE_SIZE, CalendarProvider
from gigsync.calendar.codec import build_event_body
from gigsync.calendar.correlator import DEFAULT_TAG_KEY, Correlator
from gigsync.calendar.errors import CalendarError, CalendarNotFoundError
from gigsync.calendar.models import (
    BulkDeleteResult,
    CalendarEvent,
    CalendarMeta,
    CalendarSnapshot,
    EventDraft,
    EventRange,
    TagFilter,
)
from gigsync.calendar.mover import Mover
from gigsync.calendar.series import SeriesEditor

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_PERIOD_SECONDS = 60.0
MIN_REFRESH_PERIOD_SECONDS = 15.0
DEFAULT_RANGE_DAYS = 1800

Subscriber = Callable[[CalendarSnapshot], None]
ErrorListener = Callable[[Exception], None]


class SyncStore:
    """Local event cache for the selected calendars within a time range."""

    def __init__(
        self,
        client: CalendarProvider,
        *,
        range_days_back: int = DEFAULT_RANGE_DAYS,
        range_days_forward: int = DEFAULT_RANGE_DAYS,
        max_results: int = EVENT_LIST_PAGE_SIZE,
        preferred_calendar_ids: Iterable[str] = (),
        tag_key: str = DEFAULT_TAG_KEY,
    ) -> None:
        self._client = client
        self._range_days_back = range_days_back
        self._range_days_forward = range_days_forward
        self._max_results = max_results
        self._preferred_calendar_ids = [cid for cid in preferred_calendar_ids if cid]
        self._tag_key = tag_key

        self._calendars: list[CalendarMeta] = []
        self._selected: list[str] = []
        self._events: list[CalendarEvent] = []
        self._range: EventRange | None = None
        self._tag_filter: TagFilter | None = None
        self._focused_date = datetime.now(UTC)
        self._last_selected: CalendarEvent | None = None

        self._generation = 0
        self._applied_generation = 0
        self._in_flight = 0
        self._pending = False
        self._last_refresh_at: float | None = None
        self._refresh_period: float | None = None
        self._auto_refresh_handle: asyncio.TimerHandle | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._subscribers: list[Subscriber] = []
        self._error_listeners: list[ErrorListener] = []

        self._series = SeriesEditor(client, self)
        self._mover = Mover(client, self)
        self._correlator = Correlator(client, self, tag_key=tag_key)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def client(self) -> CalendarProvider:
        return self._client

    @property
    def calendars(self) -> list[CalendarMeta]:
        return list(self._calendars)

    @property
    def range(self) -> EventRange | None:
        return self._range

    @property
    def tag_key(self) -> str:
        return self._tag_key

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def applied_generation(self) -> int:
        return self._applied_generation

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight > 0

    @property
    def refresh_period(self) -> float | None:
        return self._refresh_period

    @property
    def last_selected(self) -> CalendarEvent | None:
        return self._last_selected

    def snapshot(self) -> CalendarSnapshot:
        return CalendarSnapshot(
            calendars=tuple(self._calendars),
            selected_ids=frozenset(self._selected),
            events=tuple(event.model_copy(deep=True) for event in self._events),
            range=self._range,
            focused_date=self._focused_date,
            last_selected=(
                self._last_selected.model_copy(deep=True)
                if self._last_selected is not None
                else None
            ),
            is_refreshing=self.is_refreshing,
        )

    def default_range(self) -> EventRange:
        return EventRange.around(
            days_back=self._range_days_back, days_forward=self._range_days_forward
        )

    def calendar_meta(self, calendar_id: str) -> CalendarMeta | None:
        for calendar in self._calendars:
            if calendar.id == calendar_id:
                return calendar
        return None

    def active_calendar_id(self) -> str:
        """Return the calendar new events go to: selection, then primary, then first."""
        if self._selected:
            return self._selected[0]
        for calendar in self._calendars:
            if calendar.primary:
                return calendar.id
        if self._calendars:
            return self._calendars[0].id
        raise CalendarError("No calendars available")

    def can_write(self, calendar_id: str | None) -> bool:
        if not calendar_id:
            return False
        meta = self.calendar_meta(calendar_id)
        return meta is not None and meta.can_write

    @staticmethod
    def is_all_day_range(start: datetime, end: datetime) -> bool:
        """True when both ends sit on midnight and span whole days."""
        if end <= start:
            return False
        for boundary in (start, end):
            if (boundary.hour, boundary.minute, boundary.second, boundary.microsecond) != (
                0,
                0,
                0,
                0,
            ):
                return False
        return (end - start) % timedelta(days=1) == timedelta(0)

    def find_event(self, calendar_id: str, event_id: str) -> CalendarEvent | None:
        for event in self._events:
            if event.calendar_id == calendar_id and event.event_id == event_id:
                return event
        return None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register *subscriber*, call it with the current snapshot, return an unsubscribe."""
        self._subscribers.append(subscriber)
        self._deliver(subscriber, self.snapshot())

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        self._error_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return unsubscribe

    def emit(self) -> None:
        snapshot = self.snapshot()
        for subscriber in list(self._subscribers):
            self._deliver(subscriber, snapshot)

    @staticmethod
    def _deliver(subscriber: Subscriber, snapshot: CalendarSnapshot) -> None:
        try:
            subscriber(snapshot)
        except Exception:
            logger.exception("Calendar snapshot subscriber failed")

    def _report_error(self, exc: Exception) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(exc)
            except Exception:
                logger.exception("Calendar error listener failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(
        self,
        range: EventRange | None = None,
        *,
        refresh_period: float = DEFAULT_REFRESH_PERIOD_SECONDS,
    ) -> None:
        """Load calendars and events, then keep them fresh in the background."""
        await self.init(range)
        self.start_auto_refresh(refresh_period)

    async def init(self, range: EventRange | None = None) -> None:
        self._range = range or self.default_range()
        await self.load_calendars()
        await self.refresh_events()

    async def load_calendars(self) -> list[CalendarMeta]:
        try:
            calendars = await self._client.list_calendars()
        except Exception as exc:
            self._report_error(exc)
            raise

        self._calendars = list(calendars)
        self._selected = self._default_selection()
        known = {calendar.id for calendar in self._calendars}
        self._events = [event for event in self._events if event.calendar_id in known]
        if self._last_selected is not None and self._last_selected.calendar_id not in known:
            self._last_selected = None
        logger.info(
            "Loaded %d calendar(s); selected %s", len(self._calendars), ", ".join(self._selected)
        )
        self.emit()
        return list(self._calendars)

    def _default_selection(self) -> list[str]:
        known = [calendar.id for calendar in self._calendars]
        known_set = set(known)

        previous = [cid for cid in self._selected if cid in known_set]
        if previous:
            return previous
        preferred = [cid for cid in self._preferred_calendar_ids if cid in known_set]
        if preferred:
            return _unique(preferred)
        flagged = [calendar.id for calendar in self._calendars if calendar.selected_flag]
        if flagged:
            return flagged
        primary = [calendar.id for calendar in self._calendars if calendar.primary]
        if primary:
            return primary[:1]
        return known[:1]

    async def aclose(self) -> None:
        """Stop auto-refresh and cancel background refreshes."""
        self.stop_auto_refresh()
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()

    async def wait_for_background(self) -> None:
        """Wait until no background refresh is running, including follow-ups."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    def set_selected_calendars(self, calendar_ids: Iterable[str]) -> None:
        known = {calendar.id for calendar in self._calendars}
        requested = _unique(calendar_ids)
        unknown = [cid for cid in requested if cid not in known]
        if unknown:
            logger.warning("Ignoring unknown calendar id(s): %s", ", ".join(unknown))
        self._selected = [cid for cid in requested if cid in known]
        self.emit()
        self._spawn_refresh()

    def set_range(self, start: datetime, end: datetime) -> None:
        self._range = EventRange(start=start, end=end)
        self.emit()
        self._spawn_refresh()

    def set_tag_filter(self, tag_filter: TagFilter | None) -> None:
        self._tag_filter = None if tag_filter is None or tag_filter.is_empty else tag_filter
        self.emit()
        self._spawn_refresh()

    def focus(self, focused: datetime | date) -> None:
        if not isinstance(focused, datetime):
            focused = datetime(focused.year, focused.month, focused.day, tzinfo=UTC)
        self._focused_date = focused
        self.emit()

    def set_last_selected_by_id(
        self, event_id: str | None, *, calendar_id: str | None = None
    ) -> None:
        self._last_selected = None
        if event_id:
            for event in self._events:
                if event.event_id == event_id and calendar_id in (None, event.calendar_id):
                    self._last_selected = event
                    break
        self.emit()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_events(self, *, force: bool = False) -> None:
        """Reload events for the selected calendars.

        A call made while another refresh is running only marks one follow-up
        refresh as pending. ``force=True`` starts a new generation right away;
        the older in-flight refresh then discards its result.
        """
        if self._range is None:
            self._range = self.default_range()
        if not self._selected:
            # Fence off any refresh still reading the previous selection.
            self._generation += 1
            self._applied_generation = self._generation
            self._events = []
            self.emit()
            return
        if self._in_flight > 0 and not force:
            self._pending = True
            logger.debug("Refresh already in flight; marking one follow-up as pending")
            return

        self._generation += 1
        generation = self._generation
        calendar_ids = list(self._selected)
        window = self._range
        tag_filter = self._tag_filter
        self._in_flight += 1
        self.emit()
        try:
            collected: list[CalendarEvent] = []
            for calendar_id in calendar_ids:
                collected.extend(
                    await self._client.list_events(
                        calendar_id,
                        window.start,
                        window.end,
                        max_results=self._max_results,
                        tag_filter=tag_filter,
                    )
                )

            if generation != self._generation:
                logger.debug(
                    "Discarding refresh generation %d; generation %d is newer",
                    generation,
                    self._generation,
                )
            else:
                known = {calendar.id for calendar in self._calendars}
                self._events = [event for event in collected if event.calendar_id in known]
                self._applied_generation = generation
                self.emit()
        except Exception as exc:
            self._report_error(exc)
            raise
        finally:
            self._in_flight -= 1
            self._last_refresh_at = asyncio.get_running_loop().time()
            if self._pending and self._in_flight == 0:
                self._pending = False
                self._spawn_refresh()
            self._schedule_auto_refresh()
            self.emit()

    async def refresh_after_mutation(self) -> None:
        """Forced refresh plus de-duplication once a multi-step mutation is done.

        The mutation itself already succeeded, so a refresh failure is only
        reported to the error listeners.
        """
        try:
            await self.refresh_events(force=True)
        except CalendarError as exc:
            logger.warning("Refresh after mutation failed: %s", exc)
        self.deduplicate()
        self.emit()

    def _spawn_refresh(self, *, force: bool = False) -> None:
        self._spawn(self._background_refresh(force=force))

    async def _background_refresh(self, *, force: bool = False) -> None:
        try:
            await self.refresh_events(force=force)
        except Exception:
            # Already delivered to the error listeners.
            logger.debug("Background refresh failed", exc_info=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # ------------------------------------------------------------------
    # Auto-refresh
    # ------------------------------------------------------------------

    def start_auto_refresh(self, period: float = DEFAULT_REFRESH_PERIOD_SECONDS) -> None:
        self._refresh_period = max(MIN_REFRESH_PERIOD_SECONDS, float(period))
        if self._auto_refresh_handle is not None:
            return
        self._schedule_auto_refresh()

    def stop_auto_refresh(self) -> None:
        self._refresh_period = None
        if self._auto_refresh_handle is not None:
            self._auto_refresh_handle.cancel()
            self._auto_refresh_handle = None

    def next_refresh_delay(self) -> float | None:
        """Seconds until the next automatic refresh, or ``None`` when stopped.

        Measured from the last completed refresh, so a slow refresh never
        causes back-to-back runs.
        """
        if self._refresh_period is None:
            return None
        now = asyncio.get_running_loop().time()
        last = self._last_refresh_at if self._last_refresh_at is not None else now
        return max(0.0, last + self._refresh_period - now)

    def _schedule_auto_refresh(self) -> None:
        if self._auto_refresh_handle is not None:
            self._auto_refresh_handle.cancel()
            self._auto_refresh_handle = None
        delay = self.next_refresh_delay()
        if delay is None:
            return
        loop = asyncio.get_running_loop()
        self._auto_refresh_handle = loop.call_later(delay, self._on_auto_refresh_due)

    def _on_auto_refresh_due(self) -> None:
        self._auto_refresh_handle = None
        if self._selected and self._range is not None:
            self._spawn_refresh()
        else:
            self._schedule_auto_refresh()

    # ------------------------------------------------------------------
    # Local cache maintenance (used by SeriesEditor, Mover and Correlator)
    # ------------------------------------------------------------------

    def record_event(self, event: CalendarEvent, *, select: bool = False) -> None:
        """Replace the cached copy of *event* by key, or append it."""
        if self.calendar_meta(event.calendar_id) is None:
            logger.debug(
                "Not caching event %s from unknown calendar %s", event.event_id, event.calendar_id
            )
            return
        for index, existing in enumerate(self._events):
            if existing.key == event.key:
                self._events[index] = event
                break
        else:
            self._events.append(event)
        if select or (self._last_selected is not None and self._last_selected.key == event.key):
            self._last_selected = event

    def forget_event(self, calendar_id: str, event_id: str) -> None:
        self._events = [
            event
            for event in self._events
            if not (event.calendar_id == calendar_id and event.event_id == event_id)
        ]
        if self._last_selected is not None and self._last_selected.key == (calendar_id, event_id):
            self._last_selected = None

    def forget_series(self, calendar_id: str, master_id: str) -> None:
        self._events = [
            event
            for event in self._events
            if not (event.calendar_id == calendar_id and event.master_id == master_id)
        ]
        if (
            self._last_selected is not None
            and self._last_selected.calendar_id == calendar_id
            and self._last_selected.master_id == master_id
        ):
            self._last_selected = None

    def deduplicate(self) -> None:
        """Keep the first cached event per event id."""
        seen: set[str] = set()
        unique: list[CalendarEvent] = []
        for event in self._events:
            if event.event_id in seen:
                continue
            seen.add(event.event_id)
            unique.append(event)
        if len(unique) != len(self._events):
            logger.debug("Dropped %d duplicate event(s)", len(self._events) - len(unique))
        self._events = unique

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_advanced(self, calendar_id: str, draft: EventDraft) -> CalendarEvent:
        event = await self._client.create_event(
            calendar_id,
            build_event_body(draft),
            wants_conferencing=draft.add_conference,
            notify_attendees=draft.notify_attendees,
        )
        self.record_event(event, select=True)
        self.emit()
        return event

    async def create_quick(
        self,
        calendar_id: str,
        title: str,
        start_at: datetime,
        end_at: datetime,
        description: str | None = None,
    ) -> CalendarEvent:
        draft = EventDraft(
            title=title, description=description, start_at=start_at, end_at=end_at
        )
        return await self.create_advanced(calendar_id, draft)

    async def update_advanced(
        self, calendar_id: str, event_id: str, draft: EventDraft
    ) -> CalendarEvent:
        event = await self._client.update_event(
            calendar_id,
            event_id,
            build_event_body(draft),
            wants_conferencing=draft.add_conference,
            notify_attendees=draft.notify_attendees,
        )
        self.record_event(event, select=True)
        self.emit()
        return event

    async def update_time_by_id(
        self,
        calendar_id: str,
        event_id: str,
        start_at: datetime | date,
        end_at: datetime | date,
        *,
        all_day: bool | None = None,
    ) -> CalendarEvent:
        """Move or resize an event, keeping its all-day shape unless overridden."""
        previous = self.find_event(calendar_id, event_id)
        resolved_all_day = all_day if all_day is not None else bool(previous and previous.all_day)
        meta = self.calendar_meta(calendar_id)
        # Only the times are patched; summary and description stay as they are remotely.
        draft = EventDraft(
            start_at=start_at,
            end_at=end_at,
            all_day=resolved_all_day,
            timezone=None if resolved_all_day or meta is None else meta.time_zone,
        )
        return await self.update_advanced(calendar_id, event_id, draft)

    async def delete_by_id(self, calendar_id: str, event_id: str) -> None:
        try:
            await self._client.delete_event(calendar_id, event_id)
        except CalendarNotFoundError:
            logger.debug("Event %s/%s was already deleted", calendar_id, event_id)
        self.forget_event(calendar_id, event_id)
        self.emit()

    async def get_raw_event(self, calendar_id: str, event_id: str) -> dict[str, Any]:
        return await self._client.get_event_payload(calendar_id, event_id)

    # ------------------------------------------------------------------
    # Compositions
    # ------------------------------------------------------------------

    async def delete_instance(self, calendar_id: str, event_id: str) -> None:
        await self._series.delete_instance(calendar_id, event_id)

    async def delete_series(self, calendar_id: str, instance_id: str) -> str:
        return await self._series.delete_series(calendar_id, instance_id)

    async def split_at_instance(self, calendar_id: str, instance_id: str) -> CalendarEvent:
        return await self._series.split_at_instance(calendar_id, instance_id)

    async def move_event(
        self, source_calendar_id: str, event_id: str, dest_calendar_id: str
    ) -> CalendarEvent:
        return await self._mover.move_event(source_calendar_id, event_id, dest_calendar_id)

    async def set_tag(
        self,
        calendar_id: str,
        event_id: str,
        *,
        private: dict[str, str] | None = None,
        shared: dict[str, str] | None = None,
    ) -> CalendarEvent:
        return await self._correlator.set_tag(
            calendar_id, event_id, private=private, shared=shared
        )

    async def find_by_tag(
        self,
        tag_value: str,
        calendar_ids: Iterable[str] | None = None,
        range: EventRange | None = None,
    ) -> list[CalendarEvent]:
        return await self._correlator.find_by_tag(tag_value, calendar_ids, range)

    async def purge_by_tag(
        self, tag_value: str, calendar_id: str | None = None
    ) -> BulkDeleteResult:
        """Delete every event tagged with *tag_value* from one writable calendar."""
        if not tag_value:
            return BulkDeleteResult()
        target = calendar_id or self.active_calendar_id()
        if not self.can_write(target):
            logger.warning("Skipping tag purge on read-only calendar %s", target)
            return BulkDeleteResult()
        result = await self._client.delete_all_events_by_tag(target, self._tag_key, tag_value)
        await self.refresh_after_mutation()
        return result


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            unique.append(value)
    return unique
