"""Canonical data shapes shared by the client, the store and its helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gigsync.calendar.recurrence import RecurrenceRule

IMPORTANCE_PRIVATE_KEY = "importance"
WRITABLE_ACCESS_ROLES = frozenset({"owner", "writer"})


class AccessRole(StrEnum):
    """Calendar list access roles."""

    owner = "owner"
    writer = "writer"
    reader = "reader"
    free_busy_reader = "freeBusyReader"
    none = "none"


class CalendarGroup(StrEnum):
    mine = "mine"
    other = "other"


class EventVisibility(StrEnum):
    default = "default"
    public = "public"
    private = "private"
    confidential = "confidential"


class Transparency(StrEnum):
    """Busy (opaque) versus free (transparent)."""

    opaque = "opaque"
    transparent = "transparent"


class Importance(StrEnum):
    other = "other"
    submission = "submission"
    delivery = "delivery"
    milestone = "milestone"
    meeting = "meeting"


class CalendarMeta(BaseModel):
    """One entry of the user's calendar list."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    summary: str
    primary: bool = False
    background_color: str | None = None
    access_role: str | None = None
    group: CalendarGroup = CalendarGroup.other
    time_zone: str | None = None
    selected_flag: bool = False

    @property
    def can_write(self) -> bool:
        return self.access_role in WRITABLE_ACCESS_ROLES


class CalendarCreate(BaseModel):
    """Payload for creating a secondary calendar owned by the user."""

    summary: str = Field(min_length=1)
    time_zone: str | None = None
    description: str | None = None
    location: str | None = None
    color: str | None = None
    selected: bool = True


class ReminderOverride(BaseModel):
    method: str = "popup"
    minutes: int = Field(ge=0)


class Reminders(BaseModel):
    use_default: bool = True
    overrides: list[ReminderOverride] = Field(default_factory=list)

    def popup_minutes(self) -> int | None:
        for override in self.overrides:
            if override.method == "popup":
                return override.minutes
        return None


class ExtendedProperties(BaseModel):
    """Private (owner-only) and shared (attendee-visible) key/value tags."""

    private: dict[str, str] = Field(default_factory=dict)
    shared: dict[str, str] = Field(default_factory=dict)


class CalendarEvent(BaseModel):
    """Local view of a remote event. ``(calendar_id, event_id)`` is the identity."""

    event_id: str
    calendar_id: str
    title: str
    start_at: datetime
    end_at: datetime
    all_day: bool = False
    description: str | None = None
    attendees: list[str] = Field(default_factory=list)
    recurrence: list[str] = Field(default_factory=list)
    recurring_event_id: str | None = None
    reminders: Reminders | None = None
    visibility: EventVisibility | None = None
    transparency: Transparency | None = None
    location: str | None = None
    conference_url: str | None = None
    html_link: str | None = None
    extended: ExtendedProperties = Field(default_factory=ExtendedProperties)

    @property
    def key(self) -> tuple[str, str]:
        return (self.calendar_id, self.event_id)

    @property
    def master_id(self) -> str:
        return self.recurring_event_id or self.event_id

    @property
    def importance(self) -> str | None:
        return self.extended.private.get(IMPORTANCE_PRIVATE_KEY)


class EventRange(BaseModel):
    """Half-open ``[start, end)`` window of loaded events."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)

    @model_validator(mode="after")
    def _validate_order(self) -> EventRange:
        if self.end <= self.start:
            raise ValueError("range end must be after range start")
        return self

    @classmethod
    def around(
        cls,
        anchor: datetime | None = None,
        *,
        days_back: int,
        days_forward: int,
    ) -> EventRange:
        center = anchor or datetime.now(UTC)
        return cls(
            start=center - timedelta(days=days_back),
            end=center + timedelta(days=days_forward),
        )


class TagFilter(BaseModel):
    """Server-side ``key=value`` filter on extended properties."""

    private: dict[str, str] = Field(default_factory=dict)
    shared: dict[str, str] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.private and not self.shared


class EventDraft(BaseModel):
    """Create/update input.

    ``reminder_minutes`` is three-valued: leave it unset to omit reminders from
    the request, pass ``None`` to use the calendar default, or pass a number
    of minutes to override.
    """

    title: str | None = None
    description: str | None = None
    start_at: datetime | date
    end_at: datetime | date
    all_day: bool = False
    timezone: str | None = None
    recurrence: list[str] | None = None
    recurrence_rule: str | None = None
    attendees: list[str] = Field(default_factory=list)
    reminder_minutes: int | None = None
    add_conference: bool = False
    location: str | None = None
    visibility: EventVisibility | None = None
    transparency: Transparency | None = None
    importance: Importance | None = None
    extended_private: dict[str, str] | None = None
    extended_shared: dict[str, str] | None = None

    @field_validator("recurrence_rule", mode="before")
    @classmethod
    def _normalize_recurrence_rule(cls, value: Any) -> Any:
        if isinstance(value, RecurrenceRule):
            return value.to_rrule()
        if isinstance(value, str):
            normalized = value.strip()
            if not normalized:
                return None
            return RecurrenceRule.parse(normalized).to_rrule()
        return value

    @field_validator("attendees")
    @classmethod
    def _normalize_attendees(cls, value: list[str]) -> list[str]:
        return [email.strip() for email in value if email and email.strip()]

    @model_validator(mode="after")
    def _validate_boundaries(self) -> EventDraft:
        start_is_datetime = isinstance(self.start_at, datetime)
        end_is_datetime = isinstance(self.end_at, datetime)
        if not self.all_day and not (start_is_datetime and end_is_datetime):
            raise ValueError("timed events require datetime start_at and end_at values")
        if start_is_datetime == end_is_datetime:
            try:
                reversed_bounds = self.end_at < self.start_at
            except TypeError as exc:
                raise ValueError(
                    "start_at and end_at must both be naive or both be timezone-aware"
                ) from exc
            if reversed_bounds:
                raise ValueError("end_at must not be before start_at")
        return self

    @property
    def reminders_specified(self) -> bool:
        return "reminder_minutes" in self.model_fields_set

    @property
    def notify_attendees(self) -> bool:
        return bool(self.attendees)


@dataclass(frozen=True)
class CalendarSnapshot:
    """Immutable view handed to subscribers after every state change."""

    calendars: tuple[CalendarMeta, ...]
    selected_ids: frozenset[str]
    events: tuple[CalendarEvent, ...]
    range: EventRange | None
    focused_date: datetime
    last_selected: CalendarEvent | None
    is_refreshing: bool


@dataclass
class BulkDeleteResult:
    """Outcome of a best-effort bulk delete."""

    succeeded: int = 0
    failed: list[Exception] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + len(self.failed)
