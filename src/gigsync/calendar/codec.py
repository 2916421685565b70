"""Translation between Google Calendar v3 JSON and the local models.

Everything that knows the Google wire shape lives here: RFC 3339 formatting,
event/calendar parsing, request body construction and error payload
extraction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from gigsync.calendar.models import (
    IMPORTANCE_PRIVATE_KEY,
    CalendarEvent,
    CalendarGroup,
    CalendarMeta,
    EventDraft,
    EventVisibility,
    ExtendedProperties,
    ReminderOverride,
    Reminders,
    Transparency,
)
from gigsync.calendar.recurrence import RRULE_PREFIX

logger = logging.getLogger(__name__)

UNTITLED_EVENT_TITLE = "(no title)"
CONFERENCE_SOLUTION_TYPE = "hangoutsMeet"


def google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Google Calendar returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def coerce_zoneinfo(timezone: str | None) -> ZoneInfo | tzinfo:
    if not timezone:
        return UTC
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def safe_google_error(response: httpx.Response) -> tuple[str, str | None]:
    """Extract ``(message, reason)`` from a failed Google response.

    ``reason`` prefers ``error.errors[0].reason`` and falls back to
    ``error.status``.
    """
    try:
        payload = response.json()
    except ValueError:
        payload = None

    message: str | None = None
    reason: str | None = None
    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = _normalize_optional_text(error_payload.get("message"))
            errors = error_payload.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                reason = _normalize_optional_text(errors[0].get("reason"))
            if reason is None:
                reason = _normalize_optional_text(error_payload.get("status"))
        elif isinstance(error_payload, str):
            message = _normalize_optional_text(error_payload)

    if message is None:
        raw_text = response.text.strip()
        message = raw_text or f"Google API {response.status_code}"
    return " ".join(message.split())[:200], reason


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def calendar_meta_from_google(payload: Any) -> CalendarMeta | None:
    if not isinstance(payload, dict):
        return None
    calendar_id = _normalize_optional_text(payload.get("id"))
    if calendar_id is None:
        return None

    access_role = _normalize_optional_text(payload.get("accessRole"))
    primary = payload.get("primary") is True
    group = CalendarGroup.mine if access_role == "owner" or primary else CalendarGroup.other
    return CalendarMeta(
        id=calendar_id,
        summary=(
            _normalize_optional_text(payload.get("summaryOverride"))
            or _normalize_optional_text(payload.get("summary"))
            or calendar_id
        ),
        primary=primary,
        background_color=_normalize_optional_text(payload.get("backgroundColor")),
        access_role=access_role,
        group=group,
        time_zone=_normalize_optional_text(payload.get("timeZone")),
        selected_flag=payload.get("selected") is True,
    )


def _parse_event_boundary(
    payload: dict[str, Any],
    *,
    fallback_timezone: str | None,
) -> tuple[datetime, bool]:
    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return parse_google_datetime(date_time), False

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value.strip())
        except ValueError as exc:
            raise ValueError(
                f"Google Calendar returned an invalid date value: {date_value}"
            ) from exc
        timezone = _normalize_optional_text(payload.get("timeZone")) or fallback_timezone
        return datetime.combine(parsed_date, time(0), tzinfo=coerce_zoneinfo(timezone)), True

    raise ValueError("Google Calendar event is missing start/end dateTime or date values")


def _parse_visibility(value: Any) -> EventVisibility | None:
    if not isinstance(value, str):
        return None
    try:
        return EventVisibility(value.strip().lower())
    except ValueError:
        return None


def _parse_transparency(value: Any) -> Transparency | None:
    if not isinstance(value, str):
        return None
    try:
        return Transparency(value.strip().lower())
    except ValueError:
        return None


def _parse_reminders(value: Any) -> Reminders | None:
    if not isinstance(value, dict):
        return None
    overrides: list[ReminderOverride] = []
    raw_overrides = value.get("overrides")
    if isinstance(raw_overrides, list):
        for entry in raw_overrides:
            if not isinstance(entry, dict):
                continue
            minutes = entry.get("minutes")
            if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0:
                continue
            method = _normalize_optional_text(entry.get("method")) or "popup"
            overrides.append(ReminderOverride(method=method, minutes=minutes))
    return Reminders(use_default=value.get("useDefault") is not False, overrides=overrides)


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}


def _parse_extended_properties(value: Any) -> ExtendedProperties:
    if not isinstance(value, dict):
        return ExtendedProperties()
    return ExtendedProperties(
        private=_string_map(value.get("private")),
        shared=_string_map(value.get("shared")),
    )


def attendee_emails(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    emails: list[str] = []
    for entry in value:
        raw = entry.get("email") if isinstance(entry, dict) else entry
        email = _normalize_optional_text(raw)
        if email is not None:
            emails.append(email)
    return emails


def extract_conference_url(payload: dict[str, Any]) -> str | None:
    conference = payload.get("conferenceData")
    if isinstance(conference, dict):
        entry_points = conference.get("entryPoints")
        if isinstance(entry_points, list):
            for entry in entry_points:
                if isinstance(entry, dict) and entry.get("entryPointType") == "video":
                    uri = _normalize_optional_text(entry.get("uri"))
                    if uri is not None:
                        return uri
    return _normalize_optional_text(payload.get("hangoutLink"))


def had_conferencing(payload: dict[str, Any]) -> bool:
    return bool(payload.get("conferenceData") or payload.get("hangoutLink"))


def master_event_id(payload: dict[str, Any]) -> str | None:
    """Return the recurring master id for an instance, or the event's own id."""
    return _normalize_optional_text(payload.get("recurringEventId")) or _normalize_optional_text(
        payload.get("id")
    )


def event_start_instant(payload: dict[str, Any]) -> datetime:
    """Start of an event as an instant; date-only starts are read as UTC midnight."""
    start = payload.get("start")
    if not isinstance(start, dict):
        raise ValueError("Google Calendar event is missing a start payload")
    date_time = start.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        return parse_google_datetime(date_time)
    date_value = start.get("date")
    if isinstance(date_value, str) and date_value.strip():
        return datetime.combine(date.fromisoformat(date_value.strip()), time(0), tzinfo=UTC)
    raise ValueError("Google Calendar event is missing start dateTime or date values")


def event_from_google(
    payload: dict[str, Any],
    calendar_id: str,
    *,
    fallback_timezone: str | None = None,
) -> CalendarEvent | None:
    """Map a Google event resource; returns ``None`` for unusable or cancelled items."""
    status_raw = payload.get("status")
    if isinstance(status_raw, str) and status_raw.lower() == "cancelled":
        return None

    event_id = _normalize_optional_text(payload.get("id"))
    start_payload = payload.get("start")
    end_payload = payload.get("end")
    if event_id is None or not isinstance(start_payload, dict) or not isinstance(end_payload, dict):
        logger.debug("Skipping Google event without id or start/end: %r", payload.get("id"))
        return None

    timezone = (
        _normalize_optional_text(start_payload.get("timeZone"))
        or _normalize_optional_text(end_payload.get("timeZone"))
        or fallback_timezone
    )
    start_at, all_day = _parse_event_boundary(start_payload, fallback_timezone=timezone)
    end_at, _ = _parse_event_boundary(end_payload, fallback_timezone=timezone)

    recurrence_raw = payload.get("recurrence")
    recurrence = (
        [line.strip() for line in recurrence_raw if isinstance(line, str) and line.strip()]
        if isinstance(recurrence_raw, list)
        else []
    )

    return CalendarEvent(
        event_id=event_id,
        calendar_id=calendar_id,
        title=_normalize_optional_text(payload.get("summary")) or UNTITLED_EVENT_TITLE,
        start_at=start_at,
        end_at=end_at,
        all_day=all_day,
        description=_normalize_optional_text(payload.get("description")),
        attendees=attendee_emails(payload.get("attendees")),
        recurrence=recurrence,
        recurring_event_id=_normalize_optional_text(payload.get("recurringEventId")),
        reminders=_parse_reminders(payload.get("reminders")),
        visibility=_parse_visibility(payload.get("visibility")),
        transparency=_parse_transparency(payload.get("transparency")),
        location=_normalize_optional_text(payload.get("location")),
        conference_url=extract_conference_url(payload),
        html_link=_normalize_optional_text(payload.get("htmlLink")),
        extended=_parse_extended_properties(payload.get("extendedProperties")),
    )


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


def prune_empty(value: Any) -> Any:
    """Drop ``None``, ``""`` and empty containers, recursively.

    Google treats an absent field differently from an explicit null for some
    fields, so request bodies never carry empty values.
    """
    if isinstance(value, dict):
        pruned: dict[str, Any] = {}
        for key, item in value.items():
            cleaned = prune_empty(item)
            if cleaned is None or cleaned == "" or cleaned == {} or cleaned == []:
                continue
            pruned[key] = cleaned
        return pruned
    if isinstance(value, list):
        items = [prune_empty(item) for item in value]
        return [item for item in items if item is not None and item != "" and item != {}]
    return value


def conference_create_request(prefix: str = "req") -> dict[str, Any]:
    return {
        "createRequest": {
            "requestId": f"{prefix}-{uuid.uuid4().hex[:12]}",
            "conferenceSolutionKey": {"type": CONFERENCE_SOLUTION_TYPE},
        }
    }


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _all_day_end_exclusive(start: date | datetime, end: date | datetime) -> date:
    # A bare date is the inclusive last day. A datetime at midnight after the
    # start day is already the exclusive boundary.
    if isinstance(end, datetime):
        if end.time() == time(0) and end.date() > _as_date(start):
            return end.date()
        return end.date() + timedelta(days=1)
    return end + timedelta(days=1)


def _timed_boundary(value: datetime, timezone: str | None) -> dict[str, Any]:
    if timezone is None:
        return {"dateTime": google_rfc3339(value)}
    tz = ZoneInfo(timezone)
    localized = value.replace(tzinfo=tz) if value.tzinfo is None else value.astimezone(tz)
    return {"dateTime": localized.isoformat(), "timeZone": timezone}


def build_event_body(draft: EventDraft) -> dict[str, Any]:
    """Translate an :class:`EventDraft` into a Google event resource body."""
    if draft.all_day:
        start = {"date": _as_date(draft.start_at).isoformat()}
        end = {"date": _all_day_end_exclusive(draft.start_at, draft.end_at).isoformat()}
    else:
        start = _timed_boundary(cast(datetime, draft.start_at), draft.timezone)
        end = _timed_boundary(cast(datetime, draft.end_at), draft.timezone)

    body: dict[str, Any] = {
        "summary": draft.title,
        "description": draft.description,
        "start": start,
        "end": end,
    }

    if draft.location is not None:
        body["location"] = draft.location.strip()
    if draft.visibility is not None and draft.visibility != EventVisibility.default:
        body["visibility"] = str(draft.visibility)
    if draft.transparency is not None:
        body["transparency"] = str(draft.transparency)

    if draft.recurrence is not None:
        body["recurrence"] = [line.strip() for line in draft.recurrence if line.strip()]
    elif draft.recurrence_rule:
        body["recurrence"] = [f"{RRULE_PREFIX}{draft.recurrence_rule}"]

    if draft.attendees:
        body["attendees"] = [{"email": email} for email in draft.attendees]

    if draft.reminders_specified:
        if draft.reminder_minutes is None:
            body["reminders"] = {"useDefault": True}
        else:
            body["reminders"] = {
                "useDefault": False,
                "overrides": [{"method": "popup", "minutes": max(0, int(draft.reminder_minutes))}],
            }

    if draft.add_conference:
        body["conferenceData"] = conference_create_request()

    private_props: dict[str, str] = {}
    if draft.importance is not None:
        private_props[IMPORTANCE_PRIVATE_KEY] = str(draft.importance)
    if draft.extended_private:
        private_props.update(draft.extended_private)
    extended: dict[str, Any] = {}
    if private_props:
        extended["private"] = private_props
    if draft.extended_shared:
        extended["shared"] = dict(draft.extended_shared)
    if extended:
        body["extendedProperties"] = extended

    return prune_empty(body)


def draft_from_google(payload: dict[str, Any]) -> EventDraft:
    """Rebuild a creation draft from a raw event, for cloning across calendars."""
    start_payload = payload.get("start") or {}
    end_payload = payload.get("end") or {}
    timezone = _normalize_optional_text(start_payload.get("timeZone")) or _normalize_optional_text(
        end_payload.get("timeZone")
    )
    start_at, all_day = _parse_event_boundary(start_payload, fallback_timezone=timezone)
    end_at, _ = _parse_event_boundary(end_payload, fallback_timezone=timezone)

    extended = _parse_extended_properties(payload.get("extendedProperties"))
    recurrence = payload.get("recurrence")
    fields: dict[str, Any] = {
        "title": _normalize_optional_text(payload.get("summary")),
        "description": _normalize_optional_text(payload.get("description")),
        "start_at": start_at,
        "end_at": end_at,
        "all_day": all_day,
        "timezone": None if all_day else timezone,
        "recurrence": recurrence if isinstance(recurrence, list) else None,
        "attendees": attendee_emails(payload.get("attendees")),
        "add_conference": had_conferencing(payload),
        "location": _normalize_optional_text(payload.get("location")),
        "visibility": _parse_visibility(payload.get("visibility")),
        "transparency": _parse_transparency(payload.get("transparency")),
        "extended_private": extended.private or None,
        "extended_shared": extended.shared or None,
    }

    reminders = _parse_reminders(payload.get("reminders"))
    if reminders is not None and not reminders.use_default:
        fields["reminder_minutes"] = reminders.popup_minutes()

    return EventDraft(**fields)
