"""Tests for Google wire conversions and request body construction."""

from __future__ import annotations

from datetime import UTC, date, datetime

import httpx
import pytest

from gigsync.calendar.codec import (
    build_event_body,
    calendar_meta_from_google,
    draft_from_google,
    event_from_google,
    google_rfc3339,
    prune_empty,
    safe_google_error,
)
from gigsync.calendar.models import (
    CalendarGroup,
    EventDraft,
    EventVisibility,
    Importance,
    Transparency,
)

pytestmark = pytest.mark.unit


def _draft(**overrides) -> EventDraft:
    fields = {
        "title": "Kickoff",
        "start_at": datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
        "end_at": datetime(2026, 3, 2, 10, 0, tzinfo=UTC),
    }
    fields.update(overrides)
    return EventDraft(**fields)


# ---------------------------------------------------------------------------
# build_event_body
# ---------------------------------------------------------------------------


class TestBuildEventBodyTimes:
    def test_timed_event_uses_utc_instants(self):
        body = build_event_body(_draft())
        assert body["start"] == {"dateTime": "2026-03-02T09:00:00Z"}
        assert body["end"] == {"dateTime": "2026-03-02T10:00:00Z"}

    def test_timed_event_with_timezone(self):
        body = build_event_body(_draft(timezone="Europe/Berlin"))
        assert body["start"] == {
            "dateTime": "2026-03-02T10:00:00+01:00",
            "timeZone": "Europe/Berlin",
        }

    def test_all_day_date_end_is_inclusive(self):
        body = build_event_body(
            _draft(all_day=True, start_at=date(2026, 3, 2), end_at=date(2026, 3, 4))
        )
        assert body["start"] == {"date": "2026-03-02"}
        assert body["end"] == {"date": "2026-03-05"}

    def test_all_day_single_day(self):
        body = build_event_body(
            _draft(all_day=True, start_at=date(2026, 3, 2), end_at=date(2026, 3, 2))
        )
        assert body["end"] == {"date": "2026-03-03"}

    def test_all_day_midnight_datetime_end_is_already_exclusive(self):
        body = build_event_body(
            _draft(
                all_day=True,
                start_at=datetime(2026, 3, 2, tzinfo=UTC),
                end_at=datetime(2026, 3, 4, tzinfo=UTC),
            )
        )
        assert body["end"] == {"date": "2026-03-04"}

    def test_all_day_non_midnight_datetime_end_gets_next_day(self):
        body = build_event_body(
            _draft(
                all_day=True,
                start_at=datetime(2026, 3, 2, 9, tzinfo=UTC),
                end_at=datetime(2026, 3, 3, 17, tzinfo=UTC),
            )
        )
        assert body["start"] == {"date": "2026-03-02"}
        assert body["end"] == {"date": "2026-03-04"}


class TestBuildEventBodyFields:
    def test_empty_values_are_pruned(self):
        body = build_event_body(_draft(description="", attendees=[]))
        assert "description" not in body
        assert "attendees" not in body
        assert "reminders" not in body
        assert "extendedProperties" not in body

    def test_reminders_omitted_when_not_specified(self):
        assert "reminders" not in build_event_body(_draft())

    def test_reminders_none_means_calendar_default(self):
        body = build_event_body(_draft(reminder_minutes=None))
        assert body["reminders"] == {"useDefault": True}

    def test_reminders_override_clamped_to_zero(self):
        body = build_event_body(_draft(reminder_minutes=-5))
        assert body["reminders"] == {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": 0}],
        }

    def test_default_visibility_is_omitted(self):
        assert "visibility" not in build_event_body(_draft(visibility=EventVisibility.default))
        body = build_event_body(_draft(visibility=EventVisibility.private))
        assert body["visibility"] == "private"

    def test_transparency_and_location(self):
        body = build_event_body(_draft(transparency=Transparency.transparent, location=" Cafe "))
        assert body["transparency"] == "transparent"
        assert body["location"] == "Cafe"

    def test_extended_properties_merge_importance_first(self):
        body = build_event_body(
            _draft(
                importance=Importance.delivery,
                extended_private={"opty_id": "OPP-7", "importance": "milestone"},
                extended_shared={"client": "acme"},
            )
        )
        assert body["extendedProperties"] == {
            "private": {"importance": "milestone", "opty_id": "OPP-7"},
            "shared": {"client": "acme"},
        }

    def test_importance_alone(self):
        body = build_event_body(_draft(importance=Importance.submission))
        assert body["extendedProperties"] == {"private": {"importance": "submission"}}

    def test_conference_request(self):
        body = build_event_body(_draft(add_conference=True))
        request = body["conferenceData"]["createRequest"]
        assert request["conferenceSolutionKey"] == {"type": "hangoutsMeet"}
        assert request["requestId"].startswith("req-")

    def test_conference_request_ids_are_random(self):
        first = build_event_body(_draft(add_conference=True))
        second = build_event_body(_draft(add_conference=True))
        assert (
            first["conferenceData"]["createRequest"]["requestId"]
            != second["conferenceData"]["createRequest"]["requestId"]
        )

    def test_structured_recurrence_rule(self):
        body = build_event_body(_draft(recurrence_rule="freq=weekly;byday=mo"))
        assert body["recurrence"] == ["RRULE:FREQ=WEEKLY;BYDAY=MO"]

    def test_raw_recurrence_lines_win(self):
        body = build_event_body(
            _draft(
                recurrence=["RRULE:FREQ=DAILY", "EXDATE:20260303"],
                recurrence_rule="FREQ=WEEKLY",
            )
        )
        assert body["recurrence"] == ["RRULE:FREQ=DAILY", "EXDATE:20260303"]

    def test_attendees(self):
        body = build_event_body(_draft(attendees=[" a@example.com ", "", "b@example.com"]))
        assert body["attendees"] == [{"email": "a@example.com"}, {"email": "b@example.com"}]


class TestEventDraftValidation:
    def test_timed_event_requires_datetimes(self):
        with pytest.raises(ValueError, match="datetime"):
            EventDraft(start_at=date(2026, 3, 2), end_at=date(2026, 3, 3))

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError, match="before"):
            _draft(end_at=datetime(2026, 3, 2, 8, 0, tzinfo=UTC))

    def test_mixed_naive_and_aware_rejected(self):
        with pytest.raises(ValueError, match="naive"):
            _draft(end_at=datetime(2026, 3, 2, 10, 0))

    def test_notify_attendees(self):
        assert _draft(attendees=["a@example.com"]).notify_attendees is True
        assert _draft().notify_attendees is False


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestEventFromGoogle:
    def test_maps_timed_event(self):
        event = event_from_google(
            {
                "id": "evt-1",
                "summary": "Review",
                "description": "Draft v2",
                "start": {"dateTime": "2026-03-02T09:00:00+01:00"},
                "end": {"dateTime": "2026-03-02T10:00:00+01:00"},
                "attendees": [{"email": "a@example.com"}, {"displayName": "no email"}],
                "recurringEventId": "master-1",
                "reminders": {
                    "useDefault": False,
                    "overrides": [{"method": "popup", "minutes": 15}],
                },
                "visibility": "private",
                "transparency": "transparent",
                "htmlLink": "https://calendar.test/e",
                "extendedProperties": {
                    "private": {"opty_id": "OPP-1", "importance": "delivery"},
                    "shared": {"client": "acme"},
                },
            },
            "work@example.com",
        )
        assert event is not None
        assert event.key == ("work@example.com", "evt-1")
        assert event.title == "Review"
        assert event.all_day is False
        assert event.start_at == datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
        assert event.attendees == ["a@example.com"]
        assert event.master_id == "master-1"
        assert event.reminders is not None and event.reminders.popup_minutes() == 15
        assert event.visibility == EventVisibility.private
        assert event.transparency == Transparency.transparent
        assert event.importance == "delivery"
        assert event.extended.shared == {"client": "acme"}

    def test_untitled_event(self):
        event = event_from_google(
            {"id": "e", "start": {"date": "2026-03-02"}, "end": {"date": "2026-03-03"}},
            "primary",
        )
        assert event is not None
        assert event.title == "(no title)"
        assert event.all_day is True

    def test_conference_url_prefers_video_entry_point(self):
        event = event_from_google(
            {
                "id": "e",
                "start": {"dateTime": "2026-03-02T09:00:00Z"},
                "end": {"dateTime": "2026-03-02T10:00:00Z"},
                "hangoutLink": "https://meet.test/fallback",
                "conferenceData": {
                    "entryPoints": [
                        {"entryPointType": "phone", "uri": "tel:+1"},
                        {"entryPointType": "video", "uri": "https://meet.test/video"},
                    ]
                },
            },
            "primary",
        )
        assert event is not None
        assert event.conference_url == "https://meet.test/video"

    def test_hangout_link_fallback(self):
        event = event_from_google(
            {
                "id": "e",
                "start": {"dateTime": "2026-03-02T09:00:00Z"},
                "end": {"dateTime": "2026-03-02T10:00:00Z"},
                "hangoutLink": "https://meet.test/fallback",
            },
            "primary",
        )
        assert event is not None
        assert event.conference_url == "https://meet.test/fallback"

    def test_cancelled_and_incomplete_events_are_skipped(self):
        assert (
            event_from_google(
                {
                    "id": "e",
                    "status": "cancelled",
                    "start": {"date": "2026-03-02"},
                    "end": {"date": "2026-03-03"},
                },
                "primary",
            )
            is None
        )
        assert event_from_google({"id": "e"}, "primary") is None


class TestAllDayRoundTrip:
    def test_inclusive_last_day_survives_round_trip(self):
        draft = _draft(all_day=True, start_at=date(2026, 3, 2), end_at=date(2026, 3, 4))
        body = build_event_body(draft)
        body["id"] = "evt-1"
        event = event_from_google(body, "primary")
        assert event is not None
        assert event.all_day is True
        assert event.start_at.date() == date(2026, 3, 2)
        # Exclusive end: the day after the inclusive last day.
        assert event.end_at.date() == date(2026, 3, 5)

        rebuilt = build_event_body(
            _draft(all_day=True, start_at=event.start_at, end_at=event.end_at)
        )
        assert rebuilt["start"] == body["start"]
        assert rebuilt["end"] == body["end"]


class TestDraftFromGoogle:
    def test_clone_preserves_fields(self):
        draft = draft_from_google(
            {
                "id": "src",
                "summary": "Pitch",
                "description": "Deck review",
                "location": "HQ",
                "start": {"dateTime": "2026-03-02T09:00:00Z", "timeZone": "UTC"},
                "end": {"dateTime": "2026-03-02T10:00:00Z", "timeZone": "UTC"},
                "recurrence": ["RRULE:FREQ=WEEKLY"],
                "attendees": [{"email": "a@example.com", "responseStatus": "accepted"}],
                "reminders": {
                    "useDefault": False,
                    "overrides": [{"method": "popup", "minutes": 5}],
                },
                "visibility": "private",
                "transparency": "opaque",
                "hangoutLink": "https://meet.test/x",
                "extendedProperties": {"private": {"opty_id": "OPP-1"}, "shared": {"k": "v"}},
            }
        )
        assert draft.title == "Pitch"
        assert draft.recurrence == ["RRULE:FREQ=WEEKLY"]
        assert draft.attendees == ["a@example.com"]
        assert draft.reminders_specified and draft.reminder_minutes == 5
        assert draft.add_conference is True
        assert draft.extended_private == {"opty_id": "OPP-1"}
        assert draft.extended_shared == {"k": "v"}

        body = build_event_body(draft)
        assert body["start"] == {"dateTime": "2026-03-02T09:00:00+00:00", "timeZone": "UTC"}
        assert "createRequest" in body["conferenceData"]

    def test_default_reminders_stay_unspecified(self):
        draft = draft_from_google(
            {
                "start": {"date": "2026-03-02"},
                "end": {"date": "2026-03-03"},
                "reminders": {"useDefault": True},
            }
        )
        assert draft.reminders_specified is False
        assert draft.add_conference is False
        body = build_event_body(draft)
        assert body["start"] == {"date": "2026-03-02"}
        assert body["end"] == {"date": "2026-03-03"}


class TestCalendarMeta:
    def test_owner_is_mine(self):
        meta = calendar_meta_from_google(
            {"id": "c1", "summary": "Gigs", "accessRole": "owner", "selected": True}
        )
        assert meta is not None
        assert meta.group == CalendarGroup.mine
        assert meta.selected_flag is True
        assert meta.can_write is True

    def test_primary_reader_is_mine(self):
        meta = calendar_meta_from_google({"id": "c1", "accessRole": "reader", "primary": True})
        assert meta is not None
        assert meta.group == CalendarGroup.mine
        assert meta.summary == "c1"
        assert meta.can_write is False

    def test_shared_reader_is_other(self):
        meta = calendar_meta_from_google({"id": "c2", "accessRole": "reader"})
        assert meta is not None and meta.group == CalendarGroup.other

    def test_missing_id(self):
        assert calendar_meta_from_google({"summary": "x"}) is None


class TestHelpers:
    def test_prune_empty_is_recursive(self):
        assert prune_empty(
            {"a": None, "b": "", "c": {"d": [], "e": {}}, "f": [None, "x", {}], "g": False}
        ) == {"f": ["x"], "g": False}

    def test_google_rfc3339_naive_is_utc(self):
        assert google_rfc3339(datetime(2026, 1, 1, 12, 0)) == "2026-01-01T12:00:00Z"

    def test_safe_google_error_reads_reason(self):
        response = httpx.Response(
            403,
            json={
                "error": {
                    "message": "Rate   limit\nexceeded",
                    "errors": [{"reason": "rateLimitExceeded"}],
                }
            },
        )
        assert safe_google_error(response) == ("Rate limit exceeded", "rateLimitExceeded")

    def test_safe_google_error_falls_back_to_status(self):
        response = httpx.Response(
            403, json={"error": {"message": "Denied", "status": "PERMISSION_DENIED"}}
        )
        assert safe_google_error(response) == ("Denied", "PERMISSION_DENIED")

    def test_safe_google_error_plain_text(self):
        response = httpx.Response(502, text="")
        assert safe_google_error(response) == ("Google API 502", None)
