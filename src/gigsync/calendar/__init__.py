"""Calendar synchronization engine backed by Google Calendar v3."""

from gigsync.calendar.auth import (
    GoogleOAuthCredentials,
    GoogleOAuthTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from gigsync.calendar.client import CalendarProvider, GoogleCalendarClient
from gigsync.calendar.codec import build_event_body, event_from_google
from gigsync.calendar.correlator import Correlator
from gigsync.calendar.errors import (
    CalendarAuthError,
    CalendarCredentialError,
    CalendarError,
    CalendarNotFoundError,
    CalendarPermissionError,
    CalendarQuotaError,
    CalendarRequestError,
    CalendarServerError,
    CalendarTokenRefreshError,
    CalendarTransportError,
    MalformedRecurrenceError,
)
from gigsync.calendar.models import (
    BulkDeleteResult,
    CalendarCreate,
    CalendarEvent,
    CalendarMeta,
    CalendarSnapshot,
    EventDraft,
    EventRange,
    Importance,
    TagFilter,
)
from gigsync.calendar.mover import Mover
from gigsync.calendar.recurrence import RecurrenceRule
from gigsync.calendar.series import SeriesEditor
from gigsync.calendar.session import CalendarSession, open_session
from gigsync.calendar.store import SyncStore

__all__ = [
    "BulkDeleteResult",
    "CalendarAuthError",
    "CalendarCreate",
    "CalendarCredentialError",
    "CalendarError",
    "CalendarEvent",
    "CalendarMeta",
    "CalendarNotFoundError",
    "CalendarPermissionError",
    "CalendarProvider",
    "CalendarQuotaError",
    "CalendarRequestError",
    "CalendarServerError",
    "CalendarSession",
    "CalendarSnapshot",
    "CalendarTokenRefreshError",
    "CalendarTransportError",
    "Correlator",
    "EventDraft",
    "EventRange",
    "GoogleCalendarClient",
    "GoogleOAuthCredentials",
    "GoogleOAuthTokenProvider",
    "Importance",
    "MalformedRecurrenceError",
    "Mover",
    "RecurrenceRule",
    "SeriesEditor",
    "StaticTokenProvider",
    "SyncStore",
    "TagFilter",
    "TokenProvider",
    "build_event_body",
    "event_from_google",
    "open_session",
]
