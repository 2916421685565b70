"""Error hierarchy for the calendar sync engine.

Every failure raised by the Google client derives from :class:`CalendarError`.
HTTP failures are classified from the status code plus the Google error
``reason`` so callers can branch on type instead of parsing messages.
"""

from __future__ import annotations

import re

AUTH_RETRY_STATUS_CODES = frozenset({401, 403})

PERMISSION_REASONS = frozenset(
    {
        "forbidden",
        "insufficientPermissions",
        "requiredAccessLevel",
        "forbiddenForNonOrganizer",
        "PERMISSION_DENIED",
    }
)
QUOTA_REASONS = frozenset(
    {
        "quotaExceeded",
        "rateLimitExceeded",
        "userRateLimitExceeded",
        "dailyLimitExceeded",
        "RESOURCE_EXHAUSTED",
    }
)

_MAX_ERROR_MESSAGE_LENGTH = 200


class CalendarError(RuntimeError):
    """Base error raised by the calendar sync engine."""


class CalendarCredentialError(CalendarError):
    """Raised when Google credential JSON is missing or invalid."""


class CalendarTokenRefreshError(CalendarError):
    """Raised when refresh-token exchange fails."""


class CalendarTransportError(CalendarError):
    """Raised on network failures and unusable response bodies."""


class CalendarRequestError(CalendarError):
    """Raised when a Google Calendar API request returns a non-2xx status."""

    def __init__(self, *, status_code: int, message: str, reason: str | None = None) -> None:
        self.status_code = status_code
        self.message = message
        self.reason = reason
        detail = f"{message} ({reason})" if reason else message
        super().__init__(f"Google Calendar API request failed ({status_code}): {detail}")


class CalendarAuthError(CalendarRequestError):
    """401/403 that survived the forced token refresh."""


class CalendarPermissionError(CalendarRequestError):
    """The caller lacks access to the calendar or event."""


class CalendarQuotaError(CalendarRequestError):
    """Rate limit or quota exhausted."""


class CalendarNotFoundError(CalendarRequestError):
    """The calendar or event does not exist (or was already deleted)."""


class CalendarServerError(CalendarRequestError, CalendarTransportError):
    """5xx from the remote service."""


class MalformedRecurrenceError(CalendarError, ValueError):
    """Raised when a recurrence rule is missing or cannot be parsed."""


def request_error_for(
    status_code: int,
    message: str,
    reason: str | None = None,
) -> CalendarRequestError:
    """Return the typed request error for a failed response."""
    error_cls: type[CalendarRequestError]
    if status_code in (404, 410):
        error_cls = CalendarNotFoundError
    elif status_code == 429 or (status_code == 403 and reason in QUOTA_REASONS):
        error_cls = CalendarQuotaError
    elif status_code == 403 and reason in PERMISSION_REASONS:
        error_cls = CalendarPermissionError
    elif status_code in AUTH_RETRY_STATUS_CODES:
        error_cls = CalendarAuthError
    elif status_code >= 500:
        error_cls = CalendarServerError
    else:
        error_cls = CalendarRequestError
    return error_cls(status_code=status_code, message=message, reason=reason)


def _redact_credential_values(message: str) -> str:
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|token)\s*=\s*([^\s,;]+)",
        r"\1=[REDACTED]",
        message,
    )
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token|token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    redacted = re.sub(
        r"(?i)\b(bearer)\s+([^\s,;]+)",
        r"\1 [REDACTED]",
        redacted,
    )
    return redacted


def sanitize_error_message(exc: BaseException) -> str:
    """Render *exc* for logs and CLI output without leaking credentials."""
    redacted = _redact_credential_values(str(exc))
    return " ".join(redacted.split())[:_MAX_ERROR_MESSAGE_LENGTH]
