"""Access-token providers for the Google Calendar client.

A token provider is any ``async (force_refresh: bool) -> str`` callable. The
client calls it with ``False`` for every request and with ``True`` exactly once
after an auth failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from gigsync.calendar.codec import safe_google_error
from gigsync.calendar.errors import CalendarCredentialError, CalendarTokenRefreshError

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_EXPIRES_IN_SECONDS = 3600
EARLY_REFRESH_SECONDS = 60
MIN_TOKEN_TTL_SECONDS = 30

_CREDENTIAL_FIELDS = ("client_id", "client_secret", "refresh_token")
_CLIENT_SECRET_WRAPPERS = ("installed", "web")

TokenProvider = Callable[[bool], Awaitable[str]]


class GoogleOAuthCredentials(BaseModel):
    """OAuth client id/secret plus the user's refresh token."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)

    @field_validator(*_CREDENTIAL_FIELDS)
    @classmethod
    def _strip(cls, value: str, info: ValidationInfo) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return stripped

    @classmethod
    def from_json(cls, raw_value: str) -> GoogleOAuthCredentials:
        """Parse credential JSON.

        Accepts a flat object or a Google ``client_secret.json`` download, where
        the client id/secret sit under ``installed`` or ``web`` and the refresh
        token is added at the top level.
        """
        try:
            payload = json.loads(raw_value)
        except json.JSONDecodeError as exc:
            raise CalendarCredentialError(f"Credential JSON must be valid JSON: {exc.msg}") from exc
        if not isinstance(payload, dict):
            raise CalendarCredentialError("Credential JSON must decode to a JSON object")

        values: dict[str, str] = {}
        missing: list[str] = []
        blank: list[str] = []
        for name in _CREDENTIAL_FIELDS:
            value = _find_credential(payload, name)
            if value is None:
                missing.append(name)
            elif not isinstance(value, str) or not value.strip():
                blank.append(name)
            else:
                values[name] = value

        if missing:
            raise CalendarCredentialError(
                f"Credential JSON is missing required field(s): {', '.join(missing)}"
            )
        if blank:
            raise CalendarCredentialError(
                f"Credential JSON must contain non-empty string field(s): {', '.join(blank)}"
            )
        return cls(**values)


def _find_credential(payload: dict[str, Any], name: str) -> Any:
    if name in payload:
        return payload[name]
    for wrapper in _CLIENT_SECRET_WRAPPERS:
        section = payload.get(wrapper)
        if isinstance(section, dict) and name in section:
            return section[name]
    return None


@dataclass(frozen=True)
class _CachedToken:
    value: str
    expires_at: datetime

    def is_fresh(self) -> bool:
        return datetime.now(UTC) < self.expires_at


def _token_lifetime(expires_in: Any) -> timedelta:
    """Cache lifetime for a token, ending shortly before Google expires it."""
    seconds = DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(expires_in, int | float) and not isinstance(expires_in, bool) and expires_in > 0:
        seconds = int(expires_in)
    return timedelta(seconds=max(seconds - EARLY_REFRESH_SECONDS, MIN_TOKEN_TTL_SECONDS))


def _token_from_response(response: httpx.Response) -> _CachedToken:
    if not response.is_success:
        message, _ = safe_google_error(response)
        raise CalendarTokenRefreshError(
            f"Google OAuth token refresh failed ({response.status_code}): {message}"
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise CalendarTokenRefreshError(
            "Google OAuth token endpoint returned invalid JSON"
        ) from exc
    if not isinstance(payload, dict):
        payload = {}

    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        raise CalendarTokenRefreshError(
            "Google OAuth token response is missing a non-empty access_token"
        )
    lifetime = _token_lifetime(payload.get("expires_in"))
    return _CachedToken(access_token.strip(), datetime.now(UTC) + lifetime)


class GoogleOAuthTokenProvider:
    """Exchanges the refresh token for access tokens and caches them.

    Concurrent callers share a single exchange.
    """

    def __init__(
        self,
        credentials: GoogleOAuthCredentials,
        http_client: httpx.AsyncClient,
        *,
        token_url: str = GOOGLE_OAUTH_TOKEN_URL,
    ) -> None:
        self._credentials = credentials
        self._http_client = http_client
        self._token_url = token_url
        self._cached: _CachedToken | None = None
        self._lock = asyncio.Lock()

    async def __call__(self, force_refresh: bool = False) -> str:
        cached = self._cached
        if not force_refresh and cached is not None and cached.is_fresh():
            return cached.value

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if (
                not force_refresh
                and self._cached is not None
                and self._cached is not cached
                and self._cached.is_fresh()
            ):
                return self._cached.value
            self._cached = await self._exchange()
            return self._cached.value

    async def _exchange(self) -> _CachedToken:
        form = {
            "client_id": self._credentials.client_id,
            "client_secret": self._credentials.client_secret,
            "refresh_token": self._credentials.refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = await self._http_client.post(
                self._token_url, data=form, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise CalendarTokenRefreshError(
                f"Google OAuth token refresh request failed: {exc}"
            ) from exc

        token = _token_from_response(response)
        logger.debug("Refreshed Google access token, valid until %s", token.expires_at.isoformat())
        return token


class StaticTokenProvider:
    """Always returns the same token; a forced refresh cannot help."""

    def __init__(self, token: str) -> None:
        normalized = token.strip()
        if not normalized:
            raise CalendarCredentialError("access token must be a non-empty string")
        self._token = normalized

    async def __call__(self, force_refresh: bool = False) -> str:
        return self._token
