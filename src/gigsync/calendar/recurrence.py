"""Structured RRULE values.

Recurrence lines are parsed into :class:`RecurrenceRule` when they come off the
wire and serialized back only when a request body is built. Series editing
works on the structured form.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta

from gigsync.calendar.errors import MalformedRecurrenceError

RRULE_PREFIX = "RRULE:"
UNTIL_FORMAT = "%Y%m%dT%H%M%SZ"
VALID_FREQUENCIES = frozenset(
    {"SECONDLY", "MINUTELY", "HOURLY", "DAILY", "WEEKLY", "MONTHLY", "YEARLY"}
)
_KNOWN_PARTS = frozenset({"FREQ", "INTERVAL", "BYDAY", "UNTIL", "COUNT"})


def format_until(value: datetime) -> str:
    """Render *value* as an RFC 5545 UTC ``UNTIL`` token."""
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).strftime(UNTIL_FORMAT)


def _parse_until(raw: str) -> tuple[datetime, bool]:
    value = raw.strip()
    for pattern in ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S"):
        try:
            return datetime.strptime(value, pattern).replace(tzinfo=UTC), False
        except ValueError:
            continue
    try:
        parsed = datetime.strptime(value, "%Y%m%d")
    except ValueError as exc:
        raise MalformedRecurrenceError(f"invalid UNTIL value in recurrence rule: {raw}") from exc
    return parsed.replace(tzinfo=UTC), True


def _parse_positive_int(key: str, raw: str) -> int:
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise MalformedRecurrenceError(f"{key} must be an integer, got {raw!r}") from exc
    if parsed < 1:
        raise MalformedRecurrenceError(f"{key} must be at least 1, got {parsed}")
    return parsed


@dataclass(frozen=True)
class RecurrenceRule:
    """A single RRULE, split into the parts series editing cares about.

    Parts other than FREQ/INTERVAL/BYDAY/UNTIL/COUNT are carried verbatim in
    ``extra`` so a round trip never drops them.
    """

    freq: str
    interval: int | None = None
    by_day: tuple[str, ...] = ()
    until: datetime | None = None
    until_is_date: bool = False
    count: int | None = None
    extra: tuple[tuple[str, str], ...] = ()

    @classmethod
    def parse(cls, value: str) -> RecurrenceRule:
        """Parse ``RRULE:FREQ=...`` (the prefix is optional)."""
        if not isinstance(value, str) or not value.strip():
            raise MalformedRecurrenceError("recurrence rule must be a non-empty string")

        normalized = value.strip()
        if normalized.upper().startswith(RRULE_PREFIX):
            normalized = normalized[len(RRULE_PREFIX) :]

        components: dict[str, str] = {}
        extra: list[tuple[str, str]] = []
        for part in normalized.split(";"):
            if not part.strip():
                continue
            if "=" not in part:
                raise MalformedRecurrenceError(f"invalid recurrence rule part: {part!r}")
            key, raw = part.split("=", 1)
            key = key.strip().upper()
            raw = raw.strip()
            if key in _KNOWN_PARTS:
                components[key] = raw
            else:
                extra.append((key, raw))

        freq = components.get("FREQ", "").upper()
        if not freq:
            raise MalformedRecurrenceError(f"recurrence rule is missing FREQ: {value!r}")
        if freq not in VALID_FREQUENCIES:
            raise MalformedRecurrenceError(f"unsupported recurrence frequency: {freq}")

        until: datetime | None = None
        until_is_date = False
        if "UNTIL" in components:
            until, until_is_date = _parse_until(components["UNTIL"])

        by_day_raw = components.get("BYDAY", "")
        by_day = tuple(day.strip().upper() for day in by_day_raw.split(",") if day.strip())

        return cls(
            freq=freq,
            interval=(
                _parse_positive_int("INTERVAL", components["INTERVAL"])
                if "INTERVAL" in components
                else None
            ),
            by_day=by_day,
            until=until,
            until_is_date=until_is_date,
            count=(
                _parse_positive_int("COUNT", components["COUNT"]) if "COUNT" in components else None
            ),
            extra=tuple(extra),
        )

    @property
    def effective_interval(self) -> int:
        return self.interval or 1

    def with_until(self, cutoff: datetime) -> RecurrenceRule:
        """Terminate the rule at *cutoff*, replacing any UNTIL or COUNT bound.

        RFC 5545 forbids UNTIL and COUNT together, so COUNT is dropped.
        """
        return replace(self, until=cutoff, until_is_date=False, count=None)

    def without_until(self) -> RecurrenceRule:
        return replace(self, until=None, until_is_date=False)

    def to_rrule(self) -> str:
        """Serialize without the ``RRULE:`` prefix."""
        parts = [f"FREQ={self.freq}"]
        if self.interval is not None:
            parts.append(f"INTERVAL={self.interval}")
        if self.by_day:
            parts.append(f"BYDAY={','.join(self.by_day)}")
        parts.extend(f"{key}={raw}" for key, raw in self.extra)
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            if self.until_is_date:
                parts.append(f"UNTIL={self.until.strftime('%Y%m%d')}")
            else:
                parts.append(f"UNTIL={format_until(self.until)}")
        return ";".join(parts)

    def to_line(self) -> str:
        return f"{RRULE_PREFIX}{self.to_rrule()}"

    def __str__(self) -> str:
        return self.to_line()


def split_recurrence(lines: Iterable[str] | None) -> tuple[RecurrenceRule | None, list[str]]:
    """Separate the RRULE from the other recurrence lines (EXDATE, RDATE, ...).

    Returns ``(None, others)`` when no RRULE line is present.
    """
    rule: RecurrenceRule | None = None
    others: list[str] = []
    for line in lines or []:
        if not isinstance(line, str) or not line.strip():
            continue
        if rule is None and line.strip().upper().startswith(RRULE_PREFIX):
            rule = RecurrenceRule.parse(line)
        else:
            others.append(line.strip())
    return rule, others


def instance_start_cutoff(start: datetime | date) -> datetime:
    """Return the last instant that still belongs to the series before *start*."""
    if not isinstance(start, datetime):
        start = datetime(start.year, start.month, start.day, tzinfo=UTC)
    elif start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    return start - timedelta(seconds=1)
