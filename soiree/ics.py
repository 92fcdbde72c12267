"""iCalendar (.ics) helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from .utils import parse_iso_date

if TYPE_CHECKING:
    from .models import Event


def _format_utc(dt: datetime) -> str:
    """Format a datetime as an RFC5545 UTC timestamp."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).replace(microsecond=0).strftime("%Y%m%dT%H%M%SZ")


def _escape_text(value: str | None) -> str:
    if not value:
        return ""
    normalized = value.replace("\r\n", "\n").replace("\r", "\n")
    return (
        normalized.replace("\\", "\\\\")
        .replace(";", r"\;")
        .replace(",", r"\,")
        .replace("\n", "\\n")
    )


def generate_ics(
    event: Event, *, include_location: bool, now: datetime | None = None
) -> str:
    """Return ICS text for an all-day event.

    The street address is only written when the viewer may see it; otherwise
    the city stands in.
    """
    dtstamp = _format_utc(now or datetime.now(UTC))
    start = parse_iso_date(event.date)
    end = start + timedelta(days=1)
    location = event.address if include_location and event.address else event.city

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Soiree//EN",
        "BEGIN:VEVENT",
        f"UID:{event.id}@soiree",
        f"DTSTAMP:{dtstamp}",
        f"DTSTART;VALUE=DATE:{start.strftime('%Y%m%d')}",
        f"DTEND;VALUE=DATE:{end.strftime('%Y%m%d')}",
        f"SUMMARY:{_escape_text(event.title)}",
        f"DESCRIPTION:{_escape_text(event.summary)}",
        f"LOCATION:{_escape_text(location)}",
        f"ORGANIZER;CN={_escape_text(event.host_name)}:mailto:{event.host_email}",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines) + "\r\n"
