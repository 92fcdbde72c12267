"""Administered event catalog: create, edit and import events."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import CATEGORIES, PRIVACY_TIERS, Event
from .utils import normalize_email, parse_iso_date, slugify, utcnow


def _normalize_tier(raw: str | None) -> str:
    for tier in PRIVACY_TIERS:
        if (raw or "").strip().lower() == tier.lower():
            return tier
    raise ValueError(f"Invalid privacy tier {raw!r}")


def _normalize_cap(raw: dict[str, Any] | None) -> dict[str, int]:
    raw = raw or {}
    unknown = set(raw) - set(CATEGORIES)
    if unknown:
        raise ValueError(f"Unknown capacity categories: {', '.join(sorted(unknown))}")
    cap: dict[str, int] = {}
    for category in CATEGORIES:
        try:
            value = int(raw.get(category, 0) or 0)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Capacity for {category} must be an integer") from exc
        if value < 0:
            raise ValueError(f"Capacity for {category} must not be negative")
        cap[category] = value
    return cap


def _normalize_coordinates(
    lat: float | None, lng: float | None
) -> tuple[float | None, float | None]:
    if lat is None and lng is None:
        return None, None
    if lat is None or lng is None:
        raise ValueError("Both lat and lng are required when either is given")
    lat, lng = float(lat), float(lng)
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValueError("Coordinates out of range")
    return lat, lng


def _normalize_invites(emails: Sequence[str] | None) -> list[str]:
    seen: list[str] = []
    for email in emails or []:
        normalized = normalize_email(email)
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


def get_event_by_slug(session: Session, slug: str) -> Event | None:
    normalized = (slug or "").strip().lower()
    if not normalized:
        return None
    stmt = select(Event).where(Event.slug == normalized)
    return session.scalars(stmt).first()


def list_events(
    session: Session, *, limit: int | None = None, offset: int = 0
) -> Sequence[Event]:
    stmt = select(Event).order_by(Event.date.asc(), Event.title.asc())
    if offset:
        stmt = stmt.offset(offset)
    if limit and limit > 0:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()


def create_event(
    session: Session,
    *,
    title: str,
    date: str,
    host_name: str,
    host_email: str,
    privacy_tier: str = "Public",
    cap: dict[str, Any] | None = None,
    city: str = "",
    address: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
    summary: str = "",
    invited_emails: Sequence[str] | None = None,
    slug: str | None = None,
) -> Event:
    """Create and persist a new catalog event."""
    title = (title or "").strip()
    if not title:
        raise ValueError("Event title is required")
    normalized_slug = slugify(slug or title)
    if not normalized_slug:
        raise ValueError("Invalid event slug")
    if get_event_by_slug(session, normalized_slug):
        raise ValueError(f"An event with slug {normalized_slug!r} already exists")
    if "@" not in normalize_email(host_email):
        raise ValueError("Host email is invalid")
    event_date = parse_iso_date(date).isoformat()
    event_lat, event_lng = _normalize_coordinates(lat, lng)
    normalized_cap = _normalize_cap(cap)

    event = Event(
        slug=normalized_slug,
        title=title,
        date=event_date,
        city=(city or "").strip(),
        address=(address or "").strip() or None,
        lat=event_lat,
        lng=event_lng,
        privacy_tier=_normalize_tier(privacy_tier),
        host_name=(host_name or "").strip() or normalize_email(host_email),
        host_email=normalize_email(host_email),
        cap_men=normalized_cap["men"],
        cap_women=normalized_cap["women"],
        cap_couples=normalized_cap["couples"],
        summary=summary or "",
        invited_emails=_normalize_invites(invited_emails),
    )
    session.add(event)
    session.flush()
    return event


def update_event(session: Session, event: Event, **changes: Any) -> Event:
    """Apply catalog edits; the slug is immutable once published."""
    if "slug" in changes and slugify(changes["slug"] or "") != event.slug:
        raise ValueError("Event slug cannot be changed")
    if "title" in changes:
        title = (changes["title"] or "").strip()
        if not title:
            raise ValueError("Event title is required")
        event.title = title
    if "date" in changes:
        event.date = parse_iso_date(changes["date"]).isoformat()
    if "privacy_tier" in changes:
        event.privacy_tier = _normalize_tier(changes["privacy_tier"])
    if "cap" in changes:
        merged = {**event.cap, **(changes["cap"] or {})}
        normalized_cap = _normalize_cap(merged)
        event.cap_men = normalized_cap["men"]
        event.cap_women = normalized_cap["women"]
        event.cap_couples = normalized_cap["couples"]
    if "lat" in changes or "lng" in changes:
        event.lat, event.lng = _normalize_coordinates(
            changes.get("lat", event.lat), changes.get("lng", event.lng)
        )
    if "invited_emails" in changes:
        event.invited_emails = _normalize_invites(changes["invited_emails"])
    if "host_email" in changes:
        if "@" not in normalize_email(changes["host_email"]):
            raise ValueError("Host email is invalid")
        event.host_email = normalize_email(changes["host_email"])
    for key in ("city", "address", "host_name", "summary"):
        if key in changes:
            value = (changes[key] or "").strip()
            setattr(event, key, value or (None if key == "address" else ""))
    event.last_modified = utcnow()
    session.add(event)
    session.flush()
    return event


def load_catalog(session: Session, path: Path) -> dict[str, int]:
    """Upsert events from a JSON file holding a list of event objects."""
    with Path(path).open("r", encoding="utf-8") as handle:
        entries = json.load(handle)
    if not isinstance(entries, list):
        raise ValueError("Catalog file must contain a JSON list of events")
    stats = {"created": 0, "updated": 0}
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError("Catalog entries must be JSON objects")
        slug = slugify(entry.get("slug") or entry.get("title") or "")
        existing = get_event_by_slug(session, slug)
        if existing:
            changes = {key: value for key, value in entry.items() if key != "slug"}
            update_event(session, existing, **changes)
            stats["updated"] += 1
        else:
            create_event(session, **entry)
            stats["created"] += 1
    return stats
