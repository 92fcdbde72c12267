"""Per-category occupancy derived from the live RSVP set.

Counts are never stored. Pending requests hold a slot just like approved ones;
only declined RSVPs free their seat.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import CATEGORIES, RSVP, Event


def _holds_slot(status: str | None) -> bool:
    return status != "Declined"


def count(rsvps: Iterable[RSVP]) -> dict[str, int]:
    """Return non-declined RSVP counts grouped by category."""
    counts = {category: 0 for category in CATEGORIES}
    for rsvp in rsvps:
        if rsvp.category in counts and _holds_slot(rsvp.status):
            counts[rsvp.category] += 1
    return counts


def is_full(event: Event, category: str, rsvps: Iterable[RSVP]) -> bool:
    return count(rsvps).get(category, 0) >= event.cap.get(category, 0)


def remaining(event: Event, rsvps: Iterable[RSVP]) -> dict[str, int]:
    counts = count(rsvps)
    return {
        category: max(event.cap[category] - counts[category], 0)
        for category in CATEGORIES
    }


def snapshot(event: Event, rsvps: Iterable[RSVP]) -> dict:
    """Full capacity picture for one event, as pushed to live subscribers."""
    rsvps = list(rsvps)
    counts = count(rsvps)
    cap = event.cap
    return {
        "counts": counts,
        "cap": cap,
        "remaining": {
            category: max(cap[category] - counts[category], 0)
            for category in CATEGORIES
        },
        "full": {category: counts[category] >= cap[category] for category in CATEGORIES},
    }


def count_for_event(session: Session, event_slug: str) -> dict[str, int]:
    """Aggregate the same counts in SQL, for use inside a write transaction."""
    stmt = (
        select(RSVP.category, func.count())
        .where(RSVP.event_slug == event_slug, RSVP.status != "Declined")
        .group_by(RSVP.category)
    )
    counts = {category: 0 for category in CATEGORIES}
    for category, total in session.execute(stmt).all():
        if category in counts:
            counts[category] = total
    return counts


def snapshot_for_event(session: Session, event: Event) -> dict:
    stmt = select(RSVP).where(RSVP.event_slug == event.slug)
    return snapshot(event, session.scalars(stmt).all())
