"""Development helpers for populating fake members, events and RSVPs."""

from __future__ import annotations

import random
from datetime import date, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from . import ledger
from .catalog import create_event, get_event_by_slug
from .database import get_session
from .identity import Requester, requester_from_member, upsert_member
from .models import CATEGORIES, PRIVACY_TIERS, Event
from .storage import init_db
from .utils import slugify

_event_types = [
    "Mixer",
    "Pool Party",
    "Masquerade",
    "Wine Night",
    "Dinner",
    "Meet & Greet",
    "Beach Day",
    "Social",
]
_trust_badges = ["verified", "host", "vouched", "veteran", ""]
_review_outcomes = ["Approved", "Approved", "Declined", None]


def seed_fake_data(
    *,
    member_count: int = 20,
    event_count: int = 6,
    max_rsvps_per_event: int = 8,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic members, events and RSVPs."""
    if member_count < 1:
        raise ValueError("member_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_rsvps_per_event < 0:
        raise ValueError("max_rsvps_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"members": 0, "events": 0, "rsvps": 0}

    with get_session() as session:
        members = [_create_member(session, fake) for _ in range(member_count)]
        stats["members"] = len(members)
        for _ in range(event_count):
            host = random.choice(members)
            event = _create_event(session, fake, host=host, members=members)
            stats["events"] += 1
            stats["rsvps"] += _create_rsvps(
                session, event, host=host, members=members, max_rsvps=max_rsvps_per_event
            )

    return stats


def _create_member(session: Session, fake: Faker) -> Requester:
    badge = random.choice(_trust_badges)
    member = upsert_member(
        session,
        uid=fake.unique.uuid4(),
        email=fake.unique.email(),
        display_name=fake.user_name(),
        trust_badges=[badge] if badge else [],
    )
    return requester_from_member(member)


def _create_event(
    session: Session,
    fake: Faker,
    *,
    host: Requester,
    members: list[Requester],
) -> Event:
    for _ in range(20):
        title = f"{fake.city()} {random.choice(_event_types)}"
        if slugify(title) and not get_event_by_slug(session, slugify(title)):
            break
    else:
        raise RuntimeError("Failed to create a unique event title")

    tier = random.choice(PRIVACY_TIERS)
    invited = []
    if tier == "Private":
        invited = [m.email for m in random.sample(members, k=min(5, len(members)))]
    lat, lng = float(fake.latitude()), float(fake.longitude())
    return create_event(
        session,
        title=title,
        date=(date.today() + timedelta(days=random.randint(1, 60))).isoformat(),
        host_name=host.display_name,
        host_email=host.email,
        privacy_tier=tier,
        cap={category: random.randint(2, 12) for category in CATEGORIES},
        city=fake.city(),
        address=fake.street_address(),
        lat=lat,
        lng=lng,
        summary=fake.paragraph(nb_sentences=3),
        invited_emails=invited,
    )


def _create_rsvps(
    session: Session,
    event: Event,
    *,
    host: Requester,
    members: list[Requester],
    max_rsvps: int,
) -> int:
    if max_rsvps <= 0:
        return 0
    guests = [m for m in members if m.uid != host.uid]
    if event.privacy_tier == "Private":
        invited = set(event.invited_emails or [])
        guests = [m for m in guests if m.email in invited]
    total = 0
    for guest in random.sample(guests, k=min(len(guests), random.randint(0, max_rsvps))):
        result = ledger.submit(session, event, random.choice(CATEGORIES), guest)
        if not result.created:
            continue
        total += 1
        outcome = random.choice(_review_outcomes)
        if result.rsvp.status == "Pending" and outcome:
            ledger.update_status(session, result.rsvp.id, outcome, host)
    return total
