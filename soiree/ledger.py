"""RSVP ledger: one RSVP per member per event, tier-driven approval."""

from __future__ import annotations

import logging
import random
import secrets
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .capacity import count_for_event
from .config import settings
from .errors import ErrorKind, LedgerResult, TokenSourceError
from .identity import Requester, can_moderate
from .models import CATEGORIES, RSVP, RSVP_STATUSES, Event
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

REVIEW_STATUSES = ("Approved", "Declined")


def generate_checkin_token() -> tuple[str, bool]:
    """Return ``(token, degraded)``: 128 random bits as 32 lowercase hex chars.

    ``degraded`` is true only when the OS random source was unavailable and
    the configured insecure fallback produced the token instead.
    """
    try:
        return secrets.token_hex(16), False
    except NotImplementedError as exc:
        if not settings.allow_insecure_token_fallback:
            raise TokenSourceError(
                "No secure random source is available for check-in tokens"
            ) from exc
    logger.warning(
        "Secure random source unavailable; issuing a degraded check-in token"
    )
    return f"{random.getrandbits(128):032x}", True


def initial_status(event: Event) -> str:
    return "Approved" if event.privacy_tier == "Public" else "Pending"


def _normalize_category(raw: str | None) -> str | None:
    normalized = (raw or "").strip().lower()
    return normalized if normalized in CATEGORIES else None


def _normalize_status(raw: str | None, allowed: Sequence[str]) -> str | None:
    lowered = (raw or "").strip().lower()
    for status in allowed:
        if status.lower() == lowered:
            return status
    return None


def get_rsvp(session: Session, event_slug: str, user_uid: str) -> RSVP | None:
    stmt = select(RSVP).where(
        RSVP.event_slug == event_slug, RSVP.user_uid == user_uid
    )
    return session.scalars(stmt).first()


def list_event_rsvps(
    session: Session, event_slug: str, *, status: str | None = None
) -> Sequence[RSVP]:
    stmt = (
        select(RSVP)
        .where(RSVP.event_slug == event_slug)
        .order_by(RSVP.created_at.asc(), RSVP.id.asc())
    )
    if status:
        normalized = _normalize_status(status, RSVP_STATUSES)
        if normalized is None:
            raise ValueError(f"Invalid RSVP status {status!r}")
        stmt = stmt.where(RSVP.status == normalized)
    return session.scalars(stmt).all()


def _lock_event(session: Session, event: Event) -> None:
    # Serializes submissions per event where the backend supports row locks.
    session.execute(select(Event.id).where(Event.id == event.id).with_for_update())


def _existing_result(rsvp: RSVP) -> LedgerResult:
    return LedgerResult.success(
        f"You already have an RSVP for this event ({rsvp.status}).", rsvp=rsvp
    )


def _capacity_result(category: str) -> LedgerResult:
    return LedgerResult.failure(
        ErrorKind.CAPACITY_EXCEEDED,
        f"This event has no {category} spots left.",
    )


def submit(
    session: Session,
    event: Event,
    category: str | None,
    requester: Requester | None,
) -> LedgerResult:
    """Record an RSVP, or report the member's existing one unchanged."""
    if requester is None or not requester.is_authenticated:
        return LedgerResult.failure(
            ErrorKind.UNAUTHENTICATED, "Sign in to RSVP for this event."
        )
    existing = get_rsvp(session, event.slug, requester.uid)
    if existing:
        return _existing_result(existing)

    normalized_category = _normalize_category(category)
    if normalized_category is None:
        return LedgerResult.failure(
            ErrorKind.VALIDATION,
            f"Category must be one of: {', '.join(CATEGORIES)}.",
        )

    slug = event.slug
    limit = event.cap[normalized_category]
    _lock_event(session, event)
    if count_for_event(session, slug)[normalized_category] >= limit:
        return _capacity_result(normalized_category)

    token, degraded = generate_checkin_token()
    rsvp = RSVP(
        event_slug=slug,
        user_uid=requester.uid,
        user_name=requester.display_name or requester.email,
        user_email=requester.email,
        category=normalized_category,
        status=initial_status(event),
        trust_badges=list(requester.trust_badges),
        checkin_token=token,
        token_degraded=degraded,
        created_at=utcnow(),
    )
    try:
        # Only the savepoint rolls back when the unique key is lost.
        with session.begin_nested():
            session.add(rsvp)
            session.flush()
    except IntegrityError:
        # A concurrent submission for the same member won the unique key.
        winner = get_rsvp(session, slug, requester.uid)
        if winner is None:
            raise
        return _existing_result(winner)

    # Recount with our row in place; another writer may have committed since
    # the first read.
    if count_for_event(session, slug)[normalized_category] > limit:
        session.delete(rsvp)
        session.flush()
        logger.info(
            "Rejected RSVP for %s (%s): capacity reached at commit time",
            slug,
            normalized_category,
        )
        return _capacity_result(normalized_category)

    logger.info(
        "RSVP %s created for event %s by %s (%s, %s)",
        rsvp.id,
        slug,
        requester.uid,
        normalized_category,
        rsvp.status,
    )
    message = (
        "You're on the list."
        if rsvp.status == "Approved"
        else "Request sent. The host will review it."
    )
    return LedgerResult.success(message, rsvp=rsvp, created=True)


def update_status(
    session: Session,
    rsvp_id: str,
    new_status: str | None,
    reviewer: Requester | None,
) -> LedgerResult:
    """Move a pending RSVP to Approved or Declined on behalf of the host."""
    if reviewer is None or not reviewer.is_authenticated:
        return LedgerResult.failure(
            ErrorKind.UNAUTHENTICATED, "Sign in to review RSVPs."
        )
    normalized = _normalize_status(new_status, REVIEW_STATUSES)
    if normalized is None:
        return LedgerResult.failure(
            ErrorKind.VALIDATION, "Status must be Approved or Declined."
        )
    rsvp = session.get(RSVP, rsvp_id)
    if rsvp is None:
        return LedgerResult.failure(ErrorKind.NOT_FOUND, "RSVP not found.")
    if not can_moderate(rsvp.event, reviewer):
        logger.warning(
            "Refused review of RSVP %s by %s: not host or admin",
            rsvp.id,
            reviewer.email,
        )
        return LedgerResult.failure(
            ErrorKind.FORBIDDEN, "Only the host can review these RSVPs."
        )
    if rsvp.status == normalized:
        return LedgerResult.success(f"RSVP already {normalized}.", rsvp=rsvp)
    if rsvp.status != "Pending":
        return LedgerResult.failure(
            ErrorKind.VALIDATION, f"RSVP was already {rsvp.status}; reviews are final."
        )

    now = utcnow()
    result = session.execute(
        update(RSVP)
        .where(RSVP.id == rsvp.id, RSVP.status == "Pending")
        .values(
            status=normalized,
            reviewed_by=reviewer.email,
            reviewed_at=now,
            last_modified=now,
        )
    )
    session.refresh(rsvp)
    if result.rowcount == 0:
        if rsvp.status == normalized:
            return LedgerResult.success(f"RSVP already {normalized}.", rsvp=rsvp)
        return LedgerResult.failure(
            ErrorKind.VALIDATION, f"RSVP was already {rsvp.status}; reviews are final."
        )
    logger.info(
        "RSVP %s for event %s marked %s by %s",
        rsvp.id,
        rsvp.event_slug,
        normalized,
        reviewer.email,
    )
    return LedgerResult.success(f"RSVP {normalized}.", rsvp=rsvp)
