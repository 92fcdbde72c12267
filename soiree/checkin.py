"""Single-use redemption of check-in tokens at the door."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import ErrorKind, LedgerResult
from .identity import Requester, can_moderate
from .models import RSVP
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


def find_by_token(session: Session, token: str) -> RSVP | None:
    stmt = select(RSVP).where(RSVP.checkin_token == token)
    return session.scalars(stmt).first()


def checkin(
    session: Session,
    token: str | None,
    event_slug: str | None,
    caller: Requester | None,
) -> LedgerResult:
    """Redeem ``token`` for ``event_slug`` exactly once."""
    if caller is None or not caller.is_authenticated:
        return LedgerResult.failure(ErrorKind.UNAUTHENTICATED, "Missing auth token.")
    token = (token or "").strip().lower()
    event_slug = (event_slug or "").strip().lower()
    if not token:
        return LedgerResult.failure(ErrorKind.VALIDATION, "Missing check-in token.")

    rsvp = find_by_token(session, token)
    if rsvp is None:
        return LedgerResult.failure(ErrorKind.NOT_FOUND, "Ticket not found.")
    if event_slug and rsvp.event_slug != event_slug:
        logger.warning(
            "Check-in token for %s presented at %s by %s",
            rsvp.event_slug,
            event_slug,
            caller.email,
        )
        return LedgerResult.failure(
            ErrorKind.FORBIDDEN, "Ticket belongs to a different event."
        )
    if not can_moderate(rsvp.event, caller):
        return LedgerResult.failure(ErrorKind.FORBIDDEN, "Not authorized.")
    if rsvp.consumed_at is not None:
        return LedgerResult.failure(
            ErrorKind.ALREADY_REDEEMED, "Ticket already checked in."
        )
    if rsvp.status != "Approved":
        return LedgerResult.failure(ErrorKind.VALIDATION, "Ticket not approved.")

    now = utcnow()
    result = session.execute(
        update(RSVP)
        .where(
            RSVP.id == rsvp.id,
            RSVP.consumed_at.is_(None),
            RSVP.status == "Approved",
        )
        .values(consumed_at=now, checked_in_by=caller.email, last_modified=now)
    )
    session.refresh(rsvp)
    if result.rowcount == 0:
        logger.warning("Concurrent check-in lost the race for RSVP %s", rsvp.id)
        if rsvp.consumed_at is not None:
            return LedgerResult.failure(
                ErrorKind.ALREADY_REDEEMED, "Ticket already checked in."
            )
        return LedgerResult.failure(ErrorKind.VALIDATION, "Ticket not approved.")

    logger.info(
        "Checked in RSVP %s for event %s (by %s)",
        rsvp.id,
        rsvp.event_slug,
        caller.email,
    )
    return LedgerResult.success("Check-in recorded.", rsvp=rsvp)
