"""Bearer-token identity and member profiles.

Tokens are ``<b64(uid|expiry)>.<b64(hmac)>`` signed with the secret kept in
the ``meta`` table. The member profile supplies the email, display name and
trust badges that the RSVP ledger copies at submission time.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import storage
from .config import settings
from .models import Member, Meta
from .utils import normalize_email


@dataclass(frozen=True)
class Requester:
    uid: str
    email: str
    display_name: str = ""
    trust_badges: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.uid and self.email)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def _sign(payload: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()


def issue_token(uid: str, *, secret: str | None = None) -> tuple[str, str]:
    """Return a signed bearer token for ``uid`` and its ISO expiry."""
    if not uid:
        raise ValueError("uid is required")
    secret = secret or storage.fetch_signing_secret()
    expiry = datetime.now(UTC) + settings.token_ttl
    payload = f"{uid}|{int(expiry.timestamp())}".encode("utf-8")
    token = f"{_b64url(payload)}.{_b64url(_sign(payload, secret))}"
    return token, expiry.isoformat()


def verify_token(token: str, *, secret: str) -> str | None:
    """Return the uid carried by a valid, unexpired token."""
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
    except ValueError:
        return None
    if not hmac.compare_digest(sent_sig, _sign(payload, secret)):
        return None
    try:
        uid, expiry_ts = payload.decode("utf-8").rsplit("|", 1)
        expires = int(expiry_ts)
    except (UnicodeDecodeError, ValueError):
        return None
    if datetime.now(UTC).timestamp() > expires:
        return None
    return uid or None


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def _fetch_secret_in_session(session: Session) -> str | None:
    meta = session.get(Meta, settings.signing_secret_key)
    return meta.value if meta else None


def requester_from_member(member: Member) -> Requester:
    return Requester(
        uid=member.uid,
        email=normalize_email(member.email),
        display_name=member.display_name,
        trust_badges=tuple(member.trust_badges or ()),
    )


def resolve_requester(session: Session, authorization: str | None) -> Requester | None:
    """Map an ``Authorization`` header to the calling member, if any."""
    token = parse_bearer_token(authorization)
    if not token:
        return None
    secret = _fetch_secret_in_session(session)
    if not secret:
        return None
    uid = verify_token(token, secret=secret)
    if not uid:
        return None
    member = session.get(Member, uid)
    if member is None:
        return None
    return requester_from_member(member)


def is_admin(email: str | None) -> bool:
    normalized = normalize_email(email)
    return bool(normalized) and normalized in settings.admin_emails


def is_host(event, email: str | None) -> bool:
    normalized = normalize_email(email)
    return bool(normalized) and normalized == normalize_email(event.host_email)


def can_moderate(event, requester: Requester | None) -> bool:
    """Only the event's host or an admin identity may review or check in."""
    if requester is None:
        return False
    return is_host(event, requester.email) or is_admin(requester.email)


def get_member_by_email(session: Session, email: str) -> Member | None:
    stmt = select(Member).where(Member.email == normalize_email(email))
    return session.scalars(stmt).first()


def upsert_member(
    session: Session,
    *,
    uid: str,
    email: str,
    display_name: str,
    trust_badges: list[str] | None = None,
) -> Member:
    """Create or update a member profile."""
    uid = (uid or "").strip()
    normalized_email = normalize_email(email)
    if not uid:
        raise ValueError("Member uid is required")
    if "@" not in normalized_email:
        raise ValueError("Member email is invalid")
    member = session.get(Member, uid)
    if member is None:
        member = Member(uid=uid)
    member.email = normalized_email
    member.display_name = (display_name or "").strip() or normalized_email
    member.trust_badges = [badge.strip() for badge in trust_badges or [] if badge.strip()]
    session.add(member)
    session.flush()
    return member
