"""SQLAlchemy models for Soirée."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

PRIVACY_TIERS = ("Public", "Vetted", "Private")
CATEGORIES = ("men", "women", "couples")
RSVP_STATUSES = ("Pending", "Approved", "Declined")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Member(Base):
    __tablename__ = "members"

    uid = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    display_name = Column(String(120), nullable=False)
    trust_badges = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_now, nullable=False)


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(128), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    date = Column(String(10), nullable=False)
    city = Column(String(120), nullable=False, default="")
    address = Column(String(255), nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    privacy_tier = Column(String(16), nullable=False, default="Public")
    host_name = Column(String(120), nullable=False)
    host_email = Column(String(255), nullable=False)
    cap_men = Column(Integer, nullable=False, default=0)
    cap_women = Column(Integer, nullable=False, default=0)
    cap_couples = Column(Integer, nullable=False, default=0)
    summary = Column(Text, nullable=False, default="")
    invited_emails = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    rsvps = relationship("RSVP", back_populates="event")

    @property
    def cap(self) -> dict[str, int]:
        return {
            "men": self.cap_men or 0,
            "women": self.cap_women or 0,
            "couples": self.cap_couples or 0,
        }

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.lat is None or self.lng is None:
            return None
        return (self.lat, self.lng)


class RSVP(Base):
    __tablename__ = "rsvps"
    __table_args__ = (
        UniqueConstraint("event_slug", "user_uid", name="uq_rsvps_event_user"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_slug = Column(
        String(128), ForeignKey("events.slug"), nullable=False, index=True
    )
    user_uid = Column(String(128), nullable=False, index=True)
    user_name = Column(String(120), nullable=False)
    user_email = Column(String(255), nullable=False)
    category = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="Pending")
    trust_badges = Column(JSON, nullable=False, default=list)
    checkin_token = Column(String(64), nullable=False, unique=True, index=True)
    token_degraded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    consumed_at = Column(DateTime, nullable=True)
    checked_in_by = Column(String(255), nullable=True)

    event = relationship("Event", back_populates="rsvps")
