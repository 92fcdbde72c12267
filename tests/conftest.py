"""Shared pytest fixtures for Soirée."""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from soiree import api, database, identity, live, storage
from soiree.catalog import create_event
from soiree.identity import Requester, issue_token, requester_from_member, upsert_member
from soiree.models import Base

ADMIN_EMAIL = "admin@example.com"
HOST_EMAIL = "host@example.com"


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables and live state between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    live.status_cache.clear()
    yield


@pytest.fixture(autouse=True)
def admin_identity(monkeypatch):
    """Configure a single admin identity for every test."""

    patched = dataclasses.replace(identity.settings, admin_emails=(ADMIN_EMAIL,))
    monkeypatch.setattr(identity, "settings", patched)
    return ADMIN_EMAIL


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


@pytest.fixture()
def client(monkeypatch):
    """FastAPI test client with the scheduler disabled."""

    monkeypatch.setattr(api, "start_scheduler", lambda: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    with TestClient(api.app) as test_client:
        yield test_client


def make_member(
    uid: str, email: str | None = None, *, badges: list[str] | None = None
) -> Requester:
    """Persist a member and return the matching requester."""
    with database.get_session() as db:
        member = upsert_member(
            db,
            uid=uid,
            email=email or f"{uid}@example.com",
            display_name=uid.title(),
            trust_badges=badges,
        )
        return requester_from_member(member)


def make_event(
    *,
    title: str = "Garden Party",
    privacy_tier: str = "Public",
    cap: dict[str, int] | None = None,
    host_email: str = HOST_EMAIL,
    invited_emails: list[str] | None = None,
    lat: float | None = 40.0,
    lng: float | None = -74.0,
    address: str | None = "12 Hidden Lane",
):
    with database.get_session() as db:
        return create_event(
            db,
            title=title,
            date="2030-06-01",
            host_name="Hosty",
            host_email=host_email,
            privacy_tier=privacy_tier,
            cap=cap or {"men": 2, "women": 2, "couples": 1},
            city="Springfield",
            address=address,
            lat=lat,
            lng=lng,
            summary="Bring a towel",
            invited_emails=invited_emails,
        )


def auth_header(requester: Requester) -> dict[str, str]:
    token, _ = issue_token(requester.uid)
    return {"Authorization": f"Bearer {token}"}
