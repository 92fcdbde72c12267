"""Utility helpers for Soirée."""

from __future__ import annotations

import re
import unicodedata
from datetime import UTC, date, datetime

_slug_invalid = re.compile(r"[^a-z0-9]+")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def slugify(value: str) -> str:
    """Return a canonical slug suitable for URLs."""
    value = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    value = value.strip().lower()
    value = _slug_invalid.sub("-", value)
    value = value.strip("-")
    return value


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def parse_iso_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string, raising ``ValueError`` when malformed."""
    try:
        return date.fromisoformat((value or "").strip())
    except ValueError as exc:
        raise ValueError(f"Invalid event date {value!r}; use YYYY-MM-DD") from exc


def epoch_millis(value: datetime | None = None) -> int:
    moment = value or datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp() * 1000)
