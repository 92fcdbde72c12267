"""Decide how much location detail a viewer may see for an event."""

from __future__ import annotations

import math
from hashlib import blake2s

from .config import settings
from .identity import Requester, is_host
from .models import Event
from .utils import normalize_email

METERS_PER_DEGREE = 111000.0
# Longitude correction stops shrinking near the poles.
MIN_MERIDIAN_COS = 0.01

HIDDEN_ADDRESS_TEXT = "Address shared after approval"
PRIVATE_ADDRESS_TEXT = "Address shared by the host"


def can_see_address(
    event: Event, viewer: Requester | None, viewer_rsvp_status: str | None
) -> bool:
    if event.privacy_tier == "Public":
        return True
    if viewer is not None and is_host(event, viewer.email):
        return True
    return event.privacy_tier == "Vetted" and viewer_rsvp_status == "Approved"


def is_event_visible_to_viewer(event: Event, viewer_email: str | None) -> bool:
    if event.privacy_tier != "Private":
        return True
    normalized = normalize_email(viewer_email)
    if not normalized:
        return False
    if is_host(event, normalized):
        return True
    return normalized in {normalize_email(email) for email in event.invited_emails or []}


def _axis_digest(slug: str, axis: str) -> int:
    salt = settings.location_fuzz_salt.encode("utf-8")
    hasher = blake2s(f"{slug}:{axis}".encode("utf-8"), key=salt[:32])
    return int.from_bytes(hasher.digest()[:8], "big")


def _offset_meters(digest: int) -> float:
    low, high = settings.fuzz_min_meters, settings.fuzz_max_meters
    fraction = (digest >> 1) / float(1 << 63)
    magnitude = low + fraction * (high - low)
    return -magnitude if digest & 1 else magnitude


def fuzz_offsets(slug: str) -> tuple[float, float]:
    """Return the stable (lat, lng) offsets in meters for a slug."""
    return (
        _offset_meters(_axis_digest(slug, "lat")),
        _offset_meters(_axis_digest(slug, "lng")),
    )


def resolve_coordinate(event: Event, visible: bool) -> tuple[float, float] | None:
    """Return the exact pair, a deterministically fuzzed pair, or ``None``.

    The fuzz depends only on the slug (and the configured salt), so a map pin
    stays put across reloads.
    """
    coordinates = event.coordinates
    if coordinates is None:
        return None
    if visible:
        return coordinates
    lat, lng = coordinates
    lat_meters, lng_meters = fuzz_offsets(event.slug)
    meridian = max(abs(math.cos(lat * math.pi / 180)), MIN_MERIDIAN_COS)
    return (
        lat + lat_meters / METERS_PER_DEGREE,
        lng + lng_meters / METERS_PER_DEGREE / meridian,
    )


def location_payload(
    event: Event, viewer: Requester | None, viewer_rsvp_status: str | None
) -> dict:
    visible = can_see_address(event, viewer, viewer_rsvp_status)
    coordinate = resolve_coordinate(event, visible)
    if visible:
        address = event.address or None
    elif event.privacy_tier == "Private":
        address = PRIVATE_ADDRESS_TEXT
    else:
        address = HIDDEN_ADDRESS_TEXT
    return {
        "city": event.city,
        "address": address,
        "address_visible": visible,
        "coordinates": (
            {"lat": coordinate[0], "lng": coordinate[1], "fuzzed": not visible}
            if coordinate
            else None
        ),
    }
