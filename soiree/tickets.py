"""QR-code tickets carrying a check-in token."""

from __future__ import annotations

from io import BytesIO

import qrcode
import qrcode.image.svg

from .models import RSVP


def ticket_payload(rsvp: RSVP) -> str:
    return f"soiree:{rsvp.event_slug}:{rsvp.checkin_token}"


def render_ticket_svg(rsvp: RSVP) -> bytes:
    """Return an SVG QR code for the RSVP's check-in token."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr.add_data(ticket_payload(rsvp))
    qr.make(fit=True)
    img = qr.make_image()
    buffered = BytesIO()
    img.save(buffered)
    return buffered.getvalue()


def parse_ticket_payload(raw: str) -> tuple[str | None, str]:
    """Split a scanned payload into ``(event_slug, token)``.

    Bare tokens typed in by hand have no slug.
    """
    value = (raw or "").strip()
    prefix, _, rest = value.partition(":")
    if prefix == "soiree" and rest:
        slug, _, token = rest.rpartition(":")
        return (slug or None), token
    return None, value
