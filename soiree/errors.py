"""Result values returned by the RSVP core."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RSVP


class ErrorKind(StrEnum):
    UNAUTHENTICATED = "Unauthenticated"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    ALREADY_REDEEMED = "AlreadyRedeemed"
    CAPACITY_EXCEEDED = "CapacityExceeded"
    VALIDATION = "Validation"


HTTP_STATUS_BY_ERROR: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_REDEEMED: 409,
    ErrorKind.CAPACITY_EXCEEDED: 409,
    ErrorKind.VALIDATION: 400,
}


class TokenSourceError(RuntimeError):
    """Raised when no secure random source exists and the fallback is disabled."""


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a ledger or check-in operation.

    Domain failures never raise; callers inspect ``ok`` and render ``message``
    directly.
    """

    ok: bool
    message: str
    rsvp: RSVP | None = None
    error: ErrorKind | None = None
    created: bool = False

    @classmethod
    def success(
        cls, message: str, *, rsvp: RSVP | None = None, created: bool = False
    ) -> LedgerResult:
        return cls(ok=True, message=message, rsvp=rsvp, created=created)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> LedgerResult:
        return cls(ok=False, message=message, error=error)

    @property
    def status(self) -> str | None:
        return self.rsvp.status if self.rsvp is not None else None

    @property
    def http_status(self) -> int:
        if self.ok:
            return 201 if self.created else 200
        return HTTP_STATUS_BY_ERROR.get(self.error, 400)

    def as_payload(self) -> dict:
        payload: dict = {"ok": self.ok, "message": self.message}
        if self.error is not None:
            payload["error"] = str(self.error)
        return payload
