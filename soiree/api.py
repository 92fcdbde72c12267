"""FastAPI application for Soirée."""

from __future__ import annotations

import logging
import tomllib
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Response,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import capacity, ledger
from .catalog import create_event, get_event_by_slug, list_events, update_event
from .checkin import checkin
from .config import settings
from .database import SessionLocal
from .errors import ErrorKind, LedgerResult, TokenSourceError
from .ics import generate_ics
from .identity import Requester, can_moderate, is_admin, resolve_requester
from .live import Subscription, hub
from .models import RSVP, Event
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .tickets import parse_ticket_payload, render_ticket_svg
from .visibility import can_see_address, is_event_visible_to_viewer, location_payload

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _no_cache(response: Response) -> Response:
    """Prevent clients from caching responses that carry credentials."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("soiree")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Soirée", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_requester(request: Request, db: Session = Depends(get_db)) -> Requester | None:
    return resolve_requester(db, request.headers.get("authorization"))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"ok": False, "detail": exc.detail}, status_code=exc.status_code
    )


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"ok": False, "detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"ok": False, "detail": exc.errors()}, status_code=422)


@app.exception_handler(TokenSourceError)
async def token_source_error_handler(request: Request, exc: TokenSourceError):
    logger.error("Refused to issue a check-in token: %s", exc)
    return JSONResponse(
        {"ok": False, "detail": "Tickets cannot be issued right now. Please try again later."},
        status_code=503,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"ok": False, "detail": "Internal server error"}, status_code=500)


class CapacityPayload(BaseModel):
    men: int = Field(0, ge=0)
    women: int = Field(0, ge=0)
    couples: int = Field(0, ge=0)


class EventCreatePayload(BaseModel):
    title: str
    date: str = Field(..., description="ISO date string (YYYY-MM-DD)")
    slug: str | None = None
    city: str = ""
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    privacy_tier: str = "Public"
    host_name: str
    host_email: str
    cap: CapacityPayload = Field(default_factory=CapacityPayload)
    summary: str = ""
    invited_emails: list[str] = Field(default_factory=list)


class EventUpdatePayload(BaseModel):
    title: str | None = None
    date: str | None = None
    city: str | None = None
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    privacy_tier: str | None = None
    host_name: str | None = None
    host_email: str | None = None
    cap: dict[str, int] | None = None
    summary: str | None = None
    invited_emails: list[str] | None = None


class RSVPCreatePayload(BaseModel):
    category: str


class CheckinPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str | None = None
    event_slug: str | None = Field(None, alias="eventSlug")


def _require_requester(requester: Requester | None) -> Requester:
    if requester is None:
        raise HTTPException(status_code=401, detail="Missing or invalid bearer token")
    return requester


def _require_admin(requester: Requester | None) -> Requester:
    requester = _require_requester(requester)
    if not is_admin(requester.email):
        raise HTTPException(status_code=403, detail="Admin access required")
    return requester


def _ensure_event(db: Session, slug: str, requester: Requester | None) -> Event:
    event = get_event_by_slug(db, slug)
    viewer_email = requester.email if requester else None
    # Private events the viewer was not invited to look exactly like missing ones.
    if not event or not (
        is_event_visible_to_viewer(event, viewer_email) or is_admin(viewer_email)
    ):
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _viewer_rsvp(db: Session, event: Event, requester: Requester | None) -> RSVP | None:
    if requester is None:
        return None
    return ledger.get_rsvp(db, event.slug, requester.uid)


def _serialize_rsvp(
    rsvp: RSVP, *, include_token: bool = False, include_contact: bool = False
) -> dict:
    payload = {
        "id": rsvp.id,
        "event_slug": rsvp.event_slug,
        "user_uid": rsvp.user_uid,
        "user_name": rsvp.user_name,
        "category": rsvp.category,
        "status": rsvp.status,
        "trust_badges": list(rsvp.trust_badges or []),
        "created_at": rsvp.created_at.isoformat(),
        "reviewed_at": rsvp.reviewed_at.isoformat() if rsvp.reviewed_at else None,
        "checked_in": rsvp.consumed_at is not None,
        "consumed_at": rsvp.consumed_at.isoformat() if rsvp.consumed_at else None,
    }
    if include_token:
        payload["checkin_token"] = rsvp.checkin_token
    if include_contact:
        payload["user_email"] = rsvp.user_email
        payload["reviewed_by"] = rsvp.reviewed_by
        payload["checked_in_by"] = rsvp.checked_in_by
        payload["token_degraded"] = rsvp.token_degraded
    return payload


def _serialize_event(
    event: Event,
    *,
    viewer: Requester | None,
    viewer_rsvp: RSVP | None,
    capacity_snapshot: dict | None = None,
    include_invites: bool = False,
) -> dict:
    status = viewer_rsvp.status if viewer_rsvp else None
    payload = {
        "id": event.id,
        "slug": event.slug,
        "title": event.title,
        "date": event.date,
        "privacy_tier": event.privacy_tier,
        "host_name": event.host_name,
        "summary": event.summary,
        "cap": event.cap,
        "location": location_payload(event, viewer, status),
        "viewer_rsvp": _serialize_rsvp(viewer_rsvp) if viewer_rsvp else None,
        "links": {
            "self": f"/api/v1/events/{event.slug}",
            "ics": f"/api/v1/events/{event.slug}/event.ics",
        },
    }
    if capacity_snapshot is not None:
        payload["capacity"] = capacity_snapshot
    if include_invites:
        payload["host_email"] = event.host_email
        payload["invited_emails"] = list(event.invited_emails or [])
    return payload


def _result_response(result: LedgerResult, *, include_token: bool = False) -> JSONResponse:
    payload = result.as_payload()
    if result.rsvp is not None:
        payload["status"] = result.rsvp.status
        payload["rsvp"] = _serialize_rsvp(result.rsvp, include_token=include_token)
    return JSONResponse(payload, status_code=result.http_status)


def _build_pagination(*, page: int, per_page: int, total_events: int) -> dict:
    total_pages = (
        max(1, (total_events + per_page - 1) // per_page) if total_events else 1
    )
    page = max(1, min(page, total_pages)) if total_events else 1
    return {
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "total_events": total_events,
        "has_prev": page > 1,
        "has_next": page < total_pages and total_events > 0,
        "prev_page": page - 1 if page > 1 else None,
        "next_page": page + 1 if page < total_pages and total_events > 0 else None,
    }


@app.get("/api/v1/events")
def api_list_events(
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.events_per_page, ge=1, le=100),
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    viewer_email = requester.email if requester else None
    visible = [
        event
        for event in list_events(db)
        if is_event_visible_to_viewer(event, viewer_email) or is_admin(viewer_email)
    ]
    pagination = _build_pagination(
        page=page, per_page=per_page, total_events=len(visible)
    )
    offset = (pagination["page"] - 1) * per_page
    events = visible[offset : offset + per_page]

    own_rsvps: dict[str, RSVP] = {}
    if requester is not None and events:
        stmt = select(RSVP).where(
            RSVP.user_uid == requester.uid,
            RSVP.event_slug.in_([event.slug for event in events]),
        )
        own_rsvps = {rsvp.event_slug: rsvp for rsvp in db.scalars(stmt).all()}

    return {
        "events": [
            _serialize_event(
                event, viewer=requester, viewer_rsvp=own_rsvps.get(event.slug)
            )
            for event in events
        ],
        "pagination": pagination,
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    _require_admin(requester)
    try:
        event = create_event(db, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("Event %s created by %s", event.slug, requester.email)
    return {
        "event": _serialize_event(
            event,
            viewer=requester,
            viewer_rsvp=None,
            capacity_snapshot=capacity.snapshot(event, []),
            include_invites=True,
        )
    }


@app.patch("/api/v1/events/{slug}")
def api_update_event(
    slug: str,
    payload: EventUpdatePayload,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    _require_admin(requester)
    event = _ensure_event(db, slug, requester)
    try:
        event = update_event(db, event, **payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "event": _serialize_event(
            event,
            viewer=requester,
            viewer_rsvp=None,
            capacity_snapshot=capacity.snapshot_for_event(db, event),
            include_invites=True,
        )
    }


@app.get("/api/v1/events/{slug}")
def api_get_event(
    slug: str,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    event = _ensure_event(db, slug, requester)
    return {
        "event": _serialize_event(
            event,
            viewer=requester,
            viewer_rsvp=_viewer_rsvp(db, event, requester),
            capacity_snapshot=capacity.snapshot_for_event(db, event),
            include_invites=can_moderate(event, requester),
        )
    }


@app.get("/api/v1/events/{slug}/capacity")
def api_event_capacity(
    slug: str,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    event = _ensure_event(db, slug, requester)
    return {"event_slug": event.slug, **capacity.snapshot_for_event(db, event)}


@app.get("/api/v1/events/{slug}/event.ics")
def api_get_event_ics(
    slug: str,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    """Serve an event as a downloadable ICS file."""
    event = _ensure_event(db, slug, requester)
    rsvp = _viewer_rsvp(db, event, requester)
    include_location = can_see_address(event, requester, rsvp.status if rsvp else None)
    ics_text = generate_ics(event, include_location=include_location)
    headers = {"Content-Disposition": f'attachment; filename="{event.slug}.ics"'}
    return Response(content=ics_text, media_type="text/calendar", headers=headers)


@app.post("/api/v1/events/{slug}/rsvps", status_code=201)
def api_submit_rsvp(
    slug: str,
    payload: RSVPCreatePayload,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    event = _ensure_event(db, slug, requester)
    result = ledger.submit(db, event, payload.category, requester)
    if result.ok and result.created:
        background_tasks.add_task(
            hub.publish_capacity, event.slug, capacity.snapshot_for_event(db, event)
        )
    return _no_cache(_result_response(result, include_token=result.ok))


@app.get("/api/v1/events/{slug}/rsvps/self")
def api_get_own_rsvp(
    slug: str,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    requester = _require_requester(requester)
    event = _ensure_event(db, slug, requester)
    rsvp = _viewer_rsvp(db, event, requester)
    if not rsvp:
        raise HTTPException(status_code=404, detail="RSVP not found")
    response = JSONResponse({"rsvp": _serialize_rsvp(rsvp, include_token=True)})
    return _no_cache(response)


@app.get("/api/v1/events/{slug}/rsvps/self/ticket.svg")
def api_get_own_ticket(
    slug: str,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    requester = _require_requester(requester)
    event = _ensure_event(db, slug, requester)
    rsvp = _viewer_rsvp(db, event, requester)
    if not rsvp:
        raise HTTPException(status_code=404, detail="RSVP not found")
    if rsvp.status != "Approved":
        raise HTTPException(
            status_code=403, detail="Your ticket is available once the host approves."
        )
    return _no_cache(Response(content=render_ticket_svg(rsvp), media_type="image/svg+xml"))


@app.get("/api/v1/events/{slug}/rsvps")
def api_list_event_rsvps(
    slug: str,
    status: str | None = Query(None),
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    requester = _require_requester(requester)
    event = _ensure_event(db, slug, requester)
    if not can_moderate(event, requester):
        raise HTTPException(status_code=403, detail="Only the host can see RSVPs")
    try:
        rsvps = ledger.list_event_rsvps(db, event.slug, status=status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    all_rsvps = rsvps if status is None else ledger.list_event_rsvps(db, event.slug)
    return {
        "event_slug": event.slug,
        "rsvps": [_serialize_rsvp(r, include_contact=True) for r in rsvps],
        "capacity": capacity.snapshot(event, all_rsvps),
        "stats": {
            state: sum(1 for r in all_rsvps if r.status == state)
            for state in ("Pending", "Approved", "Declined")
        },
    }


def _review(
    db: Session,
    *,
    slug: str,
    rsvp_id: str,
    new_status: str,
    requester: Requester | None,
    background_tasks: BackgroundTasks,
) -> JSONResponse:
    event = _ensure_event(db, slug, requester)
    rsvp = db.get(RSVP, rsvp_id)
    if rsvp is None or rsvp.event_slug != event.slug:
        result = LedgerResult.failure(ErrorKind.NOT_FOUND, "RSVP not found.")
    else:
        result = ledger.update_status(db, rsvp_id, new_status, requester)
    if result.ok:
        background_tasks.add_task(
            hub.publish_capacity, event.slug, capacity.snapshot_for_event(db, event)
        )
    return _result_response(result)


@app.post("/api/v1/events/{slug}/rsvps/{rsvp_id}/approve")
def api_approve_rsvp(
    slug: str,
    rsvp_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    return _review(
        db,
        slug=slug,
        rsvp_id=rsvp_id,
        new_status="Approved",
        requester=requester,
        background_tasks=background_tasks,
    )


@app.post("/api/v1/events/{slug}/rsvps/{rsvp_id}/decline")
def api_decline_rsvp(
    slug: str,
    rsvp_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    return _review(
        db,
        slug=slug,
        rsvp_id=rsvp_id,
        new_status="Declined",
        requester=requester,
        background_tasks=background_tasks,
    )


@app.post("/api/events/checkin")
def api_checkin(
    payload: CheckinPayload,
    db: Session = Depends(get_db),
    requester: Requester | None = Depends(get_requester),
):
    scanned_slug, token = parse_ticket_payload(payload.token or "")
    result = checkin(db, token, payload.event_slug or scanned_slug, requester)
    return JSONResponse(result.as_payload(), status_code=result.http_status)


@app.websocket("/ws/events")
async def event_relay(websocket: WebSocket):
    await websocket.accept()
    subscriptions: dict[str, Subscription] = {}
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                continue
            await hub.handle_frame(
                frame, send=websocket.send_json, subscriptions=subscriptions
            )
    except WebSocketDisconnect:
        logger.debug("Relay client disconnected from %d rooms", len(subscriptions))
    finally:
        for subscription in subscriptions.values():
            subscription.cancel()
