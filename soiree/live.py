"""In-process relay for live event status, chat and capacity snapshots.

Nothing here is durable: rooms and the last-status cache live for the
lifetime of the process. Clients are not authenticated, matching the public
event room behaviour.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections import OrderedDict, defaultdict
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from starlette.websockets import WebSocketDisconnect

from .config import settings
from .utils import epoch_millis

logger = logging.getLogger("uvicorn.error")

LIVE_STATUSES = ("open", "full", "last_call")
MAX_MESSAGE_LENGTH = 1000
MAX_NAME_LENGTH = 80

Callback = Callable[[dict], Awaitable[None]]


class StatusCache:
    """Bounded LRU map of the last status per event slug, with expiry."""

    def __init__(self, max_entries: int, ttl: timedelta):
        self.max_entries = max(int(max_entries), 1)
        self.ttl_seconds = ttl.total_seconds()
        self._entries: OrderedDict[str, tuple[float, dict]] = OrderedDict()
        # The scheduler prunes from its own thread.
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, stored_at: float, now: float) -> bool:
        return self.ttl_seconds > 0 and now - stored_at > self.ttl_seconds

    def get(self, event_slug: str, *, now: float | None = None) -> dict | None:
        now = time.time() if now is None else now
        with self._lock:
            entry = self._entries.get(event_slug)
            if entry is None:
                return None
            stored_at, payload = entry
            if self._expired(stored_at, now):
                del self._entries[event_slug]
                return None
            self._entries.move_to_end(event_slug)
            return payload

    def set(self, event_slug: str, payload: dict, *, now: float | None = None) -> None:
        now = time.time() if now is None else now
        with self._lock:
            self._entries[event_slug] = (now, payload)
            self._entries.move_to_end(event_slug)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cached live status for %s", evicted)

    def prune(self, *, now: float | None = None) -> int:
        now = time.time() if now is None else now
        with self._lock:
            stale = [
                slug
                for slug, (stored_at, _) in self._entries.items()
                if self._expired(stored_at, now)
            ]
            for slug in stale:
                del self._entries[slug]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class Subscription:
    def __init__(self, hub: EventRoomHub, event_slug: str, callback: Callback):
        self.hub = hub
        self.event_slug = event_slug
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self.hub._remove(self)


def _normalize_slug(raw: Any) -> str:
    return raw.strip().lower() if isinstance(raw, str) else ""


class EventRoomHub:
    def __init__(self, status_cache: StatusCache):
        self.status_cache = status_cache
        self._rooms: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, event_slug: str, callback: Callback) -> Subscription:
        """Register ``callback`` for every payload sent to the event room."""
        subscription = Subscription(self, event_slug, callback)
        self._rooms[event_slug].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        room = self._rooms.get(subscription.event_slug)
        if not room:
            return
        if subscription in room:
            room.remove(subscription)
        if not room:
            del self._rooms[subscription.event_slug]

    def subscriber_count(self, event_slug: str) -> int:
        return len(self._rooms.get(event_slug, ()))

    async def broadcast(self, event_slug: str, payload: dict) -> int:
        delivered = 0
        for subscription in list(self._rooms.get(event_slug, ())):
            try:
                await subscription.callback(payload)
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("Dropping closed subscriber from room %s", event_slug)
                subscription.cancel()
                continue
            except Exception:
                logger.exception("Dropping failing subscriber from room %s", event_slug)
                subscription.cancel()
                continue
            delivered += 1
        return delivered

    def record_status(self, event_slug: str, status: Any) -> dict | None:
        if not event_slug or status not in LIVE_STATUSES:
            return None
        payload = {
            "eventSlug": event_slug,
            "status": status,
            "updatedAt": epoch_millis(),
        }
        self.status_cache.set(event_slug, payload)
        return payload

    @staticmethod
    def build_message(name: Any, text: Any) -> dict | None:
        if not isinstance(text, str) or not text.strip():
            return None
        display = name.strip() if isinstance(name, str) else ""
        return {
            "id": f"{epoch_millis()}-{secrets.token_hex(6)}",
            "name": (display or "Guest")[:MAX_NAME_LENGTH],
            "text": text.strip()[:MAX_MESSAGE_LENGTH],
            "time": datetime.now(UTC).isoformat(),
        }

    async def publish_capacity(self, event_slug: str, snapshot: dict) -> int:
        return await self.broadcast(
            event_slug, {"type": "capacitySnapshot", "eventSlug": event_slug, **snapshot}
        )

    async def handle_frame(
        self,
        frame: Any,
        *,
        send: Callback,
        subscriptions: dict[str, Subscription],
    ) -> None:
        """Apply one client frame; malformed frames are ignored."""
        if not isinstance(frame, dict):
            return
        kind = frame.get("type")
        event_slug = _normalize_slug(frame.get("eventSlug"))
        if not event_slug:
            return

        if kind == "joinEvent":
            if event_slug not in subscriptions:
                subscriptions[event_slug] = self.subscribe(event_slug, send)
            cached = self.status_cache.get(event_slug)
            if cached:
                await send({"type": "eventStatus", **cached})
        elif kind == "leaveEvent":
            subscription = subscriptions.pop(event_slug, None)
            if subscription:
                subscription.cancel()
        elif kind == "eventStatus":
            payload = self.record_status(event_slug, frame.get("status"))
            if payload:
                logger.debug("Live status for %s set to %s", event_slug, payload["status"])
                await self.broadcast(event_slug, {"type": "eventStatus", **payload})
        elif kind == "eventMessage":
            message = self.build_message(frame.get("name"), frame.get("text"))
            if message:
                await self.broadcast(
                    event_slug, {"type": "eventMessage", "eventSlug": event_slug, **message}
                )


status_cache = StatusCache(
    settings.status_cache_max_entries, settings.status_cache_ttl
)
hub = EventRoomHub(status_cache)


def prune_status_cache() -> int:
    removed = status_cache.prune()
    if removed:
        logger.debug("Pruned %d expired live statuses", removed)
    return removed
