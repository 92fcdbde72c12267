from __future__ import annotations

import asyncio
import threading
from datetime import timedelta

from soiree import live
from soiree.live import EventRoomHub, StatusCache


def _run(coro):
    return asyncio.run(coro)


class Recorder:
    def __init__(self):
        self.frames: list[dict] = []

    async def __call__(self, payload: dict) -> None:
        self.frames.append(payload)


def test_status_cache_expires_entries():
    cache = StatusCache(10, timedelta(hours=1))
    cache.set("party", {"status": "open"}, now=0)
    assert cache.get("party", now=3599) == {"status": "open"}
    assert cache.get("party", now=3601) is None
    assert len(cache) == 0


def test_status_cache_evicts_least_recently_used():
    cache = StatusCache(2, timedelta(hours=1))
    cache.set("a", {"status": "open"}, now=0)
    cache.set("b", {"status": "open"}, now=1)
    cache.get("a", now=2)
    cache.set("c", {"status": "full"}, now=3)
    assert cache.get("b", now=4) is None
    assert cache.get("a", now=4) is not None
    assert cache.get("c", now=4) is not None


def test_status_cache_prune_removes_only_stale():
    cache = StatusCache(10, timedelta(minutes=1))
    cache.set("old", {}, now=0)
    cache.set("new", {}, now=100)
    assert cache.prune(now=120) == 1
    assert len(cache) == 1


def test_status_cache_tolerates_prune_from_another_thread():
    cache = StatusCache(50, timedelta(seconds=1))
    failures = []

    def writer():
        try:
            for i in range(5000):
                cache.set(f"event-{i % 200}", {"status": "open"}, now=float(i))
        except RuntimeError as exc:
            failures.append(exc)

    thread = threading.Thread(target=writer)
    thread.start()
    while thread.is_alive():
        cache.prune(now=10_000.0)
    thread.join()

    assert failures == []
    assert len(cache) <= 50


def test_join_replays_cached_status_and_broadcasts_updates():
    hub = EventRoomHub(StatusCache(10, timedelta(hours=1)))
    watcher, host = Recorder(), Recorder()
    watcher_subs: dict = {}
    host_subs: dict = {}

    async def scenario():
        await hub.handle_frame(
            {"type": "joinEvent", "eventSlug": "Party"}, send=host, subscriptions=host_subs
        )
        await hub.handle_frame(
            {"type": "eventStatus", "eventSlug": "party", "status": "last_call"},
            send=host,
            subscriptions=host_subs,
        )
        await hub.handle_frame(
            {"type": "joinEvent", "eventSlug": "party"},
            send=watcher,
            subscriptions=watcher_subs,
        )

    _run(scenario())

    assert host.frames[0]["type"] == "eventStatus"
    assert host.frames[0]["status"] == "last_call"
    assert watcher.frames == [
        {"type": "eventStatus", **hub.status_cache.get("party")}
    ]
    assert hub.subscriber_count("party") == 2


def test_invalid_status_and_blank_messages_are_ignored():
    hub = EventRoomHub(StatusCache(10, timedelta(hours=1)))
    recorder = Recorder()
    subs: dict = {}

    async def scenario():
        await hub.handle_frame(
            {"type": "joinEvent", "eventSlug": "party"}, send=recorder, subscriptions=subs
        )
        await hub.handle_frame(
            {"type": "eventStatus", "eventSlug": "party", "status": "sold_out"},
            send=recorder,
            subscriptions=subs,
        )
        await hub.handle_frame(
            {"type": "eventMessage", "eventSlug": "party", "text": "   "},
            send=recorder,
            subscriptions=subs,
        )
        await hub.handle_frame("not a frame", send=recorder, subscriptions=subs)

    _run(scenario())

    assert recorder.frames == []
    assert hub.status_cache.get("party") is None


def test_chat_message_defaults_to_guest_name():
    hub = EventRoomHub(StatusCache(10, timedelta(hours=1)))
    recorder = Recorder()
    subs: dict = {}

    async def scenario():
        await hub.handle_frame(
            {"type": "joinEvent", "eventSlug": "party"}, send=recorder, subscriptions=subs
        )
        await hub.handle_frame(
            {"type": "eventMessage", "eventSlug": "party", "text": " hi all "},
            send=recorder,
            subscriptions=subs,
        )

    _run(scenario())

    (message,) = recorder.frames
    assert message["type"] == "eventMessage"
    assert message["name"] == "Guest"
    assert message["text"] == "hi all"
    assert message["id"] and message["time"]


def test_leave_and_failed_sends_drop_subscribers():
    hub = EventRoomHub(StatusCache(10, timedelta(hours=1)))
    subs: dict = {}

    async def broken(_payload):
        raise RuntimeError("socket closed")

    async def scenario():
        await hub.handle_frame(
            {"type": "joinEvent", "eventSlug": "party"}, send=broken, subscriptions=subs
        )
        delivered = await hub.publish_capacity("party", {"counts": {}})
        return delivered

    assert _run(scenario()) == 0
    assert hub.subscriber_count("party") == 0

    recorder = Recorder()
    other: dict = {}

    async def leave():
        await hub.handle_frame(
            {"type": "joinEvent", "eventSlug": "party"}, send=recorder, subscriptions=other
        )
        await hub.handle_frame(
            {"type": "leaveEvent", "eventSlug": "party"}, send=recorder, subscriptions=other
        )

    _run(leave())
    assert hub.subscriber_count("party") == 0
    assert other == {}


def test_failing_subscriber_does_not_block_the_room():
    hub = EventRoomHub(StatusCache(10, timedelta(hours=1)))
    recorder = Recorder()

    async def faulty(_payload):
        raise ValueError("cannot encode frame")

    hub.subscribe("party", faulty)
    hub.subscribe("party", recorder)

    delivered = _run(hub.broadcast("party", {"type": "eventStatus", "status": "full"}))

    assert delivered == 1
    assert recorder.frames == [{"type": "eventStatus", "status": "full"}]
    assert hub.subscriber_count("party") == 1


def test_websocket_relay_round_trip(client):
    with client.websocket_connect("/ws/events") as first, client.websocket_connect(
        "/ws/events"
    ) as second:
        first.send_json({"type": "joinEvent", "eventSlug": "party"})
        second.send_json({"type": "joinEvent", "eventSlug": "party"})
        second.send_text("{not json")
        first.send_json({"type": "eventStatus", "eventSlug": "party", "status": "full"})

        assert first.receive_json()["status"] == "full"
        received = second.receive_json()
        assert received == {
            "type": "eventStatus",
            "eventSlug": "party",
            "status": "full",
            "updatedAt": received["updatedAt"],
        }

    assert live.status_cache.get("party")["status"] == "full"
