from __future__ import annotations

from conftest import ADMIN_EMAIL, HOST_EMAIL, auth_header, make_event, make_member
from soiree import api, database
from soiree.models import RSVP
from soiree.visibility import HIDDEN_ADDRESS_TEXT


def _host():
    return make_member("host", HOST_EMAIL)


def _admin():
    return make_member("admin", ADMIN_EMAIL)


def _rsvp(client, slug: str, member, category: str = "women"):
    return client.post(
        f"/api/v1/events/{slug}/rsvps",
        json={"category": category},
        headers=auth_header(member),
    )


def test_list_events_hides_private_events_from_strangers(client):
    make_event(title="Open Night")
    make_event(title="Vetted Night", privacy_tier="Vetted")
    make_event(
        title="Secret Night", privacy_tier="Private", invited_emails=["friend@example.com"]
    )
    friend = make_member("friend", "friend@example.com")

    anonymous = client.get("/api/v1/events")
    invited = client.get("/api/v1/events", headers=auth_header(friend))

    assert anonymous.status_code == 200
    assert [e["slug"] for e in anonymous.json()["events"]] == [
        "open-night",
        "vetted-night",
    ]
    assert "secret-night" in [e["slug"] for e in invited.json()["events"]]
    vetted = anonymous.json()["events"][1]
    assert vetted["location"]["address"] == HIDDEN_ADDRESS_TEXT
    assert vetted["location"]["coordinates"]["fuzzed"] is True
    assert "host_email" not in vetted


def test_list_events_paginates(client):
    for index in range(3):
        make_event(title=f"Night {index}")

    response = client.get("/api/v1/events", params={"per_page": 2, "page": 2})

    body = response.json()
    assert [e["slug"] for e in body["events"]] == ["night-2"]
    assert body["pagination"]["total_events"] == 3
    assert body["pagination"]["has_prev"] is True
    assert body["pagination"]["has_next"] is False


def test_private_event_detail_is_not_found_for_strangers(client):
    make_event(title="Secret Night", privacy_tier="Private")
    stranger = make_member("stranger")

    assert client.get("/api/v1/events/secret-night").status_code == 404
    response = client.get("/api/v1/events/secret-night", headers=auth_header(stranger))
    assert response.status_code == 404
    assert response.json() == {"ok": False, "detail": "Event not found"}
    admin = client.get("/api/v1/events/secret-night", headers=auth_header(_admin()))
    assert admin.status_code == 200


def test_create_event_requires_admin(client):
    payload = {
        "title": "Pool Party",
        "date": "2030-08-01",
        "host_name": "Hosty",
        "host_email": HOST_EMAIL,
        "privacy_tier": "Vetted",
        "cap": {"men": 2, "women": 2, "couples": 1},
    }

    assert client.post("/api/v1/events", json=payload).status_code == 401
    forbidden = client.post("/api/v1/events", json=payload, headers=auth_header(_host()))
    assert forbidden.status_code == 403

    created = client.post("/api/v1/events", json=payload, headers=auth_header(_admin()))
    assert created.status_code == 201
    event = created.json()["event"]
    assert event["slug"] == "pool-party"
    assert event["capacity"]["remaining"] == {"men": 2, "women": 2, "couples": 1}

    duplicate = client.post("/api/v1/events", json=payload, headers=auth_header(_admin()))
    assert duplicate.status_code == 400


def test_update_event_adjusts_caps(client):
    make_event(title="Pool Party")
    response = client.patch(
        "/api/v1/events/pool-party",
        json={"cap": {"couples": 5}, "summary": "Towels provided"},
        headers=auth_header(_admin()),
    )
    assert response.status_code == 200
    event = response.json()["event"]
    assert event["cap"]["couples"] == 5
    assert event["summary"] == "Towels provided"

    invalid = client.patch(
        "/api/v1/events/pool-party",
        json={"privacy_tier": "Secret"},
        headers=auth_header(_admin()),
    )
    assert invalid.status_code == 400


def test_rsvp_requires_bearer_token(client):
    make_event(title="Open Night")
    response = client.post("/api/v1/events/open-night/rsvps", json={"category": "men"})
    assert response.status_code == 401
    assert response.json()["error"] == "Unauthenticated"
    assert response.json()["ok"] is False


def test_public_rsvp_is_created_once(client):
    make_event(title="Open Night")
    guest = make_member("guest")

    first = _rsvp(client, "open-night", guest)
    second = _rsvp(client, "open-night", guest, category="men")

    assert first.status_code == 201
    assert first.json()["status"] == "Approved"
    assert first.json()["rsvp"]["checkin_token"]
    assert first.headers["cache-control"].startswith("no-store")
    assert second.status_code == 200
    assert second.json()["rsvp"]["id"] == first.json()["rsvp"]["id"]
    assert second.json()["rsvp"]["category"] == "women"


def test_rsvp_reports_capacity_exceeded(client):
    make_event(title="Tiny Night", cap={"men": 0, "women": 1, "couples": 0})
    first, second = make_member("first"), make_member("second")

    assert _rsvp(client, "tiny-night", first).status_code == 201
    full = _rsvp(client, "tiny-night", second)

    assert full.status_code == 409
    assert full.json() == {
        "ok": False,
        "message": "This event has no women spots left.",
        "error": "CapacityExceeded",
    }
    capacity = client.get("/api/v1/events/tiny-night/capacity").json()
    assert capacity["counts"]["women"] == 1
    assert capacity["full"]["women"] is True


def test_rsvp_rejects_invalid_category(client):
    make_event(title="Open Night")
    response = _rsvp(client, "open-night", make_member("guest"), category="vip")
    assert response.status_code == 400
    assert response.json()["error"] == "Validation"


def test_vetted_flow_reveals_address_after_approval(client):
    make_event(title="Vetted Night", privacy_tier="Vetted")
    host, guest = _host(), make_member("guest")

    pending = _rsvp(client, "vetted-night", guest)
    assert pending.status_code == 201
    assert pending.json()["status"] == "Pending"
    rsvp_id = pending.json()["rsvp"]["id"]

    before = client.get("/api/v1/events/vetted-night", headers=auth_header(guest)).json()
    assert before["event"]["location"]["address_visible"] is False
    assert before["event"]["viewer_rsvp"]["status"] == "Pending"

    denied = client.post(
        f"/api/v1/events/vetted-night/rsvps/{rsvp_id}/approve",
        headers=auth_header(guest),
    )
    assert denied.status_code == 403
    assert denied.json()["error"] == "Forbidden"

    approved = client.post(
        f"/api/v1/events/vetted-night/rsvps/{rsvp_id}/approve",
        headers=auth_header(host),
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "Approved"

    after = client.get("/api/v1/events/vetted-night", headers=auth_header(guest)).json()
    assert after["event"]["location"]["address"] == "12 Hidden Lane"
    assert after["event"]["location"]["coordinates"]["fuzzed"] is False

    final = client.post(
        f"/api/v1/events/vetted-night/rsvps/{rsvp_id}/decline",
        headers=auth_header(host),
    )
    assert final.status_code == 400


def test_review_rejects_rsvp_from_other_event(client):
    make_event(title="Vetted Night", privacy_tier="Vetted")
    make_event(title="Other Night", privacy_tier="Vetted")
    rsvp_id = _rsvp(client, "vetted-night", make_member("guest")).json()["rsvp"]["id"]

    response = client.post(
        f"/api/v1/events/other-night/rsvps/{rsvp_id}/decline",
        headers=auth_header(_host()),
    )

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_host_lists_rsvps_with_stats(client):
    make_event(title="Vetted Night", privacy_tier="Vetted")
    host = _host()
    _rsvp(client, "vetted-night", make_member("one"))
    _rsvp(client, "vetted-night", make_member("two"), category="men")

    response = client.get("/api/v1/events/vetted-night/rsvps", headers=auth_header(host))
    assert response.status_code == 200
    body = response.json()
    assert body["stats"] == {"Pending": 2, "Approved": 0, "Declined": 0}
    assert {r["user_email"] for r in body["rsvps"]} == {"one@example.com", "two@example.com"}
    assert "checkin_token" not in body["rsvps"][0]

    filtered = client.get(
        "/api/v1/events/vetted-night/rsvps",
        params={"status": "approved"},
        headers=auth_header(host),
    )
    assert filtered.json()["rsvps"] == []
    assert client.get(
        "/api/v1/events/vetted-night/rsvps",
        params={"status": "maybe"},
        headers=auth_header(host),
    ).status_code == 400
    assert client.get(
        "/api/v1/events/vetted-night/rsvps", headers=auth_header(make_member("nosy"))
    ).status_code == 403


def test_ticket_available_only_once_approved(client):
    make_event(title="Vetted Night", privacy_tier="Vetted")
    host, guest = _host(), make_member("guest")
    rsvp_id = _rsvp(client, "vetted-night", guest).json()["rsvp"]["id"]

    url = "/api/v1/events/vetted-night/rsvps/self/ticket.svg"
    assert client.get(url, headers=auth_header(guest)).status_code == 403

    client.post(
        f"/api/v1/events/vetted-night/rsvps/{rsvp_id}/approve", headers=auth_header(host)
    )
    ticket = client.get(url, headers=auth_header(guest))
    assert ticket.status_code == 200
    assert ticket.headers["content-type"].startswith("image/svg+xml")

    own = client.get("/api/v1/events/vetted-night/rsvps/self", headers=auth_header(guest))
    assert own.json()["rsvp"]["status"] == "Approved"
    assert client.get(
        "/api/v1/events/vetted-night/rsvps/self", headers=auth_header(host)
    ).status_code == 404


def test_checkin_endpoint_redeems_scanned_ticket_once(client):
    make_event(title="Open Night")
    host, guest = _host(), make_member("guest")
    token = _rsvp(client, "open-night", guest).json()["rsvp"]["checkin_token"]
    scanned = f"soiree:open-night:{token}"

    anonymous = client.post("/api/events/checkin", json={"token": scanned})
    assert anonymous.status_code == 401
    assert anonymous.json()["message"] == "Missing auth token."

    first = client.post(
        "/api/events/checkin", json={"token": scanned}, headers=auth_header(host)
    )
    second = client.post(
        "/api/events/checkin",
        json={"token": token, "eventSlug": "open-night"},
        headers=auth_header(host),
    )

    assert first.status_code == 200
    assert first.json() == {"ok": True, "message": "Check-in recorded."}
    assert second.status_code == 409
    assert second.json()["error"] == "AlreadyRedeemed"

    with database.get_session() as session:
        rsvp = session.query(RSVP).filter_by(checkin_token=token).one()
        assert rsvp.checked_in_by == HOST_EMAIL


def test_checkin_rejects_wrong_event(client):
    make_event(title="Open Night")
    make_event(title="Other Night")
    token = _rsvp(client, "open-night", make_member("guest")).json()["rsvp"]["checkin_token"]

    response = client.post(
        "/api/events/checkin",
        json={"token": token, "eventSlug": "other-night"},
        headers=auth_header(_host()),
    )

    assert response.status_code == 403
    assert response.json()["message"] == "Ticket belongs to a different event."


def test_ics_hides_address_for_vetted_guests(client):
    make_event(title="Vetted Night", privacy_tier="Vetted")
    host = _host()

    anonymous = client.get("/api/v1/events/vetted-night/event.ics")
    as_host = client.get("/api/v1/events/vetted-night/event.ics", headers=auth_header(host))

    assert anonymous.status_code == 200
    assert anonymous.headers["content-type"].startswith("text/calendar")
    assert 'filename="vetted-night.ics"' in anonymous.headers["content-disposition"]
    assert "LOCATION:Springfield" in anonymous.text
    assert "LOCATION:12 Hidden Lane" in as_host.text


def test_capacity_broadcast_reaches_websocket_subscribers(client):
    make_event(title="Open Night")
    guest = make_member("guest")

    with client.websocket_connect("/ws/events") as ws:
        ws.send_json({"type": "joinEvent", "eventSlug": "open-night"})
        # A status round trip confirms the join was processed.
        ws.send_json({"type": "eventStatus", "eventSlug": "open-night", "status": "open"})
        assert ws.receive_json()["type"] == "eventStatus"

        assert _rsvp(client, "open-night", guest).status_code == 201
        snapshot = ws.receive_json()

    assert snapshot["type"] == "capacitySnapshot"
    assert snapshot["eventSlug"] == "open-night"
    assert snapshot["counts"]["women"] == 1


def test_unknown_event_returns_json_404(client):
    response = client.get("/api/v1/events/nope")
    assert response.status_code == 404
    assert response.json()["ok"] is False
    assert api.app.title == "Soirée"
