from __future__ import annotations

import pytest

from soiree import database
from soiree.models import RSVP, Event, Member
from soiree.seed import seed_fake_data


def test_seed_fake_data_populates_members_events_and_rsvps():
    stats = seed_fake_data(member_count=6, event_count=3, max_rsvps_per_event=4)

    assert stats["members"] == 6
    assert stats["events"] == 3
    with database.get_session() as session:
        assert session.query(Member).count() == 6
        assert session.query(Event).count() == 3
        assert session.query(RSVP).count() == stats["rsvps"]
        for event in session.query(Event).all():
            held = [r for r in event.rsvps if r.status != "Declined"]
            for category, limit in event.cap.items():
                assert sum(1 for r in held if r.category == category) <= limit


def test_seed_fake_data_validates_arguments():
    with pytest.raises(ValueError):
        seed_fake_data(member_count=0)
    with pytest.raises(ValueError):
        seed_fake_data(event_count=-1)
