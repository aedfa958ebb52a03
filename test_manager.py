import pytest
from datetime import datetime, timedelta, UTC
from database import Database
from exceptions import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    NotFoundError,
    TimingError,
    ValidationError,
)
from manager import EventManager, FeedbackManager
from models import User

EVENT_DATE = datetime(2025, 5, 1, 10, 0, tzinfo=UTC)
SPEAKERS = [{"name": "Jane Roe", "designation": "CTO"}]

@pytest.fixture
def db():
    database = Database(":memory:")
    for uid, name in [("owner", "Olivia Owner"), ("u1", "Alice"), ("u2", "Bob"), ("u3", "Carol")]:
        database.add_user(User(uid, name, f"{name.split()[0].lower()}@example.com", "hash", "Employee",
                               datetime.now(UTC)))
    yield database
    database.close()

@pytest.fixture
def events(db):
    return EventManager(db)

@pytest.fixture
def event(events):
    return events.create_event("owner", "Launch", EVENT_DATE.isoformat(), "Hall A", 2, SPEAKERS,
                               description="Product launch", agenda="Keynote")

def feedback_at(db, when):
    return FeedbackManager(db, clock=lambda: when)

def test_create_event_sets_creator(events, event):
    stored = events.load_event(event.id)
    assert stored.created_by == "owner"
    assert stored.date == EVENT_DATE
    assert [s.name for s in stored.speakers] == ["Jane Roe"]

@pytest.mark.parametrize("overrides", [
    {"title": ""},
    {"date": None},
    {"venue": ""},
    {"capacity": None},
    {"capacity": 0},
    {"capacity": -3},
    {"speakers": []},
    {"speakers": [{"designation": "No name"}]},
    {"date": "not a date"},
])
def test_create_event_validation(events, overrides):
    args = {"title": "T", "date": "2025-01-01 10:00", "venue": "V", "capacity": 1, "speakers": SPEAKERS}
    args.update(overrides)
    with pytest.raises(ValidationError):
        events.create_event("owner", **args)

def test_edit_only_venue(events, event):
    events.edit_event("owner", event.id, venue="Hall B")
    stored = events.load_event(event.id)
    assert stored.venue == "Hall B"
    assert stored.title == "Launch"
    assert stored.date == EVENT_DATE
    assert [s.name for s in stored.speakers] == ["Jane Roe"]
    assert stored.description == "Product launch"

def test_edit_falsy_fields_are_ignored(events, event):
    events.edit_event("owner", event.id, title="", capacity=0, speakers=[])
    stored = events.load_event(event.id)
    assert (stored.title, stored.capacity, len(stored.speakers)) == ("Launch", 2, 1)

def test_edit_by_non_creator_leaves_event_unchanged(events, event):
    with pytest.raises(AuthorizationError):
        events.edit_event("u1", event.id, title="Mine now", venue="Elsewhere")
    stored = events.load_event(event.id)
    assert (stored.title, stored.venue) == ("Launch", "Hall A")

def test_edit_unknown_event(events):
    with pytest.raises(NotFoundError):
        events.edit_event("owner", "missing", title="x")

def test_edit_capacity_below_attendees(events, event):
    events.self_register("u1", event.id)
    events.self_register("u2", event.id)
    with pytest.raises(CapacityError):
        events.edit_event("owner", event.id, capacity=1)
    events.edit_event("owner", event.id, capacity=5)
    assert events.load_event(event.id).capacity == 5

def test_capacity_never_exceeded(events, event):
    events.self_register("u1", event.id)
    events.add_attendee_by_email("owner", event.id, "bob@example.com")
    with pytest.raises(CapacityError):
        events.self_register("u3", event.id)
    with pytest.raises(CapacityError):
        events.add_attendee_by_email("owner", event.id, "carol@example.com")
    assert events.load_event(event.id).attendees == ["u1", "u2"]

def test_capacity_one_scenario(events):
    single = events.create_event("owner", "Small", "2025-01-01T10:00:00", "Room", 1, SPEAKERS)
    events.self_register("u1", single.id)
    with pytest.raises(CapacityError):
        events.self_register("u2", single.id)

def test_duplicate_attendee_rejected(events, event):
    events.add_attendee_by_email("owner", event.id, "alice@example.com")
    with pytest.raises(ConflictError):
        events.add_attendee_by_email("owner", event.id, "Alice@Example.com")
    with pytest.raises(ConflictError):
        events.self_register("u1", event.id)

def test_add_attendee_checks(events, event):
    with pytest.raises(AuthorizationError):
        events.add_attendee_by_email("u1", event.id, "bob@example.com")
    with pytest.raises(NotFoundError):
        events.add_attendee_by_email("owner", event.id, "ghost@example.com")
    with pytest.raises(NotFoundError):
        events.add_attendee_by_email("owner", "missing", "bob@example.com")

def test_remove_attendee(events, event):
    events.self_register("u1", event.id)
    with pytest.raises(AuthorizationError):
        events.remove_attendee("u2", event.id, "u1")
    events.remove_attendee("owner", event.id, "u1")
    events.remove_attendee("owner", event.id, "u1")
    assert events.load_event(event.id).attendees == []

def test_guests_allow_duplicate_emails(events, event):
    events.add_guest("u1", event.id, "Gus", "gus@example.com")
    events.add_guest("u1", event.id, "Gus", "gus@example.com")
    assert len(events.load_event(event.id).guests) == 2

def test_add_guest_validation(events, event):
    with pytest.raises(ValidationError):
        events.add_guest("owner", event.id, "", "gus@example.com")
    with pytest.raises(NotFoundError):
        events.add_guest("owner", "missing", "Gus", "gus@example.com")

def test_remove_guest_from_other_event(events, event):
    other = events.create_event("owner", "Other", "2025-02-01T10:00:00", "Room", 3, SPEAKERS)
    guest = events.add_guest("owner", event.id, "Gus", "gus@example.com")
    with pytest.raises(NotFoundError):
        events.remove_guest(other.id, guest.id)
    with pytest.raises(NotFoundError):
        events.remove_guest(event.id, "no-such-guest")
    assert events.load_event(event.id).guests == [guest.id]
    events.remove_guest(event.id, guest.id)
    assert events.load_event(event.id).guests == []

def test_search_users(db, events):
    for i in range(12):
        db.add_user(User(f"s{i}", f"Sam {i}", f"sam{i}@corp.test", "hash", "Employee", datetime.now(UTC)))
    results = events.search_users("CORP.test")
    assert len(results) == 10
    assert set(results[0]) == {"id", "name", "email"}
    assert [r["id"] for r in events.search_users("olivia")] == ["owner"]
    assert events.search_users("100%") == []
    with pytest.raises(ValidationError):
        events.search_users("  ")

def test_search_users_folds_non_ascii_case(db, events):
    db.add_user(User("ez", "Émile Zola", "emile@example.com", "hash", "Employee", datetime.now(UTC)))
    db.add_user(User("ks", "Karl Straße", "KARL@Example.com", "hash", "Employee", datetime.now(UTC)))
    assert [r["id"] for r in events.search_users("émile")] == ["ez"]
    assert [r["id"] for r in events.search_users("ÉMILE ZOLA")] == ["ez"]
    assert [r["id"] for r in events.search_users("STRASSE")] == ["ks"]
    assert [r["id"] for r in events.search_users("karl@example")] == ["ks"]

def test_expand_reads_guests_once_per_event(db, events, event, monkeypatch):
    events.add_guest("owner", event.id, "Gus", "gus@example.com")
    events.create_event("owner", "Other", "2025-02-01T10:00:00", "Room", 3, SPEAKERS)
    calls = []
    original = db.list_guests_for_event
    monkeypatch.setattr(db, "list_guests_for_event", lambda event_id: calls.append(event_id) or original(event_id))

    assert [g["name"] for g in events.get_event(event.id)["guests"]] == ["Gus"]
    assert calls == [event.id]

    calls.clear()
    listed = events.list_events()
    assert len(calls) == len(listed) == 2
    assert sorted(calls) == sorted(e["id"] for e in listed)

def test_feedback_before_event_date(db, events, event):
    events.self_register("u1", event.id)
    manager = feedback_at(db, EVENT_DATE - timedelta(hours=1))
    with pytest.raises(TimingError):
        manager.submit("u1", event.id, 5)
    # the window opens strictly after the event date
    with pytest.raises(TimingError):
        feedback_at(db, EVENT_DATE).submit("u1", event.id, 5)

def test_feedback_timing_checked_before_attendance(db, event):
    with pytest.raises(TimingError):
        feedback_at(db, EVENT_DATE - timedelta(days=1)).submit("u2", event.id, 3)

def test_feedback_from_non_attendee(db, event):
    with pytest.raises(AuthorizationError):
        feedback_at(db, EVENT_DATE + timedelta(days=1)).submit("u2", event.id, 3)

@pytest.mark.parametrize("rating", [0, 6, None, "5", 2.5, True])
def test_feedback_rating_bounds(db, event, rating):
    with pytest.raises(ValidationError):
        feedback_at(db, EVENT_DATE + timedelta(days=1)).submit("u1", event.id, rating)

def test_feedback_unknown_event(db):
    with pytest.raises(NotFoundError):
        feedback_at(db, EVENT_DATE).submit("u1", "missing", 3)

def test_resubmission_updates_in_place(db, events, event):
    events.self_register("u1", event.id)
    manager = feedback_at(db, EVENT_DATE + timedelta(days=1))
    first, created = manager.submit("u1", event.id, 4, "Nice")
    assert created
    second, created = manager.submit("u1", event.id, 1, "Changed my mind")
    assert not created
    assert second.id == first.id
    rows = db.list_feedback_for_event(event.id)
    assert len(rows) == 1
    mine = manager.get_mine("u1", event.id)
    assert (mine.rating, mine.comment) == (1, "Changed my mind")

def test_get_mine_missing(db, event):
    with pytest.raises(NotFoundError):
        FeedbackManager(db).get_mine("u1", event.id)

def test_aggregate_rating(db, events, event):
    manager = feedback_at(db, EVENT_DATE + timedelta(days=1))
    assert manager.get_all("owner", event.id)["average_rating"] == 0
    events.self_register("u1", event.id)
    events.self_register("u2", event.id)
    manager.submit("u1", event.id, 5)
    manager.submit("u2", event.id, 2, "Too long")
    summary = manager.get_all("owner", event.id)
    assert summary["total_feedback"] == 2
    assert summary["average_rating"] == pytest.approx(3.5)
    assert {f["user"]["name"] for f in summary["feedback"]} == {"Alice", "Bob"}

def test_aggregate_is_creator_only(db, event):
    with pytest.raises(AuthorizationError):
        FeedbackManager(db).get_all("u1", event.id)
    with pytest.raises(NotFoundError):
        FeedbackManager(db).get_all("owner", "missing")
