import logging
from datetime import datetime
from typing import Callable, Optional

from database import Database, new_id
from exceptions import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    NotFoundError,
    TimingError,
    ValidationError,
)
from models import Event, Feedback, Guest, Speaker
from utils import check_event_permission, normalize_email, parse_date, utcnow

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10

def parse_speakers(speakers) -> list[Speaker]:
    """Build the speaker list, requiring at least one named speaker."""
    if not speakers:
        raise ValidationError("At least one speaker is required")
    parsed = []
    for s in speakers:
        if isinstance(s, Speaker):
            item = s
        else:
            item = Speaker(name=(s.get("name") or "").strip(), designation=s.get("designation"))
        if not item.name:
            raise ValidationError("Every speaker needs a name")
        parsed.append(item)
    return parsed

def validate_capacity(capacity) -> int:
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise ValidationError("Capacity must be a positive integer")
    return capacity

class EventManager:
    def __init__(self, db: Database):
        """Initialize EventManager with database."""
        self.db = db

    def _to_event(self, data: dict) -> Event:
        return Event(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            date=parse_date(data["date"]),
            venue=data["venue"],
            agenda=data["agenda"],
            speakers=[Speaker(**s) for s in data["speakers"]],
            capacity=data["capacity"],
            created_by=data["created_by"],
            attendees=data["attendees"],
            guests=data["guests"],
            created_at=parse_date(data["created_at"]),
            updated_at=parse_date(data["updated_at"]),
        )

    def load_event(self, event_id: str) -> Event:
        """Retrieve an event by ID or raise NotFoundError."""
        data = self.db.get_event(event_id)
        if not data:
            raise NotFoundError("Event not found")
        return self._to_event(data)

    def expand(self, event: Event, guest_records: list[dict]) -> dict:
        """Join creator, attendee and guest references into display records.

        guest_records are the event's guest rows as loaded alongside the event.
        """
        users = self.db.get_users([event.created_by, *event.attendees])
        details = event.display_details()
        details["created_by"] = users.get(event.created_by, {"id": event.created_by})
        details["attendees"] = [users[uid] for uid in event.attendees if uid in users]
        details["guests"] = [{"id": g["id"], "name": g["name"], "email": g["email"]} for g in guest_records]
        details["created_at"] = event.created_at.isoformat() if event.created_at else None
        details["updated_at"] = event.updated_at.isoformat() if event.updated_at else None
        return details

    def create_event(self, creator_id: str, title, date, venue, capacity, speakers,
                     description=None, agenda=None) -> Event:
        """Create a new event owned by creator_id."""
        if not title or not date or not venue or capacity is None:
            raise ValidationError("All required fields must be filled")
        now = utcnow()
        event = Event(
            id=new_id(),
            title=title,
            description=description,
            date=parse_date(date),
            venue=venue,
            agenda=agenda,
            speakers=parse_speakers(speakers),
            capacity=validate_capacity(capacity),
            created_by=creator_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add_event(event)
        logger.info(f"Event {event.id} created by {creator_id}")
        return event

    def get_event(self, event_id: str) -> dict:
        data = self.db.get_event(event_id)
        if not data:
            raise NotFoundError("Event not found")
        return self.expand(self._to_event(data), data["guest_records"])

    def list_events(self) -> list[dict]:
        """Retrieve all events, newest date first, with references expanded."""
        return [self.expand(self._to_event(e), e["guest_records"]) for e in self.db.list_events()]

    def edit_event(self, requester_id: str, event_id: str, title=None, description=None, date=None,
                   venue=None, agenda=None, speakers=None, capacity=None) -> Event:
        """Update only the supplied fields; falsy values leave the stored value unchanged."""
        event = self.load_event(event_id)
        check_event_permission(event, requester_id, "edit this event")
        updates = {
            "title": title or None,
            "description": description or None,
            "venue": venue or None,
            "agenda": agenda or None,
        }
        if date:
            updates["date"] = parse_date(date).isoformat()
        if speakers:
            updates["speakers"] = [{"name": s.name, "designation": s.designation}
                                   for s in parse_speakers(speakers)]
        if capacity:
            validate_capacity(capacity)
            if capacity < len(event.attendees):
                raise CapacityError("Capacity cannot be lower than the current number of attendees")
            updates["capacity"] = capacity
        if self.db.update_event(event_id, utcnow().isoformat(), **updates):
            logger.info(f"Event {event_id} updated by {requester_id}")
        return self.load_event(event_id)

    def _register(self, event: Event, user_id: str, conflict_message: str):
        # Read-check-write without a transaction: concurrent registrations can race on capacity.
        if user_id in event.attendees:
            raise ConflictError(conflict_message)
        if event.is_full():
            raise CapacityError("Event is full")
        self.db.add_attendee(event.id, user_id)
        event.attendees.append(user_id)

    def add_attendee_by_email(self, requester_id: str, event_id: str, email: str) -> dict:
        """Creator adds a registered user to the event by email."""
        event = self.load_event(event_id)
        check_event_permission(event, requester_id, "add attendees")
        user = self.db.get_user_by_email(normalize_email(email))
        if not user:
            raise NotFoundError("User not found")
        self._register(event, user["id"], "Attendee already added")
        logger.info(f"User {user['id']} added to event {event_id} by {requester_id}")
        return {"id": user["id"], "name": user["name"], "email": user["email"]}

    def remove_attendee(self, requester_id: str, event_id: str, user_id: str):
        """Creator removes an attendee. Removing a non-attendee is a no-op."""
        event = self.load_event(event_id)
        check_event_permission(event, requester_id, "remove attendees")
        if self.db.remove_attendee(event_id, user_id):
            logger.info(f"User {user_id} removed from event {event_id} by {requester_id}")

    def self_register(self, user_id: str, event_id: str):
        event = self.load_event(event_id)
        self._register(event, user_id, "You are already registered for this event")
        logger.info(f"User {user_id} registered for event {event_id}")

    def add_guest(self, requester_id: str, event_id: str, name, email) -> Guest:
        """Invite a non-account guest. Duplicate guest emails are allowed."""
        self.load_event(event_id)
        if not name or not email:
            raise ValidationError("Guest name and email are required")
        guest = Guest(
            id=new_id(),
            name=name,
            email=normalize_email(email),
            event_id=event_id,
            invited_by=requester_id,
            created_at=utcnow(),
        )
        self.db.add_guest(guest)
        logger.info(f"Guest {guest.id} added to event {event_id} by {requester_id}")
        return guest

    def remove_guest(self, event_id: str, guest_id: str):
        self.load_event(event_id)
        guest = self.db.get_guest(guest_id)
        if not guest or guest["event_id"] != event_id:
            raise NotFoundError("Guest not found")
        self.db.delete_guest(guest_id)
        logger.info(f"Guest {guest_id} removed from event {event_id}")

    def search_users(self, query: str) -> list[dict]:
        """Match users by name or email, at most SEARCH_LIMIT results."""
        query = (query or "").strip()
        if not query:
            raise ValidationError("Query parameter is required")
        return self.db.search_users(query, limit=SEARCH_LIMIT)

class FeedbackManager:
    def __init__(self, db: Database, clock: Optional[Callable[[], datetime]] = None):
        """Initialize FeedbackManager; clock returns the current aware datetime."""
        self.db = db
        self.events = EventManager(db)
        self.clock = clock or utcnow

    def _to_feedback(self, data: dict) -> Feedback:
        return Feedback(
            id=data["id"],
            event_id=data["event_id"],
            user_id=data["user_id"],
            rating=data["rating"],
            comment=data["comment"],
            created_at=parse_date(data["created_at"]),
            updated_at=parse_date(data["updated_at"]),
        )

    def submit(self, user_id: str, event_id: str, rating, comment=None) -> tuple[Feedback, bool]:
        """Create or update the user's feedback for a past event.

        Returns the stored feedback and whether it was newly created.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        event = self.events.load_event(event_id)
        now = self.clock()
        if event.date >= now:
            raise TimingError("Cannot submit feedback before event has ended")
        if user_id not in event.attendees:
            logger.warning(f"Rejected feedback from non-attendee {user_id} for event {event_id}")
            raise AuthorizationError("Only attendees can submit feedback")

        existing = self.db.get_feedback(event_id, user_id)
        if existing:
            self.db.update_feedback(existing["id"], rating, comment, now.isoformat())
            logger.info(f"Feedback {existing['id']} updated by {user_id} for event {event_id}")
            return self._to_feedback(self.db.get_feedback(event_id, user_id)), False

        feedback = Feedback(
            id=new_id(),
            event_id=event_id,
            user_id=user_id,
            rating=rating,
            comment=comment,
            created_at=now,
            updated_at=now,
        )
        self.db.add_feedback(feedback)
        logger.info(f"Feedback {feedback.id} submitted by {user_id} for event {event_id}")
        return feedback, True

    def get_mine(self, user_id: str, event_id: str) -> Feedback:
        data = self.db.get_feedback(event_id, user_id)
        if not data:
            raise NotFoundError("No feedback found")
        return self._to_feedback(data)

    def get_all(self, requester_id: str, event_id: str) -> dict:
        """Every feedback record for the event with the mean rating. Creator only."""
        event = self.events.load_event(event_id)
        check_event_permission(event, requester_id, "view feedback")
        rows = self.db.list_feedback_for_event(event_id)
        feedback = [{
            "id": r["id"],
            "rating": r["rating"],
            "comment": r["comment"],
            "user": {"id": r["user_id"], "name": r["user_name"]},
            "created_at": r["created_at"],
        } for r in rows]
        total = len(rows)
        average = sum(r["rating"] for r in rows) / total if total else 0
        return {"feedback": feedback, "average_rating": average, "total_feedback": total}
