from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional

DEFAULT_ROLE = "Employee"

@dataclass
class User:
    id: str
    name: str
    email: str
    password: str  # bcrypt hash
    role: str = DEFAULT_ROLE
    created_at: Optional[datetime] = None

    def public(self) -> dict:
        """Return the user without the credential hash."""
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}

@dataclass
class Speaker:
    name: str
    designation: Optional[str] = None

@dataclass
class Event:
    id: str
    title: str
    date: datetime
    venue: str
    capacity: int
    created_by: str  # user_id of creator
    speakers: list[Speaker] = field(default_factory=list)
    description: Optional[str] = None
    agenda: Optional[str] = None
    attendees: list[str] = field(default_factory=list)
    guests: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_full(self) -> bool:
        return len(self.attendees) >= self.capacity

    def display_details(self) -> dict:
        """Return a JSON-ready representation with unexpanded references."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat(),
            "venue": self.venue,
            "agenda": self.agenda,
            "speakers": [asdict(s) for s in self.speakers],
            "capacity": self.capacity,
            "created_by": self.created_by,
            "attendees": list(self.attendees),
            "guests": list(self.guests),
        }

@dataclass
class Guest:
    id: str
    name: str
    email: str
    event_id: str
    invited_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def display_details(self) -> dict:
        return {
            "id": self.id, "name": self.name, "email": self.email,
            "event_id": self.event_id, "invited_by": self.invited_by,
        }

@dataclass
class Feedback:
    id: str
    event_id: str
    user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def display_details(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
