import json
import logging
import os
import sqlite3
import uuid
from dataclasses import asdict

from dotenv import load_dotenv

load_dotenv()

DATABASE_PATH = os.getenv("DATABASE_PATH", "events.db")

logger = logging.getLogger(__name__)

def new_id() -> str:
    return uuid.uuid4().hex

class Database:
    def __init__(self, db_name=DATABASE_PATH):
        """
        Initialize SQLite database connection.
        Each record kind (users, events, guests, feedback) lives in its own table;
        event speakers are stored inline as JSON.
        """
        self.conn = sqlite3.connect(db_name, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        # SQLite's lower() only folds ASCII.
        self.conn.create_function("casefold", 1, lambda s: s.casefold() if s else s, deterministic=True)
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.create_tables()

    def create_tables(self):
        """Create database tables with appropriate indexes."""
        cursor = self.conn.cursor()
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL,
                role TEXT NOT NULL CHECK(role IN ('Admin', 'Manager', 'Employee')),
                created_at TEXT NOT NULL
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                date TEXT NOT NULL,
                venue TEXT NOT NULL,
                agenda TEXT,
                speakers TEXT NOT NULL DEFAULT '[]',
                capacity INTEGER NOT NULL,
                created_by TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (created_by) REFERENCES users(id)
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS event_attendees (
                event_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                FOREIGN KEY (event_id) REFERENCES events(id),
                FOREIGN KEY (user_id) REFERENCES users(id),
                PRIMARY KEY (event_id, user_id)
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS guests (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                event_id TEXT NOT NULL,
                invited_by TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (event_id) REFERENCES events(id)
            )
        ''')
        # One row per (event_id, user_id) is kept by the feedback service, not by a constraint.
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS feedback (
                id TEXT PRIMARY KEY,
                event_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                rating INTEGER NOT NULL CHECK(rating BETWEEN 1 AND 5),
                comment TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (event_id) REFERENCES events(id),
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_event_attendees_event_id ON event_attendees(event_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_guests_event_id ON guests(event_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_feedback_event_user ON feedback(event_id, user_id)')
        self.conn.commit()

    # Users

    def add_user(self, user):
        """Add a user to the database."""
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO users (id, name, email, password, role, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (user.id, user.name, user.email, user.password, user.role, user.created_at.isoformat()))
        self.conn.commit()

    def get_user(self, user_id):
        """Retrieve a user by ID."""
        row = self.conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
        return dict(row) if row else None

    def get_user_by_email(self, email):
        """Retrieve a user by email."""
        row = self.conn.execute('SELECT * FROM users WHERE email = ?', (email,)).fetchone()
        return dict(row) if row else None

    def get_users(self, user_ids):
        """Retrieve name and email for each id, keyed by id."""
        if not user_ids:
            return {}
        placeholders = ", ".join("?" for _ in user_ids)
        rows = self.conn.execute(
            f'SELECT id, name, email FROM users WHERE id IN ({placeholders})', list(user_ids)
        ).fetchall()
        return {r["id"]: dict(r) for r in rows}

    def search_users(self, query, limit=10):
        """Case-insensitive substring search over name or email."""
        needle = query.casefold()
        rows = self.conn.execute('''
            SELECT id, name, email FROM users
            WHERE instr(casefold(name), ?) > 0 OR instr(casefold(email), ?) > 0
            ORDER BY name
            LIMIT ?
        ''', (needle, needle, limit)).fetchall()
        return [dict(r) for r in rows]

    # Events

    def add_event(self, event):
        """Add an event to the database."""
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO events (id, title, description, date, venue, agenda, speakers, capacity,
                                created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (event.id, event.title, event.description, event.date.isoformat(), event.venue, event.agenda,
              json.dumps([asdict(s) for s in event.speakers]), event.capacity, event.created_by,
              event.created_at.isoformat(), event.updated_at.isoformat()))
        self.conn.commit()
        return cursor.rowcount > 0

    def _event_row(self, row):
        data = dict(row)
        data["speakers"] = json.loads(data["speakers"] or "[]")
        data["attendees"] = self.get_attendee_ids(data["id"])
        data["guest_records"] = self.list_guests_for_event(data["id"])
        data["guests"] = [g["id"] for g in data["guest_records"]]
        return data

    def get_event(self, event_id):
        """Retrieve an event by ID, with attendee and guest ids."""
        row = self.conn.execute('SELECT * FROM events WHERE id = ?', (event_id,)).fetchone()
        return self._event_row(row) if row else None

    def list_events(self):
        """Retrieve all events, newest date first."""
        rows = self.conn.execute('SELECT * FROM events ORDER BY date DESC').fetchall()
        return [self._event_row(r) for r in rows]

    def update_event(self, event_id, updated_at, **fields):
        """Update the supplied event columns."""
        updates = {k: v for k, v in fields.items() if v is not None}
        if not updates:
            return False
        if "speakers" in updates:
            updates["speakers"] = json.dumps(updates["speakers"])
        updates["updated_at"] = updated_at
        set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
        values = list(updates.values()) + [event_id]
        cursor = self.conn.cursor()
        cursor.execute(f'UPDATE events SET {set_clause} WHERE id = ?', values)
        self.conn.commit()
        return cursor.rowcount > 0

    # Attendees

    def get_attendee_ids(self, event_id):
        """Attendee user ids in the order they were added."""
        rows = self.conn.execute(
            'SELECT user_id FROM event_attendees WHERE event_id = ? ORDER BY rowid', (event_id,)
        ).fetchall()
        return [r["user_id"] for r in rows]

    def get_attendee_count(self, event_id):
        """Get the number of attendees for an event."""
        result = self.conn.execute(
            'SELECT COUNT(*) FROM event_attendees WHERE event_id = ?', (event_id,)
        ).fetchone()
        return result[0] if result else 0

    def add_attendee(self, event_id, user_id):
        """Register a user for an event."""
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT OR IGNORE INTO event_attendees (event_id, user_id)
            VALUES (?, ?)
        ''', (event_id, user_id))
        self.conn.commit()
        return cursor.rowcount > 0

    def remove_attendee(self, event_id, user_id):
        """Remove a user from an event's attendees."""
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM event_attendees WHERE event_id = ? AND user_id = ?', (event_id, user_id))
        self.conn.commit()
        return cursor.rowcount > 0

    # Guests

    def add_guest(self, guest):
        """Add a guest; the event_id column is the event's reference to it."""
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO guests (id, name, email, event_id, invited_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (guest.id, guest.name, guest.email, guest.event_id, guest.invited_by, guest.created_at.isoformat()))
        self.conn.commit()

    def get_guest(self, guest_id):
        row = self.conn.execute('SELECT * FROM guests WHERE id = ?', (guest_id,)).fetchone()
        return dict(row) if row else None

    def list_guests_for_event(self, event_id):
        """Retrieve all guests for an event."""
        rows = self.conn.execute(
            'SELECT * FROM guests WHERE event_id = ? ORDER BY rowid', (event_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def delete_guest(self, guest_id):
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM guests WHERE id = ?', (guest_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    # Feedback

    def get_feedback(self, event_id, user_id):
        """Retrieve the feedback a user left for an event."""
        row = self.conn.execute(
            'SELECT * FROM feedback WHERE event_id = ? AND user_id = ?', (event_id, user_id)
        ).fetchone()
        return dict(row) if row else None

    def add_feedback(self, feedback):
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO feedback (id, event_id, user_id, rating, comment, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (feedback.id, feedback.event_id, feedback.user_id, feedback.rating, feedback.comment,
              feedback.created_at.isoformat(), feedback.updated_at.isoformat()))
        self.conn.commit()

    def update_feedback(self, feedback_id, rating, comment, updated_at):
        cursor = self.conn.cursor()
        cursor.execute(
            'UPDATE feedback SET rating = ?, comment = ?, updated_at = ? WHERE id = ?',
            (rating, comment, updated_at, feedback_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_feedback_for_event(self, event_id):
        """Retrieve all feedback for an event with the submitter's name."""
        rows = self.conn.execute('''
            SELECT f.*, u.name AS user_name FROM feedback f
            LEFT JOIN users u ON u.id = f.user_id
            WHERE f.event_id = ?
            ORDER BY f.created_at
        ''', (event_id,)).fetchall()
        return [dict(r) for r in rows]

    def close(self):
        """Close the database connection."""
        self.conn.close()

_db = None

def get_db() -> Database:
    """Return the process-wide database, opening it on first use."""
    global _db
    if _db is None:
        logger.info(f"Opening database at {DATABASE_PATH}")
        _db = Database(DATABASE_PATH)
    return _db

def close_db():
    global _db
    if _db is not None:
        _db.close()
        _db = None
