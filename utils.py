from datetime import datetime, UTC
from exceptions import AuthorizationError, ValidationError

def utcnow() -> datetime:
    return datetime.now(UTC)

def parse_date(value) -> datetime:
    """Parse a date string (or datetime) into a timezone-aware UTC datetime.

    Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Invalid date format")
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.strptime(text, "%Y-%m-%d %H:%M")
            except ValueError:
                raise ValidationError("Invalid date format")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)

def normalize_email(email) -> str:
    return (email or "").strip().lower()

def check_event_permission(event, user_id: str, action: str = "modify this event"):
    """Check that the acting user created the event."""
    if event.created_by != user_id:
        raise AuthorizationError(f"Access denied: only the event creator can {action}")
