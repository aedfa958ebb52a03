from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi import status
from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from models import User, DEFAULT_ROLE
from manager import EventManager, FeedbackManager
from database import Database, get_db, close_db, new_id
from auth import get_current_user, create_access_token, hash_password, verify_password
from exceptions import EventAppError, AuthenticationError, ConflictError, ServerError, ValidationError
from utils import normalize_email, utcnow
import logging
import sqlite3
from contextlib import asynccontextmanager

from dotenv import load_dotenv
import os

load_dotenv()  # Load variables from .env file
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# FastAPI App
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Closing database connection")
    close_db()

app = FastAPI(title="Event Management API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(EventAppError)
async def handle_event_app_error(request: Request, exc: EventAppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    """Render malformed request bodies and parameters as a 400 ValidationError."""
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())[1:])
        problems.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    message = "; ".join(problems) or "Invalid request"
    return await handle_event_app_error(request, ValidationError(message))

@app.exception_handler(sqlite3.Error)
async def handle_store_error(request: Request, exc: sqlite3.Error):
    logger.exception(f"Store failure on {request.method} {request.url.path}")
    return await handle_event_app_error(request, ServerError("Server Error"))

# Dependencies
def get_event_manager(db: Database = Depends(get_db)) -> EventManager:
    return EventManager(db)

def get_feedback_manager(db: Database = Depends(get_db)) -> FeedbackManager:
    return FeedbackManager(db)

# -------------------------------
# Schemas
# -------------------------------
class SpeakerIn(BaseModel):
    name: Optional[str] = None
    designation: Optional[str] = None

class EventCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    venue: Optional[str] = None
    agenda: Optional[str] = None
    speakers: Optional[List[SpeakerIn]] = None
    capacity: Optional[int] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Python Workshop",
            "description": "Hands-on introduction to FastAPI",
            "date": "2025-05-01T10:00:00Z",
            "venue": "Room 101",
            "agenda": "Intro, lab, Q&A",
            "speakers": [{"name": "John Doe", "designation": "Engineer"}],
            "capacity": 50
        }
    })

class EventUpdate(EventCreate):
    pass

class AttendeeAdd(BaseModel):
    email: Optional[str] = None

class GuestCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None

class FeedbackCreate(BaseModel):
    rating: Optional[int] = None
    comment: Optional[str] = None

class UserRegister(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

class UserLogin(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

def speakers_payload(speakers):
    return [s.model_dump() for s in speakers] if speakers else None

# -------------------------------
# Auth Routes
# -------------------------------
@app.get("/", response_model=dict, summary="Health check")
def root():
    return {"status": "up"}

@app.post("/auth/register", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Register a new user")
def register(user: UserRegister, db: Database = Depends(get_db)):
    """Register a new user. New accounts always get the default role."""
    if not user.name or not user.email or not user.password:
        raise ValidationError("All fields are required.")
    email = normalize_email(user.email)
    if db.get_user_by_email(email):
        raise ConflictError("User already exists.")
    user_obj = User(new_id(), user.name, email, hash_password(user.password), DEFAULT_ROLE, utcnow())
    db.add_user(user_obj)
    logger.info(f"User {email} registered with role {user_obj.role}")
    return {"token": create_access_token(user_obj.id), "user": user_obj.public()}

@app.post("/auth/login", response_model=dict, summary="Login and receive a token")
def login(user: UserLogin, db: Database = Depends(get_db)):
    """Authenticate user and return a token valid for seven days."""
    db_user = db.get_user_by_email(normalize_email(user.email))
    if not db_user or not user.password or not verify_password(user.password, db_user["password"]):
        raise AuthenticationError("Invalid email or password.")
    logger.info(f"User {db_user['email']} logged in")
    public = {k: db_user[k] for k in ("id", "name", "email", "role")}
    return {"token": create_access_token(db_user["id"]), "user": public}

@app.get("/auth/me", response_model=dict, summary="Current user")
def me(current_user: User = Depends(get_current_user)):
    return current_user.public()

# -------------------------------
# Event Routes
# -------------------------------
@app.get("/events", response_model=list, summary="List all events")
def list_events(manager: EventManager = Depends(get_event_manager)):
    """Retrieve all events, newest first, with creator, attendees and guests expanded."""
    return manager.list_events()

@app.post("/events/create", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Create a new event")
def create_event(event: EventCreate, current_user: User = Depends(get_current_user),
                 manager: EventManager = Depends(get_event_manager)):
    """Create a new event owned by the caller."""
    evt = manager.create_event(
        current_user.id,
        title=event.title,
        date=event.date,
        venue=event.venue,
        capacity=event.capacity,
        speakers=speakers_payload(event.speakers),
        description=event.description,
        agenda=event.agenda,
    )
    return {"message": "Event created successfully", "event": evt.display_details()}

@app.get("/events/search-users", response_model=list, summary="Search users by name or email")
def search_users(query: Optional[str] = None, current_user: User = Depends(get_current_user),
                 manager: EventManager = Depends(get_event_manager)):
    return manager.search_users(query)

@app.get("/events/{event_id}", response_model=dict, summary="Get one event")
def get_event(event_id: str, current_user: User = Depends(get_current_user),
              manager: EventManager = Depends(get_event_manager)):
    return manager.get_event(event_id)

@app.put("/events/edit/{event_id}", response_model=dict, summary="Update an event")
def edit_event(event_id: str, event: EventUpdate, current_user: User = Depends(get_current_user),
               manager: EventManager = Depends(get_event_manager)):
    """Update an existing event (creator only). Omitted fields keep their values."""
    evt = manager.edit_event(
        current_user.id,
        event_id,
        title=event.title,
        description=event.description,
        date=event.date,
        venue=event.venue,
        agenda=event.agenda,
        speakers=speakers_payload(event.speakers),
        capacity=event.capacity,
    )
    return {"message": "Event updated successfully", "event": evt.display_details()}

# -------------------------------
# Attendee & Guest Routes
# -------------------------------
@app.post("/events/{event_id}/add-attendee", response_model=dict, summary="Add an attendee by email")
def add_attendee(event_id: str, body: AttendeeAdd, current_user: User = Depends(get_current_user),
                 manager: EventManager = Depends(get_event_manager)):
    user = manager.add_attendee_by_email(current_user.id, event_id, body.email)
    return {"message": "Attendee added successfully", "user": user}

@app.delete("/events/{event_id}/remove-attendee/{user_id}", response_model=dict, summary="Remove an attendee")
def remove_attendee(event_id: str, user_id: str, current_user: User = Depends(get_current_user),
                    manager: EventManager = Depends(get_event_manager)):
    manager.remove_attendee(current_user.id, event_id, user_id)
    return {"message": "Attendee removed successfully"}

@app.post("/events/register/{event_id}", response_model=dict, summary="Register yourself for an event")
def register_for_event(event_id: str, current_user: User = Depends(get_current_user),
                       manager: EventManager = Depends(get_event_manager)):
    manager.self_register(current_user.id, event_id)
    return {"message": "Successfully registered for event"}

@app.post("/events/{event_id}/add-guest", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Add a guest")
def add_guest(event_id: str, body: GuestCreate, current_user: User = Depends(get_current_user),
              manager: EventManager = Depends(get_event_manager)):
    guest = manager.add_guest(current_user.id, event_id, body.name, body.email)
    return {"message": "Guest added", "guest": guest.display_details()}

@app.delete("/events/{event_id}/remove-guest/{guest_id}", response_model=dict, summary="Remove a guest")
def remove_guest(event_id: str, guest_id: str, current_user: User = Depends(get_current_user),
                 manager: EventManager = Depends(get_event_manager)):
    manager.remove_guest(event_id, guest_id)
    return {"message": "Guest removed successfully"}

# -------------------------------
# Feedback Routes
# -------------------------------
@app.post("/events/{event_id}/feedback", response_model=dict, summary="Submit or update feedback")
def submit_feedback(event_id: str, body: FeedbackCreate, current_user: User = Depends(get_current_user),
                    manager: FeedbackManager = Depends(get_feedback_manager)):
    """Attendees may rate an event once it has taken place. A second submission updates the first."""
    feedback, created = manager.submit(current_user.id, event_id, body.rating, body.comment)
    if created:
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content={"message": "Feedback submitted successfully", "feedback": feedback.display_details()},
        )
    return {"message": "Feedback updated successfully", "feedback": feedback.display_details()}

@app.get("/events/{event_id}/feedback", response_model=dict, summary="All feedback for an event")
def get_event_feedback(event_id: str, current_user: User = Depends(get_current_user),
                       manager: FeedbackManager = Depends(get_feedback_manager)):
    return manager.get_all(current_user.id, event_id)

@app.get("/events/{event_id}/my-feedback", response_model=dict, summary="Your feedback for an event")
def get_my_feedback(event_id: str, current_user: User = Depends(get_current_user),
                    manager: FeedbackManager = Depends(get_feedback_manager)):
    return manager.get_mine(current_user.id, event_id).display_details()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
