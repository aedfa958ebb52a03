from fastapi import Depends
from fastapi.security import APIKeyHeader
from jose import JWTError, jwt
from passlib.hash import bcrypt
from database import Database, get_db
from exceptions import AuthenticationError
from models import User
from utils import parse_date
from dotenv import load_dotenv
import os
from datetime import datetime, timedelta, UTC

load_dotenv()

# JWT configuration
SECRET_KEY = os.getenv("SECRET_KEY", "default-secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
TOKEN_EXPIRE_DAYS = int(os.getenv("TOKEN_EXPIRE_DAYS", "7"))

# The token is sent as the raw Authorization header value.
token_header = APIKeyHeader(name="Authorization", auto_error=False)

def hash_password(password: str) -> str:
    return bcrypt.hash(password)

def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.verify(password, hashed)

def create_access_token(user_id: str) -> str:
    """Create a JWT carrying the user's id."""
    expire = datetime.now(UTC) + timedelta(days=TOKEN_EXPIRE_DAYS)
    to_encode = {"sub": user_id, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def decode_access_token(token: str) -> str:
    """Return the user id carried by a token."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Invalid or expired token")
    return user_id

def user_from_row(row: dict) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        password=row["password"],
        role=row["role"],
        created_at=parse_date(row["created_at"]),
    )

def get_current_user(
    token: str | None = Depends(token_header),
    db: Database = Depends(get_db),
) -> User:
    """Resolve the calling user from the request's token."""
    if not token:
        raise AuthenticationError("No token, authorization denied")
    if token.lower().startswith("bearer "):
        token = token[7:]
    user_id = decode_access_token(token.strip())
    row = db.get_user(user_id)
    if row is None:
        raise AuthenticationError("User not found")
    return user_from_row(row)
