"""
security.py — Session token handling for the AI routes.

Sign-in lives outside this service and hands the client an HS256 JWT whose
*sub* claim is the user ID. Here the token is only read: a valid one marks
the caller as signed in (no guest quota), anything else leaves them a guest.

mint_session_token() exists for local tooling and tests that need a token
the API will accept. Nothing in the request path calls it.

Secret and algorithm come from travelai.core.config.settings (JWT_SECRET,
JWT_ALGORITHM), so both sides of the sign-in boundary share one config.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from travelai.core.config import settings


def read_session_user(token: str) -> Optional[str]:
    """User ID from a session token, or None if it is expired, forged or malformed."""
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    user_id = claims.get("sub")
    return user_id if isinstance(user_id, str) and user_id else None


def mint_session_token(user_id: str, ttl: Optional[timedelta] = None) -> str:
    """Sign a session token for *user_id* (default TTL: settings.jwt_expiry_hours)."""
    expires = datetime.now(tz=timezone.utc) + (ttl or timedelta(hours=settings.jwt_expiry_hours))
    return jwt.encode(
        {"sub": user_id, "exp": expires},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
