"""
deps.py — Caller identity helpers shared by the AI routes.

A request is either:
  - signed in: carries a valid Bearer JWT
  - guest:     no valid token, but the page was opened with ?mode=guest
  - neither:   rejected with 401 by the routes

Guests are counted per client address (see core/guest_limit.py).
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from travelai.core.security import read_session_user

# Reusable bearer extractor (does NOT auto-raise on missing token)
_bearer = HTTPBearer(auto_error=False)
CredDep = Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)]


def _optional_user_id(credentials: CredDep) -> Optional[str]:
    """Extract user ID from token if present; returns None for anonymous."""
    if not credentials:
        return None
    return read_session_user(credentials.credentials)


def _required_user_id(user_id: Annotated[Optional[str], Depends(_optional_user_id)]) -> str:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


OptionalUserId = Annotated[Optional[str], Depends(_optional_user_id)]
UserId = Annotated[str, Depends(_required_user_id)]


def is_guest_mode(request: Request) -> bool:
    """Guest mode is requested via ?mode=guest on the call or on the referring page."""
    if request.query_params.get("mode") == "guest":
        return True
    return "mode=guest" in request.headers.get("referer", "")


def client_identifier(request: Request) -> str:
    """
    Key for the guest quota: the first X-Forwarded-For hop, else the peer address.

    The header is client-controlled and not verified.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"
