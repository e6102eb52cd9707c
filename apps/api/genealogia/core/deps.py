"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from genealogia.core.container import AppContainer
from genealogia.core.security import decode_session_token
from genealogia.db.session import SessionLocal


COOKIE_NAME = "genealogia_session"
BEARER_PREFIX = "bearer "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def _session_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip() or None
    return request.cookies.get(COOKIE_NAME)


def get_current_user_id(request: Request, db: Session = Depends(get_db)) -> int:
    """
    Authenticated user id from the bearer token or session cookie.

    Raises:
        HTTPException 401: Authentication failed
    """
    from genealogia.db.models import User

    token = _session_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_session_token(token)
        user_id = int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.actiu:
        raise HTTPException(status_code=401, detail="Account disabled")
    return user.id


def require_admin(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    container: AppContainer = Depends(get_container),
) -> int:
    """Only holders of the admin policy (or legacy admin flag) pass."""
    from genealogia.services import authorization_service

    if not authorization_service.is_admin(db, container.permissions, user_id):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id
