"""Session cookie authentication dependency."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from models.user import User
from services.sessions import SessionStore


def get_session_store(db: Session = Depends(get_db)) -> SessionStore:
    return SessionStore(db, settings.session_max_age_seconds)


def get_current_user(
    request: Request,
    sessions: SessionStore = Depends(get_session_store),
) -> User:
    """FastAPI dependency: resolve the session cookie to a User."""
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    user = sessions.resolve(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user
