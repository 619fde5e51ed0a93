"""Register / login / logout / me."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from auth import get_current_user, get_session_store
from config import settings
from database import get_db
from models.user import User
from schemas.auth import LoginRequest, MessageResponse, RegisterRequest, UserOut
from services.security import hash_password, verify_password
from services.sessions import SessionStore
from services.store import CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.session_max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
    )


@router.post(
    "/register",
    response_model=UserOut,
    status_code=201,
    responses={409: {"description": "Username already taken"}},
)
def register(
    payload: RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    credentials = CredentialStore(db)
    if credentials.get_user_by_username(payload.username):
        raise HTTPException(status_code=409, detail="Username already taken")

    try:
        user = credentials.create_user(payload.username, hash_password(payload.password))
    except IntegrityError:
        # lost a race with a concurrent registration of the same name
        db.rollback()
        raise HTTPException(status_code=409, detail="Username already taken")

    session = sessions.create(user)
    _set_session_cookie(response, session.token)
    logger.info("Registered user %s", user.id)
    return user


@router.post("/login", response_model=UserOut, responses={401: {"description": "Invalid credentials"}})
def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    sessions: SessionStore = Depends(get_session_store),
):
    user = CredentialStore(db).get_user_by_username(payload.username)
    stored_hash = user.password_hash if user else None
    if not verify_password(stored_hash, payload.password) or user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")

    session = sessions.create(user)
    _set_session_cookie(response, session.token)
    return user


@router.post("/logout", response_model=MessageResponse, responses={500: {"description": "Logout failed"}})
def logout(
    request: Request,
    response: Response,
    sessions: SessionStore = Depends(get_session_store),
):
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    try:
        sessions.revoke(token)
    except SQLAlchemyError:
        logger.exception("Failed to revoke session")
        raise HTTPException(status_code=500, detail="Logout failed")
    response.delete_cookie(settings.SESSION_COOKIE_NAME, httponly=True, samesite="lax")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserOut, responses={401: {"description": "Not authenticated"}})
def me(user: User = Depends(get_current_user)):
    return user
