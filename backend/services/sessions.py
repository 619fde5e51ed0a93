"""Server-side session store.

The cookie carries only an opaque random token. Every request looks the token
up in ``user_sessions``; a session is valid until its absolute expiry, after
which the row is deleted on first sight.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from models.user import User, UserSession, utcnow

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, db: Session, max_age_seconds: int):
        self.db = db
        self.max_age_seconds = max_age_seconds

    def create(self, user: User) -> UserSession:
        now = utcnow()
        session = UserSession(
            user_id=user.id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.max_age_seconds),
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        logger.info("Opened session for user %s", user.id)
        return session

    def resolve(self, token: str | None) -> User | None:
        """Return the user bound to *token*, or None if absent or expired."""
        if not token:
            return None
        session = self.db.query(UserSession).filter(UserSession.token == token).first()
        if session is None:
            return None
        if session.is_expired:
            self.db.delete(session)
            self.db.commit()
            return None
        return self.db.get(User, session.user_id)

    def revoke(self, token: str | None) -> None:
        if not token:
            return
        self.db.query(UserSession).filter(UserSession.token == token).delete(synchronize_session=False)
        self.db.commit()

    def purge_expired(self) -> int:
        deleted = (
            self.db.query(UserSession)
            .filter(UserSession.expires_at <= utcnow())
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted
