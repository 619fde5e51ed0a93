"""Relational store for users, conversations and messages."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.conversation import DEFAULT_TITLE, Conversation, Message
from models.user import User, utcnow

logger = logging.getLogger(__name__)


class CredentialStore:
    """User lookups and creation."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def get_user_by_username(self, username: str) -> User | None:
        return self.db.query(User).filter(User.username == username).first()

    def create_user(self, username: str, password_hash: str) -> User:
        user = User(username=username, password_hash=password_hash)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user


class ConversationStore:
    """Conversations scoped to an owner, messages scoped to a conversation."""

    def __init__(self, db: Session):
        self.db = db

    # ========== CONVERSATIONS ==========

    def create_conversation(self, user_id: int, title: str = DEFAULT_TITLE) -> Conversation:
        conversation = Conversation(title=title, user_id=user_id)
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        return self.db.get(Conversation, conversation_id)

    def list_conversations(self, user_id: int) -> list[Conversation]:
        """Newest first."""
        return (
            self.db.query(Conversation)
            .filter(Conversation.user_id == user_id)
            .order_by(Conversation.created_at.desc(), Conversation.id.desc())
            .all()
        )

    def update_title(self, conversation_id: int, title: str) -> Conversation | None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return None
        conversation.title = title
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def delete_conversation(self, conversation_id: int) -> None:
        """Delete messages first, then the conversation, in one commit."""
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return
        try:
            self.db.query(Message).filter(Message.conversation_id == conversation_id).delete(
                synchronize_session="fetch"
            )
            self.db.delete(conversation)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to delete conversation %s", conversation_id)
            raise

    # ========== MESSAGES ==========

    def append_message(self, conversation_id: int, role: str, content: str) -> Message:
        message = Message(conversation_id=conversation_id, role=role, content=content)
        try:
            self.db.add(message)
            # bump activity timestamp
            conversation = self.get_conversation(conversation_id)
            if conversation is not None:
                conversation.updated_at = utcnow()
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(message)
        return message

    def list_messages(self, conversation_id: int) -> list[Message]:
        """Oldest first; id breaks ties between equal timestamps."""
        return (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )

    def count_messages(self, conversation_id: int) -> int:
        return self.db.query(Message).filter(Message.conversation_id == conversation_id).count()
