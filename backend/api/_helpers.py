"""Shared helpers for API routers."""

from __future__ import annotations

from fastapi import HTTPException, Request

from models.conversation import Conversation
from models.user import User
from services.llm import ProviderRegistry
from services.store import ConversationStore


def get_providers(request: Request) -> ProviderRegistry:
    """FastAPI dependency: the process-wide provider registry built at startup."""
    providers = getattr(request.app.state, "providers", None)
    if providers is None:
        from config import settings

        providers = ProviderRegistry.from_settings(settings)
        request.app.state.providers = providers
    return providers


def get_owned_conversation(conversation_id: int, user: User, store: ConversationStore) -> Conversation:
    """Look up a conversation, 404 if missing, 403 if owned by someone else."""
    conversation = store.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if conversation.user_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return conversation


def serialize_conversation_detail(conversation: Conversation, store: ConversationStore) -> dict:
    """Serialize a Conversation to ConversationDetailOut shape (with messages)."""
    return {
        "id": conversation.id,
        "title": conversation.title,
        "user_id": conversation.user_id,
        "created_at": conversation.created_at,
        "updated_at": conversation.updated_at,
        "messages": store.list_messages(conversation.id),
    }
