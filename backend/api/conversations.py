"""Conversation CRUD + the streaming message endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from api._helpers import get_owned_conversation, get_providers, serialize_conversation_detail
from auth import get_current_user
from database import get_db
from models.user import User
from schemas.conversation import (
    ConversationDetailOut,
    ConversationIn,
    ConversationOut,
    ConversationUpdate,
    SendMessageIn,
)
from services.chat import SSE_HEADERS, ChatService
from services.llm import ProviderRegistry
from services.store import ConversationStore

logger = logging.getLogger(__name__)

router = APIRouter()

_OWNERSHIP_RESPONSES = {
    403: {"description": "Conversation belongs to another user"},
    404: {"description": "Conversation not found"},
}


@router.get("", response_model=list[ConversationOut])
def list_conversations(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return ConversationStore(db).list_conversations(user.id)


@router.post("", response_model=ConversationOut, status_code=201)
def create_conversation(
    payload: ConversationIn | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    payload = payload or ConversationIn()
    conversation = ConversationStore(db).create_conversation(user.id, payload.title)
    logger.info("User %s created conversation %s", user.id, conversation.id)
    return conversation


@router.get("/{conversation_id}", response_model=ConversationDetailOut, responses=_OWNERSHIP_RESPONSES)
def get_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    store = ConversationStore(db)
    conversation = get_owned_conversation(conversation_id, user, store)
    return serialize_conversation_detail(conversation, store)


@router.patch("/{conversation_id}", response_model=ConversationOut, responses=_OWNERSHIP_RESPONSES)
def rename_conversation(
    conversation_id: int,
    payload: ConversationUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    store = ConversationStore(db)
    get_owned_conversation(conversation_id, user, store)
    return store.update_title(conversation_id, payload.title)


@router.delete("/{conversation_id}", status_code=204, responses=_OWNERSHIP_RESPONSES)
def delete_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    store = ConversationStore(db)
    get_owned_conversation(conversation_id, user, store)
    store.delete_conversation(conversation_id)
    logger.info("User %s deleted conversation %s", user.id, conversation_id)


@router.post("/{conversation_id}/messages", responses=_OWNERSHIP_RESPONSES)
def send_message(
    conversation_id: int,
    payload: SendMessageIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    providers: ProviderRegistry = Depends(get_providers),
):
    """Store the user turn, then stream the reply as Server-Sent Events.

    Everything that can fail with a status code happens before the first
    byte is sent. Once streaming starts, failures arrive as ``{"error"}``
    events.
    """
    store = ConversationStore(db)
    conversation = get_owned_conversation(conversation_id, user, store)

    service = ChatService(store, providers)
    turn = service.prepare_turn(conversation, payload.content, payload.image_data_url)
    return StreamingResponse(
        service.relay(turn, request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
