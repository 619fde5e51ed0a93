"""Conversation and chat-turn schemas.

Wire format is camelCase; inputs also accept snake_case field names.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MAX_MESSAGE_LENGTH = 10000
MAX_TITLE_LENGTH = 200


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ConversationIn(_CamelModel):
    title: str = Field("New Chat", min_length=1, max_length=MAX_TITLE_LENGTH)


class ConversationUpdate(_CamelModel):
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)


class ConversationOut(_CamelModel):
    id: int
    title: str
    user_id: int
    created_at: datetime
    updated_at: datetime


class MessageOut(_CamelModel):
    id: int
    conversation_id: int
    role: str
    content: str
    created_at: datetime


class ConversationDetailOut(ConversationOut):
    messages: list[MessageOut] = []


class SendMessageIn(_CamelModel):
    content: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    image_data_url: str | None = None
