"""Message exchange: one chat turn from user message to persisted reply.

A turn runs in two phases:

1. ``ChatService.prepare_turn`` (synchronous, before any response bytes go
   out): store the user message, read the history back, assemble the model
   input and pick the provider.
2. ``ChatService.relay`` (async generator feeding the SSE response): stream
   fragments from the provider to the client, then store the assistant
   message. A provider failure or client disconnect ends the stream without
   storing anything.

The two writes are not wrapped in a transaction. A crash in between leaves a
user message with no reply.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from sqlalchemy.exc import SQLAlchemyError

from models.conversation import Conversation, Message
from services.llm import ROUTE_TEXT, ROUTE_VISION, CompletionProvider, ProviderRegistry, UpstreamFailure
from services.store import ConversationStore

logger = logging.getLogger(__name__)

IMAGE_MARKER = "[Screenshot attached]"
DATA_URL_MARKER = "data:image"

TITLE_MAX_CHARS = 50
IMAGE_ONLY_TITLE = "Screenshot analysis"

TEXT_SYSTEM_PROMPT = (
    "You are Ruby AI, a helpful, friendly, and intelligent assistant. You provide clear, "
    "accurate, and thoughtful responses. You have a warm personality and enjoy helping users "
    "with their questions and tasks. Be concise but thorough in your answers. When users share "
    "screenshots or images, analyze them carefully and provide helpful insights."
)

VISION_SYSTEM_PROMPT = (
    "You are Ruby AI, a helpful, friendly, and intelligent assistant with vision capabilities. "
    "You can see and analyze images/screenshots. Provide clear, accurate, and thoughtful "
    "responses about what you see. Be concise but thorough."
)

UPSTREAM_ERROR_MESSAGE = "Failed to get AI response. Please check your API configuration."
STORE_ERROR_MESSAGE = "Failed to save AI response."

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def derive_title(content: str | None) -> str:
    """Title for a conversation auto-created from its first message.

    No endpoint calls this: clients that open a conversation on the first
    send derive its title here before POSTing it.
    """
    text = (content or "").strip() or IMAGE_ONLY_TITLE
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


def contains_image(content: str | None) -> bool:
    if not content:
        return False
    return IMAGE_MARKER in content or DATA_URL_MARKER in content


def select_route(history: Sequence[str], image_data_url: str | None = None) -> str:
    """Pick the provider route for a turn.

    Vision wins if the current turn carries an image or any stored message
    mentions one. The whole history is scanned on every call, so once an
    image appears in a conversation every later turn stays on vision.
    """
    if image_data_url:
        return ROUTE_VISION
    if any(contains_image(content) for content in history):
        return ROUTE_VISION
    return ROUTE_TEXT


def _flatten(content) -> str:
    if isinstance(content, str):
        return content
    return "".join(part.get("text", "") for part in content if part.get("type") == "text")


def build_context(
    prior: Sequence[Message],
    content: str,
    image_data_url: str | None,
    route: str,
) -> list[BaseMessage]:
    """System instruction, prior messages in order, then the current turn."""
    system_prompt = VISION_SYSTEM_PROMPT if route == ROUTE_VISION else TEXT_SYSTEM_PROMPT
    messages: list[BaseMessage] = [SystemMessage(content=system_prompt)]

    for m in prior:
        if m.role == "assistant":
            messages.append(AIMessage(content=m.content))
        else:
            messages.append(HumanMessage(content=m.content))

    if image_data_url:
        current = [
            {"type": "text", "text": content},
            {"type": "image_url", "image_url": {"url": image_data_url}},
        ]
    else:
        current = content

    # The text provider cannot take image parts
    if route == ROUTE_TEXT:
        current = _flatten(current)
    messages.append(HumanMessage(content=current))
    return messages


@dataclass
class PreparedTurn:
    conversation_id: int
    route: str
    provider: CompletionProvider
    messages: list[BaseMessage]


class ChatService:
    def __init__(self, store: ConversationStore, providers: ProviderRegistry):
        self.store = store
        self.providers = providers

    def prepare_turn(
        self,
        conversation: Conversation,
        content: str,
        image_data_url: str | None = None,
    ) -> PreparedTurn:
        """Store the user message and assemble the model input.

        Ownership must already have been checked by the caller.

        Only the text in *content* is stored, never the data URL. A
        conversation stays on vision in later turns only if the client wrote
        the screenshot marker into *content*; an image sent without it is
        routed to vision for this turn alone.
        """
        self.store.append_message(conversation.id, "user", content)

        history = self.store.list_messages(conversation.id)
        route = select_route([m.content for m in history], image_data_url)
        provider = self.providers.for_route(route)
        messages = build_context(history[:-1], content, image_data_url, route)

        logger.info(
            "Conversation %s: routing turn to %s provider (%s), %d prior messages, image=%s",
            conversation.id, route, provider.model, len(history) - 1, bool(image_data_url),
        )
        return PreparedTurn(
            conversation_id=conversation.id,
            route=route,
            provider=provider,
            messages=messages,
        )

    async def relay(
        self,
        turn: PreparedTurn,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[str]:
        """Yield SSE frames for *turn* and store the reply on clean completion."""
        fragments: list[str] = []
        stream = turn.provider.stream(turn.messages)
        try:
            async for fragment in stream:
                if is_disconnected is not None and await is_disconnected():
                    logger.info(
                        "Client left conversation %s mid-stream, dropping %d fragments",
                        turn.conversation_id, len(fragments),
                    )
                    return
                fragments.append(fragment)
                yield sse_event({"content": fragment})
        except UpstreamFailure:
            logger.exception("Upstream failure in conversation %s", turn.conversation_id)
            yield sse_event({"error": UPSTREAM_ERROR_MESSAGE})
            return
        finally:
            await stream.aclose()

        reply = "".join(fragments)
        try:
            await asyncio.to_thread(self.store.append_message, turn.conversation_id, "assistant", reply)
        except SQLAlchemyError:
            logger.exception("Failed to store reply for conversation %s", turn.conversation_id)
            yield sse_event({"error": STORE_ERROR_MESSAGE})
            return

        yield sse_event({"done": True})
