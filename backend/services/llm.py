"""Upstream completion providers (OpenAI-compatible) and their registry."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)

ROUTE_TEXT = "text"
ROUTE_VISION = "vision"


class UpstreamFailure(Exception):
    """The completion provider errored, timed out, or could not be built."""


def create_chat_model(
    base_url: str,
    api_key: str,
    model_name: str,
    *,
    max_tokens: int | None = None,
    timeout: int | None = None,
    max_retries: int | None = None,
) -> BaseChatModel:
    from langchain_openai import ChatOpenAI

    kwargs: dict = {"model": model_name, "streaming": True}
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if timeout is not None:
        kwargs["timeout"] = timeout
    if max_retries is not None:
        kwargs["max_retries"] = max_retries
    return ChatOpenAI(api_key=api_key, base_url=base_url, **kwargs)


def chunk_text(chunk) -> str:
    """Extract the text of a streamed message chunk (str or content blocks)."""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class CompletionProvider:
    """One OpenAI-compatible endpoint + model, streamed as text fragments.

    The chat model is built on first use so a missing API key surfaces as an
    :class:`UpstreamFailure` on the turn that needs it, not at startup.
    """

    def __init__(self, name: str, model: str, factory: Callable[[], BaseChatModel]):
        self.name = name
        self.model = model
        self._factory = factory
        self._chat_model: BaseChatModel | None = None

    def _get_chat_model(self) -> BaseChatModel:
        if self._chat_model is None:
            self._chat_model = self._factory()
        return self._chat_model

    async def stream(self, messages: list[BaseMessage]) -> AsyncIterator[str]:
        try:
            chat_model = self._get_chat_model()
            async for chunk in chat_model.astream(messages):
                text = chunk_text(chunk)
                if text:
                    yield text
        except Exception as exc:
            raise UpstreamFailure(f"{self.name} provider ({self.model}) failed: {exc}") from exc

    def __repr__(self):
        return f"<CompletionProvider {self.name} model={self.model}>"


class ProviderRegistry:
    """The text and vision providers, built once per process."""

    def __init__(self, text: CompletionProvider, vision: CompletionProvider):
        self.text = text
        self.vision = vision

    def for_route(self, route: str) -> CompletionProvider:
        if route == ROUTE_VISION:
            return self.vision
        if route == ROUTE_TEXT:
            return self.text
        raise ValueError(f"Unknown route: {route}")

    @classmethod
    def from_settings(cls, settings) -> ProviderRegistry:
        def _factory(base_url: str, api_key: str, model: str) -> Callable[[], BaseChatModel]:
            return lambda: create_chat_model(
                base_url,
                api_key,
                model,
                max_tokens=settings.LLM_MAX_TOKENS,
                timeout=settings.LLM_TIMEOUT_SECONDS,
                max_retries=settings.LLM_MAX_RETRIES,
            )

        text = CompletionProvider(
            "text",
            settings.TEXT_MODEL,
            _factory(settings.TEXT_PROVIDER_BASE_URL, settings.TEXT_PROVIDER_API_KEY, settings.TEXT_MODEL),
        )
        vision = CompletionProvider(
            "vision",
            settings.VISION_MODEL,
            _factory(settings.VISION_PROVIDER_BASE_URL, settings.VISION_PROVIDER_API_KEY, settings.VISION_MODEL),
        )
        logger.info("Providers: text=%s vision=%s", text.model, vision.model)
        return cls(text=text, vision=vision)
