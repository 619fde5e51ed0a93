"""End-to-end tests for POST /api/conversations/{id}/messages (SSE relay)."""

from __future__ import annotations

import json

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from models.conversation import Message
from services.chat import IMAGE_MARKER, UPSTREAM_ERROR_MESSAGE

IMAGE_URL = "data:image/png;base64,iVBORw0KGgo="


def _events(resp) -> list[dict]:
    """Parse an SSE body into its JSON payloads."""
    events = []
    for frame in resp.text.split("\n\n"):
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: "):]))
    return events


def _send(client, conversation_id, **body):
    return client.post(f"/api/conversations/{conversation_id}/messages", json=body)


class TestHappyPath:
    def test_hello_scenario(self, auth_client):
        conversation_id = auth_client.post("/api/conversations", json={"title": "Hello"}).json()["id"]

        resp = _send(auth_client, conversation_id, content="Hello")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"

        events = _events(resp)
        assert events[-1] == {"done": True}
        streamed = "".join(e["content"] for e in events[:-1])
        assert streamed == "Hello there!"

        detail = auth_client.get(f"/api/conversations/{conversation_id}").json()
        assert [(m["role"], m["content"]) for m in detail["messages"]] == [
            ("user", "Hello"),
            ("assistant", "Hello there!"),
        ]

    def test_frames_are_sse_formatted(self, auth_client, conversation):
        resp = _send(auth_client, conversation.id, content="Hi")
        assert resp.text.startswith('data: {"content": "Hello"}\n\n')
        assert resp.text.endswith('data: {"done": true}\n\n')

    def test_history_is_sent_as_context(self, auth_client, db, conversation, text_provider):
        db.add_all([
            Message(conversation_id=conversation.id, role="user", content="What is 2+2?"),
            Message(conversation_id=conversation.id, role="assistant", content="4"),
        ])
        db.commit()

        _send(auth_client, conversation.id, content="And 3+3?")

        messages = text_provider.calls[0]
        assert isinstance(messages[0], SystemMessage)
        assert [(type(m), m.content) for m in messages[1:]] == [
            (HumanMessage, "What is 2+2?"),
            (AIMessage, "4"),
            (HumanMessage, "And 3+3?"),
        ]

    def test_snake_case_body_accepted(self, auth_client, conversation, vision_provider):
        resp = _send(auth_client, conversation.id, content="look", image_data_url=IMAGE_URL)
        assert resp.status_code == 200
        assert len(vision_provider.calls) == 1


class TestRouting:
    def test_text_only_uses_text_provider(self, auth_client, conversation, text_provider, vision_provider):
        _send(auth_client, conversation.id, content="plain text")
        assert len(text_provider.calls) == 1
        assert vision_provider.calls == []

    def test_image_turn_uses_vision_with_image_part(self, auth_client, conversation, text_provider, vision_provider):
        resp = _send(auth_client, conversation.id, content=f"{IMAGE_MARKER}\nWhat is this?", imageDataUrl=IMAGE_URL)
        assert _events(resp)[-1] == {"done": True}
        assert text_provider.calls == []

        current = vision_provider.calls[0][-1]
        assert current.content == [
            {"type": "text", "text": f"{IMAGE_MARKER}\nWhat is this?"},
            {"type": "image_url", "image_url": {"url": IMAGE_URL}},
        ]

    def test_routing_is_sticky_after_an_image(self, auth_client, conversation, text_provider, vision_provider):
        _send(auth_client, conversation.id, content=f"{IMAGE_MARKER}\nWhat is this?", imageDataUrl=IMAGE_URL)
        _send(auth_client, conversation.id, content="thanks, and what about the colours?")

        assert text_provider.calls == []
        assert len(vision_provider.calls) == 2
        # the follow-up is plain text, the image itself is not resent
        assert vision_provider.calls[1][-1].content == "thanks, and what about the colours?"

    def test_image_without_marker_routes_only_that_turn(self, auth_client, conversation, text_provider, vision_provider):
        _send(auth_client, conversation.id, content="What is this?", imageDataUrl=IMAGE_URL)
        _send(auth_client, conversation.id, content="and now?")

        assert len(vision_provider.calls) == 1
        assert len(text_provider.calls) == 1

    def test_image_data_url_is_not_persisted(self, auth_client, db, conversation):
        _send(auth_client, conversation.id, content=f"{IMAGE_MARKER}\nWhat is this?", imageDataUrl=IMAGE_URL)
        stored = db.query(Message).filter(Message.conversation_id == conversation.id).all()
        assert all("base64" not in m.content for m in stored)


class TestValidation:
    @pytest.mark.parametrize("body", [
        {"content": ""},
        {"content": "x" * 10001},
        {},
        {"content": 12},
    ])
    def test_rejected_before_any_write(self, auth_client, db, conversation, text_provider, body):
        resp = auth_client.post(f"/api/conversations/{conversation.id}/messages", json=body)
        assert resp.status_code == 400
        assert db.query(Message).count() == 0
        assert text_provider.calls == []

    def test_max_length_accepted(self, auth_client, conversation):
        resp = _send(auth_client, conversation.id, content="x" * 10000)
        assert resp.status_code == 200

    def test_bad_id(self, auth_client):
        assert _send(auth_client, "abc", content="hi").status_code == 400

    def test_missing_conversation(self, auth_client, db, text_provider):
        resp = _send(auth_client, 9999, content="hi")
        assert resp.status_code == 404
        assert db.query(Message).count() == 0
        assert text_provider.calls == []

    def test_requires_session(self, client, conversation):
        assert _send(client, conversation.id, content="hi").status_code == 401


class TestUpstreamFailure:
    def test_mid_stream_failure_persists_only_user_turn(self, auth_client, db, conversation, text_provider):
        text_provider.fail_after = 2

        resp = _send(auth_client, conversation.id, content="Hello")
        assert resp.status_code == 200

        events = _events(resp)
        assert events[:2] == [{"content": "Hello"}, {"content": " there"}]
        assert events[-1] == {"error": UPSTREAM_ERROR_MESSAGE}
        assert {"done": True} not in events
        assert text_provider.closed is True

        detail = auth_client.get(f"/api/conversations/{conversation.id}").json()
        assert [(m["role"], m["content"]) for m in detail["messages"]] == [("user", "Hello")]

    def test_failure_before_first_chunk(self, auth_client, conversation, text_provider):
        text_provider.fail_after = 0
        events = _events(_send(auth_client, conversation.id, content="Hello"))
        assert events == [{"error": UPSTREAM_ERROR_MESSAGE}]

    def test_store_failure_after_stream(self, auth_client, db, conversation):
        from unittest.mock import patch
        from sqlalchemy.exc import OperationalError
        from services.store import ConversationStore

        original = ConversationStore.append_message

        def _fail_on_assistant(self, conversation_id, role, content):
            if role == "assistant":
                raise OperationalError("INSERT", {}, Exception("disk full"))
            return original(self, conversation_id, role, content)

        with patch.object(ConversationStore, "append_message", _fail_on_assistant):
            events = _events(_send(auth_client, conversation.id, content="Hello"))

        assert events[-1] == {"error": "Failed to save AI response."}
        assert db.query(Message).filter(Message.role == "assistant").count() == 0
