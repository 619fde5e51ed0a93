"""Root conftest: shared fixtures for all backend tests."""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure backend/ is on sys.path
_backend_dir = str(Path(__file__).resolve().parent)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
import models  # noqa: F401  register all models with Base

# In-memory SQLite; StaticPool keeps every connection on the same DB
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(TEST_ENGINE, "connect")
def _enable_foreign_keys(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSession = sessionmaker(bind=TEST_ENGINE, autoflush=False, expire_on_commit=False)


class FakeProvider:
    """Scripted stand-in for a CompletionProvider.

    Yields ``chunks`` in order; if ``fail_after`` is set, raises
    UpstreamFailure once that many chunks have been sent.
    """

    def __init__(self, name: str, chunks: list[str] | None = None, fail_after: int | None = None):
        self.name = name
        self.model = f"fake-{name}"
        self.chunks = chunks if chunks is not None else ["Hello", " there", "!"]
        self.fail_after = fail_after
        self.calls: list[list] = []
        self.closed = False

    async def stream(self, messages):
        from services.llm import UpstreamFailure

        self.calls.append(messages)
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_after is not None and i >= self.fail_after:
                    raise UpstreamFailure(f"{self.name} exploded")
                yield chunk
            if self.fail_after is not None and self.fail_after >= len(self.chunks):
                raise UpstreamFailure(f"{self.name} exploded")
        finally:
            self.closed = True


@pytest.fixture(autouse=True)
def _setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db():
    """Yield a test database session."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def text_provider():
    return FakeProvider("text")


@pytest.fixture
def vision_provider():
    return FakeProvider("vision", chunks=["I see", " a screenshot."])


@pytest.fixture
def providers(text_provider, vision_provider):
    from services.llm import ProviderRegistry

    return ProviderRegistry(text=text_provider, vision=vision_provider)


@pytest.fixture
def user(db):
    from models.user import User
    from services.security import hash_password

    u = User(username="alice", password_hash=hash_password("alicepass"))
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def other_user(db):
    from models.user import User
    from services.security import hash_password

    u = User(username="bob", password_hash=hash_password("bobpass1"))
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def conversation(db, user):
    from models.conversation import Conversation

    conv = Conversation(title="Test Chat", user_id=user.id)
    db.add(conv)
    db.commit()
    db.refresh(conv)
    return conv


@pytest.fixture
def app(db, providers):
    """The FastAPI app with DB and providers overridden for tests."""
    from main import app as _app
    from database import get_db
    from api._helpers import get_providers

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    _app.dependency_overrides[get_db] = _override_get_db
    _app.dependency_overrides[get_providers] = lambda: providers
    yield _app
    _app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


def _login(client: TestClient, username: str, password: str) -> TestClient:
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return client


@pytest.fixture
def auth_client(client, user):
    return _login(client, "alice", "alicepass")


@pytest.fixture
def other_client(app, other_user):
    return _login(TestClient(app), "bob", "bobpass1")
