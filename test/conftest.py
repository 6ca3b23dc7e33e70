"""
Pytest configuration for the chat backend test suite.

The app is built without its lifespan (no database at test time); the DB
session, the signed-in user and the completion service are replaced through
FastAPI dependency overrides.
"""
import os

os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from api.auth import AuthUser, clear_session_cache, require_auth
from api.main import create_app
from db.database import get_db
from rag_chat.src.document_chat.types import SearchResult

pytest_plugins = ["pytest_asyncio"]

CONVERSATION_ID = "0b7e4a52-5d0c-4c1c-9f3e-2f4f8a8d1c11"
DOCUMENT_ID = "6a1f2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"


def now():
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_message(role="user", content="hello", sources=None, id="msg-1"):
    return SimpleNamespace(
        id=id, role=role, content=content, sources=sources, created_at=now()
    )


def make_conversation(messages=None, settings=None, id=CONVERSATION_ID):
    return SimpleNamespace(
        id=id,
        title="New Chat",
        settings=settings if settings is not None else {"topK": 5, "threshold": 0.7},
        created_at=now(),
        updated_at=now(),
        messages=messages or [],
    )


def make_document(id=DOCUMENT_ID, title="notes", content="para one\n\npara two"):
    return SimpleNamespace(
        id=id,
        title=title,
        filename=f"{title}.md",
        mime_type="text/markdown",
        size=len(content),
        content=content,
        doc_metadata={"uploadedAt": now().isoformat()},
        created_at=now(),
        updated_at=now(),
        chunks=[],
    )


def make_source(content="Paris is the capital of France.", score=0.91):
    return SearchResult(
        id="chunk-1",
        content=content,
        score=score,
        document_id=DOCUMENT_ID,
        metadata={"chunkIndex": 0},
    )


@pytest.fixture
def db_session():
    session = AsyncMock()
    session.add = Mock()
    return session


@pytest.fixture
def fake_user():
    return AuthUser(id="user-1", email="ada@example.com", name="Ada")


@pytest.fixture(autouse=True)
def _fresh_session_cache():
    clear_session_cache()
    yield
    clear_session_cache()


@pytest.fixture
def app(db_session, fake_user):
    app = create_app(use_lifespan=False)

    async def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[require_auth] = lambda: fake_user
    return app


@pytest.fixture
def client(app):
    # unhandled errors should come back as 500 responses, not raise in the test
    return TestClient(app, raise_server_exceptions=False)


# factories exposed as fixtures
@pytest.fixture(name="make_message")
def _make_message_fixture():
    return make_message


@pytest.fixture(name="make_conversation")
def _make_conversation_fixture():
    return make_conversation


@pytest.fixture(name="make_document")
def _make_document_fixture():
    return make_document


@pytest.fixture(name="make_source")
def _make_source_fixture():
    return make_source
